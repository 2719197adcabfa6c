# ==============================================================================
# fleetpay/reconciliation/settings.py
# ------------------------------------------------------------------------------
# Business rules stored in the database: app settings, the current commission
# configuration version and the goal rules. Loaded once and cached until the
# admin update path changes them.
# ==============================================================================

import json
import logging

from fleetpay import db
from fleetpay.models import AppSetting, CommissionConfigVersion, GoalRule

from .bonuses import GoalTarget, ReferralBonusPolicy
from .commission import CommissionConfig


class CalculationConfig:
    """
    A singleton holding the business rules used by a reconciliation run.
    The database is read on first use; call reset() after editing the rules.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            logging.info("Creating and loading CalculationConfig instance...")
            instance = super(CalculationConfig, cls).__new__(cls)
            try:
                instance.load_settings()
                logging.info("CalculationConfig loaded successfully.")
            except Exception as e:
                logging.error(f"FATAL: Could not load settings from database. Engine cannot run. Error: {e}", exc_info=True)
                raise
            cls._instance = instance
        return cls._instance

    @classmethod
    def reset(cls):
        cls._instance = None

    def load_settings(self):
        settings = AppSetting.query.all()
        settings_dict = {s.key: s.get_value() for s in settings}

        self.REFERRAL_BONUS_MIN_WEEKS = int(settings_dict.get('REFERRAL_BONUS_MIN_WEEKS', 4))
        self.REFERRAL_BONUS_AMOUNT = float(settings_dict.get('REFERRAL_BONUS_AMOUNT', 50.0))
        self.DEFAULT_CURRENCY = settings_dict.get('DEFAULT_CURRENCY', 'EUR')

        latest = CommissionConfigVersion.query.order_by(CommissionConfigVersion.id.desc()).first()
        if latest is None:
            logging.warning("No commission configuration found; referral commissions are disabled.")
            self.commission = CommissionConfig(version=None, min_weekly_revenue=0.0, max_levels=1, levels={})
        else:
            self.commission = CommissionConfig.from_version(latest)

        self.goal_rules = [GoalTarget.from_model(r) for r in
                           GoalRule.query.filter_by(active=True).order_by(GoalRule.level, GoalRule.id).all()]

    @property
    def referral_policy(self):
        return ReferralBonusPolicy(min_weeks=self.REFERRAL_BONUS_MIN_WEEKS, amount=self.REFERRAL_BONUS_AMOUNT)

    def describe(self):
        levels = ", ".join(f"L{k}={v:.2%}" for k, v in sorted(self.commission.levels.items()))
        lines = [
            f"  - REFERRAL_BONUS_MIN_WEEKS: {self.REFERRAL_BONUS_MIN_WEEKS}",
            f"  - REFERRAL_BONUS_AMOUNT: {self.REFERRAL_BONUS_AMOUNT:.2f}",
            f"  - Commission v{self.commission.version}: base={self.commission.base}, "
            f"min={self.commission.min_weekly_revenue:.2f}, maxLevels={self.commission.max_levels}, "
            f"levels=[{levels}]",
        ]
        for rule in self.goal_rules:
            lines.append(f"  - Goal {rule.reference}: {rule.criterion} >= {rule.threshold} -> "
                         f"{rule.reward_type} {rule.reward_value}")
        return "\n".join(lines)


def save_commission_config(min_weekly_revenue, base, max_levels, levels, created_by=None):
    """
    Appends a new commission configuration version; earlier versions stay as
    they were. `levels` maps level -> percent (2 == 2%).
    """
    fractions = {int(level): float(percent) / 100 for level, percent in levels.items()
                 if int(level) <= int(max_levels)}
    # Validates base and max_levels before anything is written.
    CommissionConfig(min_weekly_revenue=float(min_weekly_revenue), base=base,
                     max_levels=int(max_levels), levels=fractions)

    version = CommissionConfigVersion(
        min_weekly_revenue=float(min_weekly_revenue),
        base=base,
        max_levels=int(max_levels),
        levels_json=json.dumps({str(k): v for k, v in sorted(fractions.items())}),
        created_by=created_by,
    )
    db.session.add(version)
    db.session.commit()
    CalculationConfig.reset()
    logging.info(f"Commission configuration v{version.id} saved by {created_by or 'unknown'}.")
    return version


def add_goal_rule(description, criterion, threshold, reward_type, reward_value, level=1, active_from=None):
    rule = GoalRule(
        description=description,
        criterion=criterion,
        threshold=float(threshold),
        reward_type=reward_type,
        reward_value=float(reward_value),
        level=int(level or 1),
        active_from=active_from,
    )
    db.session.add(rule)
    db.session.commit()
    CalculationConfig.reset()
    logging.info(f"Goal rule {rule.id} added: {criterion} >= {threshold}.")
    return rule
