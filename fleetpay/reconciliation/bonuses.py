# ==============================================================================
# fleetpay/reconciliation/bonuses.py
# ------------------------------------------------------------------------------
# Goal ("meta") bonuses and one-time referral bonuses. Both land in the pending
# arrays of the weekly record and are moved to paid by the payment finalizer.
# ==============================================================================

import logging
from dataclasses import dataclass, field
from datetime import date

from .formula import money

EARNINGS = 'earnings'
TRIPS = 'trips'
FIXED = 'fixed'
PERCENT = 'percent'

GOAL = 'goal'
REFERRAL = 'referral'


@dataclass(frozen=True)
class GoalTarget:
    rule_id: int
    description: str
    criterion: str
    threshold: float
    reward_type: str = FIXED
    reward_value: float = 0.0
    level: int = 1
    active_from: date = None

    @property
    def reference(self):
        return f"goal-{self.rule_id}"

    @classmethod
    def from_model(cls, rule):
        return cls(
            rule_id=rule.id,
            description=rule.description,
            criterion=rule.criterion,
            threshold=rule.threshold,
            reward_type=rule.reward_type,
            reward_value=rule.reward_value,
            level=rule.level or 1,
            active_from=rule.active_from,
        )


@dataclass(frozen=True)
class ReferralBonusPolicy:
    min_weeks: int = 4
    amount: float = 50.0


@dataclass
class ReferralHistory:
    """
    Cross-week facts the referral bonus needs, gathered by the caller:
    paid weeks per referred driver before the current week, and the referred
    drivers whose bonus is already in the ledger.
    """
    paid_weeks: dict = field(default_factory=dict)
    already_paid: set = field(default_factory=set)


def goal_bonuses(breakdown, rules, week):
    """Pending goal bonuses the driver reached this week."""
    pending = []
    for rule in rules:
        if rule.active_from and rule.active_from > week.week_end:
            continue
        if rule.criterion == EARNINGS:
            achieved_value = breakdown.gross_earnings
        elif rule.criterion == TRIPS:
            achieved_value = breakdown.total_trips
        else:
            logging.warning(f"Goal rule {rule.rule_id} has unknown criterion '{rule.criterion}'; skipped.")
            continue
        if achieved_value < rule.threshold:
            continue

        if rule.reward_type == PERCENT:
            amount = money(breakdown.gross_earnings * rule.reward_value / 100)
        else:
            amount = money(rule.reward_value)
        if amount <= 0:
            continue
        pending.append({
            'reference': rule.reference,
            'description': rule.description,
            'criterion': rule.criterion,
            'threshold': rule.threshold,
            'achievedValue': achieved_value,
            'rewardType': rule.reward_type,
            'level': rule.level,
            'amount': amount,
        })
    return pending


def referral_bonuses(driver_id, roster, history, policy):
    """Pending one-time bonuses for the referrer of drivers who reached the minimum paid weeks."""
    pending = []
    referred = sorted((p for p in roster.values() if p.referrer_id == driver_id), key=lambda p: p.driver_id)
    for profile in referred:
        if profile.driver_id in history.already_paid:
            continue
        weeks_done = history.paid_weeks.get(profile.driver_id, 0)
        if weeks_done < policy.min_weeks:
            continue
        pending.append({
            'reference': profile.driver_id,
            'referredDriverId': profile.driver_id,
            'referredDriverName': profile.name,
            'weeksCompleted': weeks_done,
            'minimumWeeks': policy.min_weeks,
            'amount': money(policy.amount),
        })
    return pending


def apply_bonuses(breakdowns, roster, rules, history, policy, week):
    logging.info("--- Starting Pass 3: Goal and referral bonuses ---")
    total = 0
    for driver_id in sorted(breakdowns):
        breakdown = breakdowns[driver_id]
        meta = goal_bonuses(breakdown, rules, week)
        referral = referral_bonuses(driver_id, roster, history, policy)
        breakdown.set_bonuses(meta, referral)
        if meta or referral:
            total += len(meta) + len(referral)
            logging.info(f"  {driver_id}: {len(meta)} goal bonus(es), {len(referral)} referral bonus(es), "
                         f"applied {breakdown.bonuses_applied:.2f}")
    logging.info(f"--- Pass 3 Finished: {total} pending bonus(es). ---")
