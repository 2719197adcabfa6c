# ==============================================================================
# fleetpay/reconciliation/commission.py
# ------------------------------------------------------------------------------
# Multi-level referral commission. Runs as a second pass over base records that
# are already in memory, crediting each ancestor's own record.
# ==============================================================================

import logging
from dataclasses import dataclass, field

from .errors import ReferralCycleError
from .formula import money, zero_activity_record

BASE_REPASSE = 'repasse'
BASE_EARNINGS_AFTER_TAX = 'earningsAfterTax'
COMMISSION_BASES = (BASE_REPASSE, BASE_EARNINGS_AFTER_TAX)
MAX_LEVELS_LIMIT = 10


@dataclass(frozen=True)
class CommissionConfig:
    """Commission settings for a run. Level rates are fractions (0.02 == 2%)."""
    version: int = None
    min_weekly_revenue: float = 0.0
    base: str = BASE_REPASSE
    max_levels: int = 1
    levels: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.base not in COMMISSION_BASES:
            raise ValueError(f"Commission base must be one of {COMMISSION_BASES}, got '{self.base}'.")
        if not 1 <= self.max_levels <= MAX_LEVELS_LIMIT:
            raise ValueError(f"maxLevels must be between 1 and {MAX_LEVELS_LIMIT}, got {self.max_levels}.")

    @classmethod
    def from_version(cls, row):
        return cls(
            version=row.id,
            min_weekly_revenue=row.min_weekly_revenue,
            base=row.base,
            max_levels=row.max_levels,
            levels=row.levels,
        )

    def rate(self, level):
        return float(self.levels.get(level, 0) or 0)

    def base_value(self, breakdown):
        if self.base == BASE_EARNINGS_AFTER_TAX:
            return breakdown.earnings_after_tax
        return breakdown.repasse


def check_referral_graph(roster):
    """
    Follows every driver's referrer chain once and raises ReferralCycleError
    with the offending path if any chain loops back on itself.
    """
    acyclic = set()
    for driver_id in sorted(roster):
        path = []
        current = driver_id
        while current is not None and current not in acyclic:
            if current in path:
                raise ReferralCycleError(path + [current])
            path.append(current)
            profile = roster.get(current)
            current = profile.referrer_id if profile is not None and profile.referrer_id else None
        acyclic.update(path)


def apply_commissions(breakdowns, roster, config, week, financial_config):
    """
    Walks the referral chain of every eligible driver and credits each ancestor.

    `breakdowns` is the in-memory {driver_id: WeeklyBreakdown} map of the week;
    ancestors without a record get a zero-activity one. Raises
    ReferralCycleError when the roster holds a referral cycle, whether or not
    a walk would reach it. Returns warnings.
    """
    check_referral_graph(roster)

    logging.info(f"--- Starting Pass 2: Referral commissions (config v{config.version}, "
                 f"base={config.base}, min={config.min_weekly_revenue:.2f}, levels={config.max_levels}) ---")
    warnings = []
    credited = 0

    # Only drivers with base records generate commission.
    for driver_id in sorted(breakdowns):
        source = breakdowns[driver_id]
        if not source.has_activity:
            continue
        base_value = config.base_value(source)
        if base_value < config.min_weekly_revenue or base_value <= 0:
            logging.debug(f"  {driver_id}: base {base_value:.2f} below {config.min_weekly_revenue:.2f}, no commission.")
            continue

        current = roster.get(driver_id)
        level = 1
        while current is not None and current.referrer_id and level <= config.max_levels:
            ancestor_id = current.referrer_id
            ancestor = roster.get(ancestor_id)
            if ancestor is None:
                warnings.append(f"Referrer {ancestor_id} of driver {current.driver_id} is not on the roster; "
                                f"commission chain of {driver_id} stops at level {level}.")
                break

            rate = config.rate(level)
            amount = money(base_value * rate)
            if amount > 0:
                target = breakdowns.get(ancestor_id)
                if target is None:
                    target = zero_activity_record(ancestor, week, financial_config)
                    breakdowns[ancestor_id] = target
                    logging.info(f"  Created zero-activity record for {ancestor_id} to carry commission.")
                target.commission_config_version = config.version
                target.add_commission(amount, {
                    'level': level,
                    'referredDriverId': driver_id,
                    'referredDriverName': source.driver_name,
                    'baseValue': base_value,
                    'rate': rate,
                    'amount': amount,
                })
                credited += 1
                logging.debug(f"  L{level}: {ancestor_id} earns {base_value:.2f} * {rate:.2%} = {amount:.2f} from {driver_id}")

            current = ancestor
            level += 1

    logging.info(f"--- Pass 2 Finished: {credited} commission credit(s). ---")
    return warnings
