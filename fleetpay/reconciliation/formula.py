# ==============================================================================
# fleetpay/reconciliation/formula.py
# ------------------------------------------------------------------------------
# The weekly payout formula. Pure functions: every input is passed in, nothing
# is read from the database or from previous weekly records.
# ==============================================================================

import logging
from dataclasses import dataclass, field

from .financing import compute_financing
from .schema import UBER, BOLT, MYPRIO, VIAVERDE
from .weeks import Week


def money(value):
    return round(float(value or 0), 2)


def _total(entries, platform, attribute):
    entry = entries.get(platform)
    if entry is None:
        return 0
    if isinstance(entry, dict):
        return entry.get(attribute, 0) or 0
    return getattr(entry, attribute, 0) or 0


@dataclass(frozen=True)
class FinancialConfig:
    tax_rate: float = 0.06
    admin_fee_rate: float = 0.07

    @classmethod
    def from_app_config(cls, config):
        return cls(
            tax_rate=float(config.get('TAX_RATE', 0.06)),
            admin_fee_rate=float(config.get('ADMIN_FEE_RATE', 0.07)),
        )


@dataclass
class WeeklyBreakdown:
    """
    One driver's computed week. Built by compute_base_record, then completed by
    the commission walk and the bonus pass before it is persisted.
    """
    driver_id: str
    driver_name: str
    driver_type: str
    week: Week
    uber_total: float = 0.0
    bolt_total: float = 0.0
    reimbursements: float = 0.0
    fuel_total: float = 0.0
    tolls_total: float = 0.0
    total_trips: int = 0
    gross_earnings: float = 0.0
    tax_rate: float = 0.0
    tax_withheld: float = 0.0
    earnings_after_tax: float = 0.0
    admin_fee_rate: float = 0.0
    admin_fee: float = 0.0
    admin_fee_exempt: bool = False
    rental_fee: float = 0.0
    financing_deduction: float = 0.0
    financing_details: dict = field(default_factory=dict)
    expenses: float = 0.0
    commission_amount: float = 0.0
    commission_details: list = field(default_factory=list)
    commission_config_version: int = None
    bonus_meta_pending: list = field(default_factory=list)
    referral_bonus_pending: list = field(default_factory=list)
    bonuses_applied: float = 0.0
    has_activity: bool = True

    @property
    def repasse(self):
        """Payout before commission and bonuses."""
        return money(self.earnings_after_tax - self.admin_fee - self.expenses)

    @property
    def net_payout(self):
        return money(self.earnings_after_tax - self.admin_fee - self.expenses
                     + self.commission_amount + self.bonuses_applied)

    def add_commission(self, amount, detail):
        self.commission_amount = money(self.commission_amount + amount)
        self.commission_details.append(detail)

    def set_bonuses(self, meta, referral):
        self.bonus_meta_pending = list(meta)
        self.referral_bonus_pending = list(referral)
        self.bonuses_applied = money(sum(b['amount'] for b in self.bonus_meta_pending)
                                     + sum(b['amount'] for b in self.referral_bonus_pending))

    def record_fields(self):
        """Column values for DriverWeeklyRecord."""
        return {
            'driver_id': self.driver_id,
            'driver_name': self.driver_name,
            'driver_type': self.driver_type,
            'week_id': self.week.week_id,
            'week_start': self.week.week_start,
            'week_end': self.week.week_end,
            'uber_total': self.uber_total,
            'bolt_total': self.bolt_total,
            'reimbursements': self.reimbursements,
            'fuel_total': self.fuel_total,
            'tolls_total': self.tolls_total,
            'total_trips': self.total_trips,
            'gross_earnings': self.gross_earnings,
            'tax_rate': self.tax_rate,
            'tax_withheld': self.tax_withheld,
            'earnings_after_tax': self.earnings_after_tax,
            'admin_fee_rate': self.admin_fee_rate,
            'admin_fee': self.admin_fee,
            'admin_fee_exempt': self.admin_fee_exempt,
            'rental_fee': self.rental_fee,
            'financing_deduction': self.financing_deduction,
            'expenses': self.expenses,
            'commission_amount': self.commission_amount,
            'commission_config_version': self.commission_config_version,
            'bonuses_applied': self.bonuses_applied,
            'net_payout': self.net_payout,
        }


def compute_base_record(profile, week, entries, config):
    """
    Steps 1-5 of the formula for one driver: gross, tax, admin fee and expenses.

    `entries` maps platform to its weekly totals (NormalizedWeeklyEntry or dict
    with total_value / total_trips / reimbursed_value).
    """
    uber = money(_total(entries, UBER, 'total_value'))
    bolt = money(_total(entries, BOLT, 'total_value'))
    reimbursements = money(_total(entries, UBER, 'reimbursed_value') + _total(entries, BOLT, 'reimbursed_value'))
    fuel = money(_total(entries, MYPRIO, 'total_value'))
    tolls = money(_total(entries, VIAVERDE, 'total_value'))
    trips = int(_total(entries, UBER, 'total_trips') + _total(entries, BOLT, 'total_trips'))

    gross = money(uber + bolt + reimbursements)
    tax = money(gross * config.tax_rate)
    after_tax = money(gross - tax)

    exempt = bool(profile.admin_fee_exemption and profile.admin_fee_exemption.covers(week))
    admin_fee = 0.0 if exempt else money(after_tax * config.admin_fee_rate)

    rental = money(profile.rental_fee) if profile.is_renter else 0.0
    financing = compute_financing(profile.financing, week)
    expenses = money(fuel + tolls + rental + financing['deduction'])

    breakdown = WeeklyBreakdown(
        driver_id=profile.driver_id,
        driver_name=profile.name,
        driver_type=profile.driver_type,
        week=week,
        uber_total=uber,
        bolt_total=bolt,
        reimbursements=reimbursements,
        fuel_total=fuel,
        tolls_total=tolls,
        total_trips=trips,
        gross_earnings=gross,
        tax_rate=config.tax_rate,
        tax_withheld=tax,
        earnings_after_tax=after_tax,
        admin_fee_rate=config.admin_fee_rate,
        admin_fee=admin_fee,
        admin_fee_exempt=exempt,
        rental_fee=rental,
        financing_deduction=financing['deduction'],
        financing_details=financing,
        expenses=expenses,
    )

    log_story = [
        f"  --- Weekly formula for {profile.driver_id} ({profile.name}), {week.week_id} ---",
        f"  - Gross      : {uber:.2f} + {bolt:.2f} + {reimbursements:.2f} = {gross:.2f}",
        f"  - Tax        : {gross:.2f} * {config.tax_rate:.2%} = {tax:.2f}",
        f"  - After tax  : {after_tax:.2f}",
        f"  - Admin fee  : {admin_fee:.2f}{' (exempt)' if exempt else ''}",
        f"  - Expenses   : fuel {fuel:.2f} + tolls {tolls:.2f} + rental {rental:.2f} + financing {financing['deduction']:.2f} = {expenses:.2f}",
        f"  - Repasse    : {breakdown.repasse:.2f}",
    ]
    logging.debug("\n".join(log_story))
    return breakdown


def zero_activity_record(profile, week, config):
    """A record for a driver with no platform activity, used to carry commission only."""
    return WeeklyBreakdown(
        driver_id=profile.driver_id,
        driver_name=profile.name,
        driver_type=profile.driver_type,
        week=week,
        tax_rate=config.tax_rate,
        admin_fee_rate=config.admin_fee_rate,
        financing_details=compute_financing([], week),
        has_activity=False,
    )
