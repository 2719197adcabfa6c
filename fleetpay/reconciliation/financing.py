# ==============================================================================
# fleetpay/reconciliation/financing.py
# ------------------------------------------------------------------------------
# Weekly deduction for driver loans and recurring discounts.
# ==============================================================================

import logging
from dataclasses import dataclass
from datetime import date

from .errors import PayloadError
from .weeks import weeks_between

LOAN = 'loan'
DISCOUNT = 'discount'


def _money(value):
    return round(float(value or 0), 2)


@dataclass(frozen=True)
class FinancingPlan:
    """
    A loan or recurring discount attached to a driver.

    An installment plan ("parcelado") has a number of weeks; an open-ended one
    (weeks is None) is charged every week until it is marked completed.
    """
    plan_id: str
    kind: str = DISCOUNT
    amount: float = 0.0
    weekly_amount: float = 0.0
    weeks: int = None
    weekly_interest_percent: float = 0.0
    weekly_surcharge: float = 0.0
    start_date: date = None
    status: str = 'active'

    @property
    def is_installment(self):
        return bool(self.weeks and self.weeks > 0)

    @property
    def installment(self):
        if self.weekly_amount and self.weekly_amount > 0:
            return float(self.weekly_amount)
        if self.kind == LOAN and self.is_installment:
            return float(self.amount) / self.weeks
        if self.kind == DISCOUNT:
            return float(self.amount)
        return 0.0

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, cls):
            return data
        weeks = data.get('weeks') or data.get('totalInstallments')
        kind = data.get('type') or data.get('kind') or (LOAN if weeks else DISCOUNT)
        if kind not in (LOAN, DISCOUNT):
            raise PayloadError(f"Unknown financing type '{kind}'.")
        start = data.get('startDate') or data.get('start_date')
        return cls(
            plan_id=str(data.get('id') or data.get('planId') or f"{kind}-{start or 'open'}"),
            kind=kind,
            amount=float(data.get('amount') or 0),
            weekly_amount=float(data.get('weeklyAmount') or data.get('weekly_amount') or 0),
            weeks=int(weeks) if weeks else None,
            weekly_interest_percent=float(data.get('weeklyInterest') or data.get('weekly_interest_percent') or 0),
            weekly_surcharge=float(data.get('weeklySurcharge') or data.get('onusParcelado') or 0),
            start_date=date.fromisoformat(str(start)[:10]) if start else None,
            status=str(data.get('status') or 'active').lower(),
        )


def plan_week_charge(plan, week):
    """
    Returns the breakdown of what a single plan costs in the given week.
    Progress is derived from the plan's start date and the week alone.
    """
    detail = {
        'planId': plan.plan_id,
        'type': plan.kind,
        'isParcelado': plan.is_installment,
        'installment': 0.0,
        'interest': 0.0,
        'surcharge': 0.0,
        'total': 0.0,
        'installmentsTotal': plan.weeks,
        'installmentsElapsed': None,
        'installmentsRemaining': None,
        'percentCompleted': None,
        'status': 'charged',
    }

    if plan.status == 'completed':
        detail['status'] = 'completed'
        return detail

    if plan.start_date and plan.start_date > week.week_end:
        detail['status'] = 'not_started'
        return detail

    if plan.is_installment and plan.start_date:
        elapsed = weeks_between(plan.start_date, week.week_start) + 1
        if elapsed > plan.weeks:
            detail.update(installmentsElapsed=plan.weeks, installmentsRemaining=0,
                          percentCompleted=100.0, status='completed')
            return detail
        detail.update(
            installmentsElapsed=elapsed,
            installmentsRemaining=plan.weeks - elapsed,
            percentCompleted=round(elapsed / plan.weeks * 100, 2),
        )

    installment = _money(plan.installment)
    interest = _money(installment * plan.weekly_interest_percent / 100)
    surcharge = _money(plan.weekly_surcharge)
    detail.update(
        installment=installment,
        interest=interest,
        surcharge=surcharge,
        total=_money(installment + interest + surcharge),
    )
    return detail


def compute_financing(plans, week):
    """Aggregates every plan of a driver into the week's financing deduction."""
    details = [plan_week_charge(plan, week) for plan in plans]
    deduction = _money(sum(d['total'] for d in details))
    charged = [d for d in details if d['status'] == 'charged']
    if charged:
        logging.debug(f"  Financing for {week.week_id}: {len(charged)} plan(s) charged, total {deduction:.2f}")
    return {
        'hasFinancing': bool(charged),
        'isParcelado': any(d['isParcelado'] for d in charged),
        'deduction': deduction,
        'displayLabel': f"Parcela: €{deduction:.2f}" if charged else 'Sem financiamento',
        'plans': details,
    }
