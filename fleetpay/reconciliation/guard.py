# ==============================================================================
# fleetpay/reconciliation/guard.py
# ------------------------------------------------------------------------------
# Reprocess Guard. A week is OPEN until a payment is generated from one of its
# records, then LOCKED until every such payment is reverted.
# ==============================================================================

from fleetpay.models import DriverPayment

from .errors import WeekLockedError, DuplicatePaymentError

OPEN = 'OPEN'
LOCKED = 'LOCKED'


def blocking_payments(week_id):
    return DriverPayment.query.filter_by(week_id=week_id).order_by(DriverPayment.created_at).all()


def week_status(week_id):
    return LOCKED if DriverPayment.query.filter_by(week_id=week_id).first() else OPEN


def ensure_open(week_id):
    """Raises WeekLockedError listing the payments that lock the week."""
    payments = blocking_payments(week_id)
    if payments:
        raise WeekLockedError(week_id, [p.id for p in payments])


def ensure_not_paid(driver_id, week_id):
    existing = DriverPayment.query.filter_by(driver_id=driver_id, week_id=week_id).first()
    if existing:
        raise DuplicatePaymentError(driver_id, week_id, existing.id)
