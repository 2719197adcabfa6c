# ==============================================================================
# fleetpay/reconciliation/errors.py
# ------------------------------------------------------------------------------
# Exceptions raised by the reconciliation pipeline. Row and platform problems
# are reported in the run result instead; these are the faults that stop a run.
# ==============================================================================


class ReconciliationError(Exception):
    """Base class for every fault raised by the reconciliation engine."""


class PayloadError(ReconciliationError):
    """An ingestion payload or roster entry is malformed beyond a single row."""


class WeekLockedError(ReconciliationError):
    """The week already has payments generated from its records."""

    def __init__(self, week_id, payment_ids=()):
        self.week_id = week_id
        self.payment_ids = list(payment_ids)
        super().__init__(
            f"Week {week_id} is locked: payments already generated "
            f"({len(self.payment_ids)} payment(s)). Revert them before reprocessing."
        )


class DuplicatePaymentError(ReconciliationError):
    """A payment already exists for this driver and week."""

    def __init__(self, driver_id, week_id, payment_id):
        self.driver_id = driver_id
        self.week_id = week_id
        self.payment_id = payment_id
        super().__init__(f"Driver {driver_id} already has payment {payment_id} for week {week_id}.")


class ReferralCycleError(ReconciliationError):
    """The referral graph loops back on itself."""

    def __init__(self, path):
        self.path = list(path)
        super().__init__("Referral graph cycle detected: " + " -> ".join(self.path))


class ImmutableRecordError(ReconciliationError):
    """An attempt was made to modify an audit row or a payment."""
