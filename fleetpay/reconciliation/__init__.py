# ==============================================================================
# fleetpay/reconciliation/__init__.py
# ------------------------------------------------------------------------------
# The weekly reconciliation engine. Only the database-free pieces are exported
# here; models.py imports this package, so the service modules are imported
# from their own paths (e.g. fleetpay.reconciliation.service).
# ==============================================================================

from .errors import (ReconciliationError, PayloadError, WeekLockedError, DuplicatePaymentError,
                     ReferralCycleError, ImmutableRecordError)
from .weeks import Week, week_for_date, parse_week_id
