# ==============================================================================
# fleetpay/reconciliation/service.py
# ------------------------------------------------------------------------------
# Runs a full weekly reconciliation: archive and aggregate each platform, build
# every driver's base record, walk referral commissions, add bonuses, and write
# the weekly records. One session, one commit.
# ==============================================================================

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import distinct, func

from fleetpay import db
from fleetpay.models import BonusLedgerEntry, DriverPayment, DriverWeeklyRecord, WeekDataSource

from . import aggregator, archive
from .bonuses import REFERRAL, ReferralHistory, apply_bonuses
from .commission import apply_commissions
from .errors import ReconciliationError
from .extractors import extract_rows
from .formula import FinancialConfig, compute_base_record
from .guard import ensure_open, week_status, blocking_payments
from .identity import IdentityResolver, load_roster
from .schema import SUPPORTED_PLATFORMS, platform_label
from .settings import CalculationConfig
from .validator import validate_payload
from .weeks import parse_week_id

MAX_ARCHIVE_REFS = 10


@dataclass
class ReconciliationResult:
    week_id: str
    success: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    records_created: int = 0

    def add_error(self, platform, message):
        self.errors.append({'platform': platform, 'error': message})

    def to_dict(self):
        return {
            'success': list(self.success),
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'recordsCreated': self.records_created,
            'weekId': self.week_id,
        }


def _record_data_source(week, platform, status, records_count=0, drivers_count=0, batch_id=None, error=None):
    source = WeekDataSource.query.filter_by(week_id=week.week_id, platform=platform).first()
    if source is None:
        source = WeekDataSource(week_id=week.week_id, platform=platform)
        db.session.add(source)
    source.status = status
    source.error = error[:512] if error else None
    source.updated_at = datetime.utcnow()
    if status == 'complete':
        source.records_count = records_count
        source.drivers_count = drivers_count
        refs = source.archive_refs.split(',') if source.archive_refs else []
        if batch_id:
            refs.append(batch_id)
        source.archive_refs = ','.join(refs[-MAX_ARCHIVE_REFS:])


def _ingest_platform(payload, week, resolver, result):
    """Archive and aggregate one platform payload. Failures are reported, never raised."""
    platform = payload.get('platform') if isinstance(payload, dict) else None
    label = platform_label(platform)

    rows, errors = validate_payload(payload, week)
    if errors:
        for message in errors:
            result.add_error(platform, message)
        logging.warning(f"  {label}: payload rejected: {'; '.join(errors)}")
        if platform in SUPPORTED_PLATFORMS:
            _record_data_source(week, platform, 'error', error='; '.join(errors))
        return

    try:
        extracted = extract_rows(platform, rows)
        outcomes, row_warnings = archive.resolve_rows(platform, extracted, resolver)
        totals, window_warnings = aggregator.aggregate_platform(platform, week, archive.matched_rows(outcomes))
    except Exception as e:
        logging.error(f"  {label}: mapping failed for {week.week_id}: {e}", exc_info=True)
        result.add_error(platform, f"Failed to process {label} data: {e}")
        _record_data_source(week, platform, 'error', error=str(e))
        return

    try:
        # Savepoint: a failed write drops this platform's archive and entries only
        with db.session.begin_nested():
            batch = archive.open_batch(platform, week, len(rows), source=payload.get('source'))
            archive.archive_rows(batch, outcomes)
            aggregator.replace_entries(platform, week, totals, import_batch_id=batch.id)
            archive.mark_processed(batch)
    except Exception as e:
        logging.error(f"  {label}: storing {week.week_id} data failed: {e}", exc_info=True)
        result.add_error(platform, f"Failed to store {label} data: {e}")
        _record_data_source(week, platform, 'error', error=str(e))
        return

    _record_data_source(week, platform, 'complete', records_count=len(rows), drivers_count=len(totals),
                        batch_id=batch.id)
    result.warnings.extend(row_warnings)
    result.warnings.extend(window_warnings)
    result.success.append(f"{label}: {len(rows)} row(s) processed, {len(totals)} driver(s) aggregated.")


def _base_records(week, roster, financial, result):
    logging.info("--- Starting Pass 1b: Base weekly records ---")
    breakdowns = {}
    for driver_id, entries in sorted(aggregator.entries_by_driver(week.week_id).items()):
        profile = roster.get(driver_id)
        if profile is None:
            result.warnings.append(f"Driver {driver_id} has stored data for {week.week_id} but is not on the roster; "
                                   f"no record created.")
            continue
        breakdowns[driver_id] = compute_base_record(profile, week, entries, financial)
    logging.info(f"--- Pass 1b Finished: {len(breakdowns)} base record(s). ---")
    return breakdowns


def referral_history(week, roster):
    """Paid weeks before this week for every referred driver, and referral bonuses already paid."""
    referred_ids = [p.driver_id for p in roster.values() if p.referrer_id]
    if not referred_ids:
        return ReferralHistory()
    counts = (db.session.query(DriverPayment.driver_id, func.count(distinct(DriverPayment.week_id)))
              .filter(DriverPayment.driver_id.in_(referred_ids))
              .filter(DriverPayment.week_start < week.week_start)
              .group_by(DriverPayment.driver_id)
              .all())
    paid = (db.session.query(BonusLedgerEntry.reference)
            .filter(BonusLedgerEntry.kind == REFERRAL, BonusLedgerEntry.reference.in_(referred_ids))
            .all())
    return ReferralHistory(paid_weeks={driver_id: n for driver_id, n in counts},
                           already_paid={reference for (reference,) in paid})


def _write_records(week, breakdowns):
    """Upserts one record per driver and removes records of drivers no longer present."""
    existing = {r.driver_id: r for r in DriverWeeklyRecord.query.filter_by(week_id=week.week_id).all()}
    for driver_id, breakdown in breakdowns.items():
        record = existing.pop(driver_id, None)
        if record is None:
            record = DriverWeeklyRecord()
            db.session.add(record)
        for name, value in breakdown.record_fields().items():
            setattr(record, name, value)
        record.financing_json = json.dumps(breakdown.financing_details, ensure_ascii=False)
        record.commission_details_json = json.dumps(breakdown.commission_details, ensure_ascii=False)
        record.bonus_meta_pending_json = json.dumps(breakdown.bonus_meta_pending, ensure_ascii=False)
        record.referral_bonus_pending_json = json.dumps(breakdown.referral_bonus_pending, ensure_ascii=False)
        record.bonus_meta_paid_json = json.dumps([])
        record.referral_bonus_paid_json = json.dumps([])
    for stale in existing.values():
        logging.info(f"  Removing stale record of {stale.driver_id} for {week.week_id}.")
        db.session.delete(stale)
    db.session.flush()
    return len(breakdowns)


def reconcile_week(week_id, payloads, roster_entries, financial_config=None, calculation_config=None):
    """
    Reconciles one week from platform payloads and the driver roster.

    Row problems end up in `warnings` and platform failures in `errors`; both
    leave the rest of the run intact. WeekLockedError, ReferralCycleError and
    roster PayloadErrors abort the run and roll back everything it wrote.
    Returns a ReconciliationResult.
    """
    week = parse_week_id(week_id)
    result = ReconciliationResult(week_id=week.week_id)

    logging.info("=" * 80)
    logging.info(f"STARTING WEEKLY RECONCILIATION FOR {week.week_id} ({week.week_start} to {week.week_end})")
    logging.info("=" * 80)

    try:
        ensure_open(week.week_id)

        config = calculation_config or CalculationConfig()
        financial = financial_config or FinancialConfig.from_app_config(current_app.config)
        logging.info("--- Current configuration ---\n" + config.describe()
                     + f"\n  - TAX_RATE: {financial.tax_rate:.2%}\n  - ADMIN_FEE_RATE: {financial.admin_fee_rate:.2%}")

        roster = load_roster(roster_entries)
        resolver = IdentityResolver(roster)

        logging.info("--- Starting Pass 1: Archiving and aggregating platform data ---")
        for payload in payloads:
            _ingest_platform(payload, week, resolver, result)
        logging.info("--- Pass 1 Finished. ---")

        breakdowns = _base_records(week, roster, financial, result)
        result.warnings.extend(apply_commissions(breakdowns, roster, config.commission, week, financial))
        apply_bonuses(breakdowns, roster, config.goal_rules, referral_history(week, roster),
                      config.referral_policy, week)
        for breakdown in breakdowns.values():
            breakdown.commission_config_version = config.commission.version

        result.records_created = _write_records(week, breakdowns)
        db.session.commit()
    except ReconciliationError as e:
        db.session.rollback()
        logging.error(f"Reconciliation of {week.week_id} aborted, all changes rolled back: {e}")
        raise
    except Exception:
        db.session.rollback()
        logging.error(f"Reconciliation of {week.week_id} failed; all changes rolled back.", exc_info=True)
        raise

    logging.info(f"--- Reconciliation of {week.week_id} complete: {result.records_created} record(s), "
                 f"{len(result.warnings)} warning(s), {len(result.errors)} error(s). ---")
    return result


def week_overview(week_id):
    week = parse_week_id(week_id)
    sources = WeekDataSource.query.filter_by(week_id=week.week_id).order_by(WeekDataSource.platform).all()
    return {
        **week.to_dict(),
        'status': week_status(week.week_id),
        'dataSources': [s.to_dict() for s in sources],
        'recordsCount': DriverWeeklyRecord.query.filter_by(week_id=week.week_id).count(),
        'paymentIds': [p.id for p in blocking_payments(week.week_id)],
    }
