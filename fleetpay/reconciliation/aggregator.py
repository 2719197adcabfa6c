# ==============================================================================
# fleetpay/reconciliation/aggregator.py
# ------------------------------------------------------------------------------
# Weekly Aggregator. Folds the matched rows of one platform into a single
# NormalizedWeeklyEntry per driver, and replaces the platform's previous set for
# the week.
# ==============================================================================

import logging
from datetime import datetime

import pandas as pd

from fleetpay import db
from fleetpay.models import NormalizedWeeklyEntry

from .schema import PLATFORM_SCHEMAS, platform_label


def aggregate_platform(platform, week, resolved_rows):
    """
    Sums value, trips and reimbursements per driver.

    Time-bounded platforms keep only rows whose timestamp falls inside the week;
    rows without a timestamp are kept (the export is trusted to cover the week).
    Returns (totals, warnings) where totals maps driver_id to a dict of sums.
    """
    label = platform_label(platform)
    warnings = []
    records = []

    for row, driver in resolved_rows:
        if PLATFORM_SCHEMAS[platform]['time_bounded'] and row.timestamp is not None:
            if not week.contains(row.timestamp):
                warnings.append(
                    f"{label} row {row.row_index + 1} ({row.identifier}): transaction on "
                    f"{row.timestamp:%Y-%m-%d %H:%M} is outside {week.week_id} "
                    f"({week.week_start} to {week.week_end}); discarded."
                )
                continue
        records.append({
            'driver_id': driver.driver_id,
            'value': row.amount,
            'trips': row.trips,
            'reimbursed': row.reimbursed,
        })

    if not records:
        logging.info(f"  {label}: no rows to aggregate for {week.week_id}.")
        return {}, warnings

    df = pd.DataFrame(records)
    grouped = df.groupby('driver_id').agg(
        total_value=('value', 'sum'),
        total_trips=('trips', 'sum'),
        reimbursed_value=('reimbursed', 'sum'),
        rows_count=('value', 'size'),
    )

    totals = {}
    for driver_id, group in grouped.iterrows():
        totals[driver_id] = {
            'total_value': round(float(group['total_value']), 2),
            'total_trips': int(group['total_trips']),
            'reimbursed_value': round(float(group['reimbursed_value']), 2),
            'rows_count': int(group['rows_count']),
        }
        logging.debug(f"    {label} {driver_id}: value={totals[driver_id]['total_value']:.2f}, "
                      f"trips={totals[driver_id]['total_trips']}, rows={totals[driver_id]['rows_count']}")

    logging.info(f"  {label}: aggregated {len(records)} rows into {len(totals)} driver entries.")
    return totals, warnings


def replace_entries(platform, week, totals, import_batch_id=None):
    """Deletes the platform's entries for the week and writes the new set."""
    removed = NormalizedWeeklyEntry.query.filter_by(platform=platform, week_id=week.week_id).delete()
    db.session.flush()

    now = datetime.utcnow()
    for driver_id, sums in totals.items():
        db.session.add(NormalizedWeeklyEntry(
            driver_id=driver_id,
            platform=platform,
            week_id=week.week_id,
            import_batch_id=import_batch_id,
            updated_at=now,
            **sums,
        ))
    db.session.flush()
    logging.info(f"  {platform_label(platform)}: replaced {removed} entries with {len(totals)} for {week.week_id}.")
    return len(totals)


def entries_by_driver(week_id):
    """All stored entries of the week as {driver_id: {platform: NormalizedWeeklyEntry}}."""
    by_driver = {}
    for entry in NormalizedWeeklyEntry.query.filter_by(week_id=week_id).all():
        by_driver.setdefault(entry.driver_id, {})[entry.platform] = entry
    return by_driver
