# ==============================================================================
# fleetpay/reconciliation/archive.py
# ------------------------------------------------------------------------------
# Raw Data Archive. Every ingested row is stored as received, tagged with its
# platform, import batch and week, together with the identity it resolved to.
# Rows are written once and never modified.
# ==============================================================================

import json
import logging
from datetime import datetime

from fleetpay import db
from fleetpay.models import ImportBatch, RawPlatformRow

from .schema import platform_label

MATCHED = 'matched'
UNMATCHED = 'unmatched'
INVALID = 'invalid'


def _json_default(value):
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


def open_batch(platform, week, row_count, source=None):
    batch = ImportBatch(
        platform=platform,
        week_id=week.week_id,
        week_start=week.week_start,
        week_end=week.week_end,
        source=source,
        row_count=row_count,
    )
    db.session.add(batch)
    db.session.flush()
    return batch


def resolve_rows(platform, extracted_rows, resolver):
    """
    Resolves each extracted row to a driver.

    Returns (outcomes, warnings) where outcomes is a list of
    (ExtractedRow, DriverProfile or None, resolution). Unusable rows warn once
    each; unmatched keys are reported once however many rows carry them.
    """
    label = platform_label(platform)
    outcomes = []
    warnings = []
    unmatched = {}

    for row in extracted_rows:
        if not row.usable:
            outcomes.append((row, None, INVALID))
            warnings.append(row.problem)
            continue
        driver = resolver.resolve(platform, key=row.key, plate=row.plate, tag=row.tag)
        if driver is None:
            unmatched[row.identifier] = unmatched.get(row.identifier, 0) + 1
            outcomes.append((row, None, UNMATCHED))
        else:
            outcomes.append((row, driver, MATCHED))

    for key, count in unmatched.items():
        warnings.append(f"{label}: no driver on the roster for '{key}' ({count} row(s) ignored).")
    return outcomes, warnings


def matched_rows(outcomes):
    return [(row, driver) for row, driver, resolution in outcomes if resolution == MATCHED]


def archive_rows(batch, outcomes):
    """Stores every row of the batch as received, with its resolution outcome."""
    counts = {MATCHED: 0, UNMATCHED: 0, INVALID: 0}
    for row, driver, resolution in outcomes:
        counts[resolution] += 1
        db.session.add(RawPlatformRow(
            import_batch_id=batch.id,
            platform=batch.platform,
            week_id=batch.week_id,
            row_index=row.row_index,
            external_key=row.identifier,
            fields_json=json.dumps(row.fields, default=_json_default, ensure_ascii=False),
            driver_id=driver.driver_id if driver else None,
            resolution=resolution,
        ))
    db.session.flush()
    logging.info(f"  Archived {len(outcomes)} {platform_label(batch.platform)} rows in batch {batch.id}: "
                 f"{counts[MATCHED]} matched, {counts[UNMATCHED]} unmatched, {counts[INVALID]} invalid.")
    return counts


def mark_processed(batch):
    batch.processed = True
    batch.processed_at = datetime.utcnow()


def archived_rows(week_id, platform=None):
    query = RawPlatformRow.query.filter_by(week_id=week_id)
    if platform:
        query = query.filter_by(platform=platform)
    return query.order_by(RawPlatformRow.import_batch_id, RawPlatformRow.row_index).all()
