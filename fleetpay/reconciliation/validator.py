# ==============================================================================
# fleetpay/reconciliation/validator.py
# ------------------------------------------------------------------------------
# Handles the validation of ingestion payloads before any row is touched, and
# the loading of exported CSV/XLSX files into payload rows.
# ==============================================================================

import os
from datetime import date

import pandas as pd

from .schema import SUPPORTED_PLATFORMS, find_missing_columns


def _parse_date(value):
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        return None


def validate_payload(payload, week):
    """
    Validates the envelope of one platform payload.

    Args:
        payload (dict): {platform, weekStart, weekEnd, rows, source?}
        week (Week): the week being reconciled.

    Returns:
        tuple: A tuple containing:
            - list: The payload rows if validation is successful, else None.
            - list: A list of human-readable error messages if validation fails.
    """
    errors = []
    if not isinstance(payload, dict):
        return None, [f"Payload must be an object, got {type(payload).__name__}."]

    platform = payload.get('platform')
    if platform not in SUPPORTED_PLATFORMS:
        return None, [f"Unsupported platform '{platform}'. Expected one of: {', '.join(SUPPORTED_PLATFORMS)}."]

    # 1. The payload must describe the week being reconciled
    week_start = _parse_date(payload.get('weekStart'))
    week_end = _parse_date(payload.get('weekEnd'))
    if week_start is None or week_end is None:
        errors.append("Payload is missing a valid weekStart/weekEnd.")
    elif week_start != week.week_start or week_end != week.week_end:
        errors.append(f"Payload covers {week_start} to {week_end}, which is not week {week.week_id} "
                      f"({week.week_start} to {week.week_end}).")

    # 2. Rows must be a list of header -> value objects
    rows = payload.get('rows')
    if not isinstance(rows, list):
        errors.append("Payload 'rows' must be a list.")
    else:
        bad = [i + 1 for i, row in enumerate(rows) if not isinstance(row, dict)]
        if bad:
            errors.append(f"Rows {', '.join(map(str, bad[:10]))} are not objects.")

    if errors:
        return None, errors

    # 3. A non-empty export must carry the platform's required columns somewhere
    if rows:
        headers = set()
        for row in rows:
            headers.update(row.keys())
        missing = find_missing_columns(platform, headers)
        if missing:
            return None, [f"Required column(s) not found: {', '.join(missing)}."]

    return rows, []


def load_rows_file(filepath, allowed_extensions=('.csv', '.xlsx')):
    """
    Reads an exported CSV or XLSX file into a list of row dicts.

    Returns:
        tuple: (rows, errors) in the same shape as validate_payload.
    """
    extension = os.path.splitext(filepath)[1].lower()
    if extension not in allowed_extensions:
        return None, [f"File type '{extension}' is not supported."]

    try:
        if extension == '.csv':
            df = pd.read_csv(filepath, sep=None, engine='python', dtype=str, keep_default_na=False)
        else:
            df = pd.read_excel(filepath, dtype=object)
    except Exception as e:
        return None, [f"The file could not be read. Technical error: {e}"]

    df = df.dropna(how='all')
    df.columns = [str(c).strip() for c in df.columns]
    rows = []
    for record in df.to_dict(orient='records'):
        rows.append({k: (None if pd.isna(v) else v) for k, v in record.items()})
    return rows, []

