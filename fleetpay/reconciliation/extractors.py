# ==============================================================================
# fleetpay/reconciliation/extractors.py
# ------------------------------------------------------------------------------
# Turns one platform's raw export rows into typed ExtractedRow objects. Each
# platform has its own extractor; header names are looked up through the aliases
# declared in schema.py.
# ==============================================================================

import logging
import re
from dataclasses import dataclass
from datetime import datetime

import pandas as pd

from .schema import PLATFORM_SCHEMAS, MYPRIO, CARTRACK, platform_label

EUROPEAN_THOUSANDS = re.compile(r'^-?[1-9]\d{0,2}(\.\d{3})+$')


def _is_blank(value):
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_number(value):
    """
    Parses a monetary or numeric cell. Accepts plain numbers and locale strings
    such as '1.234,56 €' or '1,234.56'. Returns None for blanks and garbage.
    """
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)

    text = re.sub(r'[\s€$]', '', str(value))
    if not text:
        return None
    if ',' in text and '.' in text:
        # Whichever separator comes last is the decimal point.
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.')
        else:
            text = text.replace(',', '')
    elif ',' in text:
        text = text.replace(',', '.')
    elif EUROPEAN_THOUSANDS.match(text):
        # '1.000' or '12.345.678' in Portuguese exports
        text = text.replace('.', '')
    try:
        return float(text)
    except ValueError:
        return None


def parse_timestamp(value):
    """Parses a date/time cell (day-first for text). Returns a naive datetime or None."""
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip()
    # ISO strings must not be read day-first.
    day_first = not re.match(r'^\d{4}-\d{2}-\d{2}', text)
    parsed = pd.to_datetime(text, dayfirst=day_first, errors='coerce')
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime().replace(tzinfo=None)


def find_field(fields, aliases):
    """Returns (header, value) for the first alias present in the row, matching case-insensitively."""
    for alias in aliases:
        if alias in fields:
            return alias, fields[alias]
    folded = {str(k).strip().lower(): k for k in fields}
    for alias in aliases:
        header = folded.get(alias.strip().lower())
        if header is not None:
            return header, fields[header]
    return None, None


@dataclass
class ExtractedRow:
    """One platform row in typed form. `problem` is set when the row cannot be used."""
    platform: str
    row_index: int
    fields: dict
    key: str = None
    plate: str = None
    tag: str = None
    name: str = None
    amount: float = 0.0
    trips: int = 0
    reimbursed: float = 0.0
    distance: float = 0.0
    timestamp: datetime = None
    problem: str = None

    @property
    def identifier(self):
        return self.key or self.plate or self.tag

    @property
    def usable(self):
        return self.problem is None


class PlatformExtractor:
    """Reads the fields every platform shares. Subclasses add their own rules."""

    def __init__(self, platform):
        self.platform = platform
        self.schema = PLATFORM_SCHEMAS[platform]

    def value(self, fields, name):
        aliases = self.schema['fields'].get(name)
        if not aliases:
            return None, None
        return find_field(fields, aliases)

    def text(self, fields, name):
        _, raw = self.value(fields, name)
        if _is_blank(raw):
            return None
        if isinstance(raw, float) and raw.is_integer():
            raw = int(raw)
        return str(raw).strip()

    def extract(self, row_index, fields):
        row = ExtractedRow(platform=self.platform, row_index=row_index, fields=dict(fields))
        row.key = self.text(fields, 'key')
        row.plate = self.text(fields, 'plate')
        row.tag = self.text(fields, 'tag')
        row.name = self.text(fields, 'name')

        label = platform_label(self.platform)
        where = f"{label} row {row_index + 1}"

        if 'key' in self.schema['required'] and not row.key:
            row.problem = f"{where}: missing driver identifier."
            return row
        if not row.identifier:
            row.problem = f"{where}: no card, plate or tag to identify the driver."
            return row

        header, raw_amount = self.value(fields, 'amount')
        amount = parse_number(raw_amount)
        if amount is None and 'amount' in self.schema['required']:
            row.problem = (f"{where}: missing amount." if header is None or _is_blank(raw_amount)
                           else f"{where}: invalid amount '{raw_amount}'.")
            return row
        row.amount = amount or 0.0

        row.trips = int(parse_number(self.value(fields, 'trips')[1]) or 0)
        row.reimbursed = parse_number(self.value(fields, 'reimbursed')[1]) or 0.0
        row.distance = parse_number(self.value(fields, 'distance')[1]) or 0.0

        if self.schema['time_bounded']:
            self.read_timestamp(row, fields, where)
        return row

    def read_timestamp(self, row, fields, where):
        header, raw = self.value(fields, 'timestamp')
        row.timestamp = parse_timestamp(raw)
        if row.timestamp is None:
            if 'timestamp' in self.schema['required']:
                row.problem = f"{where}: missing transaction date."
            elif header is not None and not _is_blank(raw):
                row.problem = f"{where}: unreadable date '{raw}'."


class FuelExtractor(PlatformExtractor):
    """Fuel cards: the plate column often carries a free-text description."""

    def extract(self, row_index, fields):
        row = super().extract(row_index, fields)
        if row.plate and not re.search(r'\d', row.plate):
            row.plate = None
        return row


class TelemetryExtractor(PlatformExtractor):
    """Vehicle tracking: line items only, never a financial total."""

    def extract(self, row_index, fields):
        row = super().extract(row_index, fields)
        row.amount = 0.0
        row.reimbursed = 0.0
        return row


EXTRACTORS = {
    platform: PlatformExtractor(platform) for platform in PLATFORM_SCHEMAS
}
EXTRACTORS[MYPRIO] = FuelExtractor(MYPRIO)
EXTRACTORS[CARTRACK] = TelemetryExtractor(CARTRACK)


def extract_rows(platform, rows):
    """Runs the platform's extractor over every row. Raises KeyError for unknown platforms."""
    extractor = EXTRACTORS[platform]
    extracted = [extractor.extract(index, fields) for index, fields in enumerate(rows)]
    logging.debug(f"  Extracted {len(extracted)} {platform_label(platform)} rows "
                  f"({sum(1 for r in extracted if not r.usable)} unusable).")
    return extracted
