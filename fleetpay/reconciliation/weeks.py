# ==============================================================================
# fleetpay/reconciliation/weeks.py
# ------------------------------------------------------------------------------
# Canonical Monday-Sunday weeks, labelled with the ISO-8601 week number.
# ==============================================================================

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from .errors import PayloadError

WEEK_ID_PATTERN = re.compile(r'^(\d{4})-W(\d{2})$')


@dataclass(frozen=True)
class Week:
    week_id: str
    week_start: date
    week_end: date

    @property
    def starts_at(self):
        return datetime.combine(self.week_start, time.min)

    @property
    def ends_at(self):
        return datetime.combine(self.week_end, time.max)

    def contains(self, moment):
        """True if a date or datetime falls inside the week (both ends inclusive)."""
        if isinstance(moment, datetime):
            return self.starts_at <= moment <= self.ends_at
        return self.week_start <= moment <= self.week_end

    def offset(self, weeks):
        return week_for_date(self.week_start + timedelta(weeks=weeks))

    def to_dict(self):
        return {
            'weekId': self.week_id,
            'weekStart': self.week_start.isoformat(),
            'weekEnd': self.week_end.isoformat(),
        }


def week_for_date(value):
    """Returns the Week containing the given date, datetime or ISO date string."""
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    if isinstance(value, datetime):
        value = value.date()
    iso_year, iso_week, iso_weekday = value.isocalendar()
    start = value - timedelta(days=iso_weekday - 1)
    return Week(f"{iso_year}-W{iso_week:02d}", start, start + timedelta(days=6))


def parse_week_id(week_id):
    """Parses a 'YYYY-Www' label into a Week. Raises PayloadError on bad labels."""
    match = WEEK_ID_PATTERN.match(str(week_id).strip())
    if not match:
        raise PayloadError(f"Invalid week id '{week_id}'. Expected the form YYYY-Www.")
    year, number = int(match.group(1)), int(match.group(2))
    try:
        start = date.fromisocalendar(year, number, 1)
    except ValueError:
        raise PayloadError(f"Week {number} does not exist in {year}.")
    return Week(f"{year}-W{number:02d}", start, start + timedelta(days=6))


def weeks_between(first, second):
    """Whole weeks from the week of `first` to the week of `second` (may be negative)."""
    return (week_for_date(second).week_start - week_for_date(first).week_start).days // 7
