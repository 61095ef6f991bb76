"""Calendar-day helpers for `YYYY-MM-DD` dates.

Dates travel through the ledger as plain strings so that whatever was
recorded is written back unchanged. Day deltas go through ordinal day
numbers; a date that does not parse makes the delta 0 instead of raising.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

DATE_FORMAT = "%Y-%m-%d"


def today_date() -> str:
    """Local calendar date as `YYYY-MM-DD`."""
    return date.today().strftime(DATE_FORMAT)


def _day_number(value: str) -> Optional[int]:
    try:
        return datetime.strptime(value, DATE_FORMAT).date().toordinal()
    except (TypeError, ValueError):
        return None


def days_between(d1: str, d2: str) -> int:
    """Return d1 - d2 in whole calendar days (0 if either date is unparseable)."""
    n1 = _day_number(d1)
    n2 = _day_number(d2)
    if n1 is None or n2 is None:
        return 0
    return n1 - n2
