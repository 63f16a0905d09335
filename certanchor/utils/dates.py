"""
Date normalization for certificate grant and expiration dates.
Every accepted input is rewritten as MM/DD/YYYY.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

MIN_YEAR = 1900
MAX_YEAR = 9999

MONTHS_WITH_31_DAYS = {1, 3, 5, 7, 8, 10, 12}
MONTHS_WITH_30_DAYS = {4, 6, 9, 11}

# Tried in order for inputs of 11 characters or more
LONG_DATE_FORMATS = (
    "%a %b %d %Y %H:%M:%S GMT%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%d %B, %Y",
    "%d %b, %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

_TIMEZONE_LABEL = re.compile(r"\s*\([^)]*\)\s*$")
_SHORT_DATE = re.compile(r"^(\d{1,4})[/-](\d{1,2})[/-](\d{1,4})$")


class DateComparison(str, Enum):
    """Ordering of a grant date relative to an expiration date."""
    EARLIER = "earlier"
    EQUAL = "equal"
    LATER = "later"


def is_valid_calendar_date(month: int, day: int, year: int) -> bool:
    """
    Check month, day and year ranges, including February in leap years.

    Any year divisible by 4 counts as a leap year.
    """
    if not (1 <= month <= 12 and 1 <= day <= 31 and MIN_YEAR <= year <= MAX_YEAR):
        return False
    if month in MONTHS_WITH_31_DAYS:
        return True
    if month in MONTHS_WITH_30_DAYS:
        return day <= 30
    return day <= (29 if year % 4 == 0 else 28)


def _split_short_date(value: str) -> Optional[Tuple[int, int, int]]:
    match = _SHORT_DATE.match(value)
    if not match:
        return None
    first, second, third = match.groups()
    if len(first) == 4:
        # ISO order, YYYY-MM-DD
        return int(second), int(third), int(first)
    return int(first), int(second), int(third)


def _parse_date_parts(value: str) -> Optional[Tuple[int, int, int]]:
    if len(value) < 11:
        parts = _split_short_date(value)
        if parts and is_valid_calendar_date(*parts):
            return parts
        return None

    candidate = _TIMEZONE_LABEL.sub("", value)
    for date_format in LONG_DATE_FORMATS:
        try:
            parsed = datetime.strptime(candidate, date_format)
        except ValueError:
            continue
        parts = (parsed.month, parsed.day, parsed.year)
        if is_valid_calendar_date(*parts):
            return parts
        return None
    return None


def normalize_date(value) -> Optional[str]:
    """
    Normalize a date to MM/DD/YYYY.

    Short inputs are read month-first (M/D/YYYY, M-D-YYYY) or as YYYY-MM-DD;
    longer inputs are tried against LONG_DATE_FORMATS in order.

    Args:
        value: Date string, or a datetime as produced by spreadsheet cells

    Returns:
        Normalized date, or None when the input is not a valid date
    """
    if isinstance(value, datetime):
        value = value.strftime("%m/%d/%Y")
    if not isinstance(value, str):
        return None

    parts = _parse_date_parts(value.strip())
    if parts is None:
        return None
    month, day, year = parts
    return f"{month:02d}/{day:02d}/{year:04d}"


def normalize_search_date(value: str) -> Optional[str]:
    """Normalize a backup search date to MM-DD-YYYY, or None if invalid."""
    if not isinstance(value, str) or len(value.strip()) >= 11:
        return None
    parts = _split_short_date(value.strip())
    if parts is None or not is_valid_calendar_date(*parts):
        return None
    month, day, year = parts
    return f"{month:02d}-{day:02d}-{year:04d}"


def compare_dates(grant_date: str, expiration_date: str) -> DateComparison:
    """
    Compare two normalized (MM/DD/YYYY) dates.

    Raises:
        ValueError: If either date is not normalized
    """
    def key(value: str) -> Tuple[int, int, int]:
        month, day, year = (int(part) for part in value.split("/"))
        return year, month, day

    grant, expiration = key(grant_date), key(expiration_date)
    if grant < expiration:
        return DateComparison.EARLIER
    if grant == expiration:
        return DateComparison.EQUAL
    return DateComparison.LATER
