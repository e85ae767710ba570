"""
GMT+8 datetime utilities for Malaysian business operations.

All lead timestamps are stored as ISO 8601 strings carrying an explicit
``+08:00`` offset (``YYYY-MM-DDTHH:MM:SS.mmm+08:00``). Display dates use
``DD/MM/YYYY``. Malaysia has no DST, so the offset is a fixed constant and
no timezone database is needed.

Parsing helpers are total and return ``None`` for malformed input.
Arithmetic and comparison helpers raise ``ValueError`` instead, because
their callers are expected to pass canonical timestamps.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union


# Core timezone constants
MY_OFFSET = "+08:00"
MY_TZ = timezone(timedelta(hours=8))

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

_DDMMYYYY_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


# =============================================================================
# Parsing
# =============================================================================

def parse_iso_datetime(value: str) -> datetime:
    """
    Parse an ISO 8601 string into an aware datetime.

    Naive values are treated as UTC (database ``CURRENT_TIMESTAMP`` style).

    Raises:
        ValueError: If the value is not a parseable ISO string
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid ISO datetime: {value!r}")

    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        raise ValueError(f"Invalid ISO datetime: {value!r}") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_my(value: str) -> datetime:
    return parse_iso_datetime(value).astimezone(MY_TZ)


# =============================================================================
# Construction
# =============================================================================

def now_my() -> datetime:
    """Current datetime in Malaysia time."""
    return datetime.now(MY_TZ)


def to_my_iso(value: datetime) -> str:
    """
    Convert a datetime to a canonical Malaysia-time ISO string.

    Args:
        value: Aware datetime, or naive datetime interpreted as UTC

    Returns:
        ISO string with ``+08:00`` offset
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(MY_TZ).isoformat(timespec="milliseconds")


def now_my_iso() -> str:
    """Current datetime as a canonical ``+08:00`` ISO string."""
    return to_my_iso(now_my())


def parse_ddmmyyyy_to_my_iso(ddmmyyyy: str, hour: int = 9, minute: int = 0) -> Optional[str]:
    """
    Parse a DD/MM/YYYY string to a canonical Malaysia-time ISO string.

    Args:
        ddmmyyyy: Date string in DD/MM/YYYY format
        hour: Hour (0-23) in Malaysian time, defaults to 9 (business hours start)
        minute: Minute (0-59)

    Returns:
        ISO string with ``+08:00`` offset, or None for invalid input
    """
    if not ddmmyyyy or not isinstance(ddmmyyyy, str):
        return None

    parts = ddmmyyyy.strip().split("/")
    if len(parts) != 3:
        return None

    try:
        day, month, year = (int(part) for part in parts)
    except ValueError:
        return None

    if day < 1 or day > 31:
        return None
    if month < 1 or month > 12:
        return None
    if year < 1900 or year > 2100:
        return None

    try:
        parsed = datetime(year, month, day, hour, minute, tzinfo=MY_TZ)
    except ValueError:
        # 31/02/2024 and friends
        return None
    return to_my_iso(parsed)


def convert_to_my_iso(iso_string: Optional[str]) -> Optional[str]:
    """
    Convert an ISO string in any offset to a canonical Malaysia-time string.

    Returns:
        ISO string with ``+08:00`` offset, or None for invalid input
    """
    if not iso_string:
        return None
    try:
        return to_my_iso(parse_iso_datetime(iso_string))
    except ValueError:
        return None


def migrate_ddmmyyyy_to_iso(value: Optional[str], default_hour: int = 9) -> Optional[str]:
    """
    Normalize a stored date value that may be DD/MM/YYYY or ISO.

    Args:
        value: Date string in either format
        default_hour: Hour used when the input carries no time

    Returns:
        Canonical ISO string or None if invalid
    """
    if not value or not isinstance(value, str):
        return None

    cleaned = value.strip()
    if not cleaned:
        return None

    if "/" in cleaned:
        return parse_ddmmyyyy_to_my_iso(cleaned, default_hour)
    return convert_to_my_iso(cleaned)


# =============================================================================
# Arithmetic & Comparison
# =============================================================================

def add_days_my(iso_string: str, days: Union[int, float]) -> str:
    """
    Add calendar days (can be negative or fractional) to an ISO string.

    Raises:
        ValueError: If ``iso_string`` is not parseable
    """
    return to_my_iso(_to_my(iso_string) + timedelta(days=days))


def add_business_days_my(iso_string: str, business_days: int) -> str:
    """
    Add business days (Mon-Fri) to an ISO string.

    Walks forward one calendar day at a time and counts only weekdays in
    Malaysia time, so the result always lands on a weekday for
    ``business_days >= 1``. Zero returns the input instant unchanged.

    Raises:
        ValueError: If ``iso_string`` is not parseable
    """
    current = _to_my(iso_string)
    days_added = 0

    while days_added < business_days:
        current += timedelta(days=1)
        # Skip weekends (5 = Saturday, 6 = Sunday)
        if current.weekday() < 5:
            days_added += 1

    return to_my_iso(current)


def compare_iso_strings(a: str, b: str) -> int:
    """
    Compare two ISO datetime strings by instant.

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b

    Raises:
        ValueError: If either value is not parseable
    """
    time_a = parse_iso_datetime(a)
    time_b = parse_iso_datetime(b)

    if time_a < time_b:
        return -1
    if time_a > time_b:
        return 1
    return 0


def days_between_iso(start: str, end: str) -> int:
    """
    Whole days between two ISO strings (positive if end > start), floored.

    Raises:
        ValueError: If either value is not parseable
    """
    diff = parse_iso_datetime(end) - parse_iso_datetime(start)
    return math.floor(diff.total_seconds() / 86400)


def is_today_my(iso_string: str) -> bool:
    """True if the instant falls on today's calendar date in Malaysia."""
    return _to_my(iso_string).date() == now_my().date()


def is_past_my(iso_string: str) -> bool:
    return compare_iso_strings(iso_string, now_my_iso()) < 0


# =============================================================================
# Display Helpers
# =============================================================================

def format_my_iso_for_display(iso_string: str) -> str:
    """Format as ``DD/MM/YYYY HH:mm`` in Malaysia time."""
    return _to_my(iso_string).strftime("%d/%m/%Y %H:%M")


def extract_date_from_iso(iso_string: str) -> str:
    """Date portion as ``DD/MM/YYYY`` in Malaysia time."""
    return _to_my(iso_string).strftime("%d/%m/%Y")


def get_month_from_iso(iso_string: str) -> str:
    """English month name (e.g. "January") in Malaysia time."""
    return MONTH_NAMES[_to_my(iso_string).month - 1]


def get_year_from_iso(iso_string: str) -> str:
    """Four-digit year string in Malaysia time."""
    return str(_to_my(iso_string).year)


# =============================================================================
# DD/MM/YYYY Helpers
# =============================================================================

def is_valid_date_format(date_str: Optional[str]) -> bool:
    """Check whether a string is strictly ``DD/MM/YYYY``."""
    if not date_str or not isinstance(date_str, str):
        return False
    return bool(_DDMMYYYY_RE.match(date_str.strip()))


def standardize_date(date_str: Optional[str]) -> Optional[str]:
    """
    Standardize ``D/M/YYYY`` variants to zero-padded ``DD/MM/YYYY``.

    Returns:
        Padded date string, or None if the input is not a valid date
    """
    if not date_str or not isinstance(date_str, str):
        return None

    cleaned = date_str.strip()
    if parse_ddmmyyyy_to_my_iso(cleaned) is None:
        return None

    day, month, year = cleaned.split("/")
    return f"{int(day):02d}/{int(month):02d}/{int(year):04d}"


def get_month_from_date(date_str: Optional[str]) -> str:
    """
    Month name from a ``DD/MM/YYYY`` or ISO date string; empty if unknown.
    """
    if not date_str:
        return ""

    parts = date_str.split("/")
    if len(parts) == 3:
        try:
            month_index = int(parts[1]) - 1
        except ValueError:
            return ""
        return MONTH_NAMES[month_index] if 0 <= month_index < 12 else ""

    converted = convert_to_my_iso(date_str)
    return get_month_from_iso(converted) if converted else ""


def get_year_from_date(date_str: Optional[str]) -> str:
    """Year from a ``DD/MM/YYYY`` or ISO date string; empty if unknown."""
    if not date_str:
        return ""

    parts = date_str.split("/")
    if len(parts) == 3:
        return parts[2].strip()

    converted = convert_to_my_iso(date_str)
    return get_year_from_iso(converted) if converted else ""
