"""Shared utility functions for blueprints and services.

parse_date:          lenient date parsing (None on bad input)
parse_int:           lenient int parsing for query args
whole_days_between:  floor of elapsed days, used for staleness rules
"""
import math
from datetime import date, datetime, timezone


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_int(value):
    """Return ``int(value)`` or None for empty/invalid input."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def as_utc(value):
    """Normalise a datetime to aware UTC (SQLite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def whole_days_between(earlier, later) -> int:
    """Floor of the elapsed days between two datetimes (or dates)."""
    if isinstance(earlier, datetime) or isinstance(later, datetime):
        if not isinstance(earlier, datetime):
            earlier = datetime.combine(earlier, datetime.min.time())
        if not isinstance(later, datetime):
            later = datetime.combine(later, datetime.min.time())
        delta = as_utc(later) - as_utc(earlier)
        return math.floor(delta.total_seconds() / 86400)
    return (later - earlier).days

