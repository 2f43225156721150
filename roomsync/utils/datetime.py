"""UTC datetime utilities."""

from datetime import date, datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    This function should be used instead of datetime.now() or datetime.utcnow()
    to ensure all timestamps are timezone-aware and stored in UTC.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Return the current calendar date in UTC."""
    return utc_now().date()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime read back from the database.

    Backends without timezone support (SQLite) return naive values for
    ``DateTime(timezone=True)`` columns; everything this service writes is UTC.

    Args:
        value: Datetime from a row, possibly naive

    Returns:
        Timezone-aware datetime, or None if value was None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
