"""Datetime helpers: UTC timestamps and property-local calendar dates."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    Use this instead of datetime.now() or datetime.utcnow() so that all
    stored timestamps are timezone-aware UTC.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def is_valid_timezone(name: str) -> bool:
    """Return True if name is a known IANA timezone."""
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def to_local_date(value: date | datetime, tz_name: str) -> date:
    """
    Reduce an iCalendar date or date-time to a calendar date in the property's timezone.

    - date values (VALUE=DATE, the usual all-day booking form) pass through
    - floating datetimes (no tzinfo) are already property-local
    - UTC or TZID-qualified datetimes are converted to the property's zone first

    Args:
        value: DTSTART/DTEND value as decoded by icalendar
        tz_name: IANA timezone of the property

    Returns:
        The calendar date in the property's timezone

    Example:
        >>> to_local_date(datetime(2025, 6, 1, 2, 0, tzinfo=timezone.utc), "America/New_York")
        datetime.date(2025, 5, 31)
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(ZoneInfo(tz_name)).date()
