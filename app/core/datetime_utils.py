"""Centralized datetime utilities for consistent timezone handling.

All database timestamps are naive UTC. Delivery matching works on the
subscriber's local wall clock, formatted as "HH:MM".

Usage:
    from app.core.datetime_utils import local_now, format_hhmm

    now = local_now(subscriber.timezone, default="Europe/Amsterdam")
    if format_hhmm(now) == subscriber.morning_time:
        ...
"""

import re
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Strict 24-hour clock with leading zeros: 00:00 .. 23:59
HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

FALLBACK_TIMEZONE = "UTC"


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def aware_utc_now() -> datetime:
    """Get current UTC time as an aware datetime."""
    return datetime.now(UTC)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str | None) -> bool:
    """Check if a timezone name is a valid IANA identifier.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        True if valid IANA timezone
    """
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return False


def resolve_timezone(tz_name: str | None, default: str) -> ZoneInfo:
    """Resolve a subscriber timezone, falling back to the system default.

    An unset or unknown name uses `default`; an invalid default uses UTC.
    """
    for candidate in (tz_name, default):
        if is_valid_timezone(candidate):
            return ZoneInfo(candidate)  # type: ignore[arg-type]
    return ZoneInfo(FALLBACK_TIMEZONE)


def local_now(tz_name: str | None, default: str, now: datetime | None = None) -> datetime:
    """Get the current instant expressed in a subscriber's timezone.

    Args:
        tz_name: Subscriber's IANA timezone (may be empty or invalid)
        default: System-wide default timezone
        now: Instant to convert; aware, or naive UTC. Defaults to the real clock.

    Returns:
        Aware datetime in the resolved local timezone
    """
    tz = resolve_timezone(tz_name, default)
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(tz)


def format_hhmm(dt: datetime) -> str:
    """Format the wall-clock time of a datetime as "HH:MM"."""
    return dt.strftime("%H:%M")


def is_valid_hhmm(value: object) -> bool:
    """Check strict "HH:MM" 24-hour format.

    "08:30" and "23:59" pass; "8:30", "8:3", "24:00" and non-strings do not.
    """
    return isinstance(value, str) and HHMM_PATTERN.fullmatch(value) is not None


def local_date(dt: datetime) -> date:
    """Calendar date of an aware datetime in its own timezone."""
    return dt.date()


def local_tomorrow(dt: datetime) -> date:
    """Calendar date following the local date of `dt`."""
    return dt.date() + timedelta(days=1)
