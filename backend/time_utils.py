"""
Time utilities for the Kanban backend.

This module provides a single source of truth for time operations, so the
timer logic and tests agree on what "now" means.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    SQLite returns naive datetimes even for DateTime(timezone=True) columns;
    those are stored as UTC, so they are tagged rather than converted.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_minutes(started_at: datetime, now: datetime) -> int:
    """
    Whole minutes elapsed between two instants, truncated (never rounded).

    Returns 0 when `now` is before `started_at` (clock skew), so tracked time
    can never decrease.

    Example:
        >>> start = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> elapsed_minutes(start, start.replace(minute=2, second=5))
        2
    """
    seconds = (as_utc(now) - as_utc(started_at)).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // 60)
