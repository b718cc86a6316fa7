# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for EduStats.

All timestamps are stored in UTC and all Python datetimes are
timezone-aware, so naive/aware mixing errors cannot occur.

Usage:
    from edustats.utils.datetime import to_date, utc_now

    now = utc_now()
    snapshot_key = to_date(now)
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Naive datetimes are assumed to be UTC (SQLite returns them naive).

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_date(value: date | datetime | None, clock: Clock = utc_now) -> date:
    """Truncate a date or datetime to its UTC calendar day.

    Args:
        value: Date, datetime, or None for "today".
        clock: Clock used when value is None.

    Returns:
        The calendar date.
    """
    if value is None:
        return clock().date()
    if isinstance(value, datetime):
        return ensure_utc(value).date()  # type: ignore[union-attr]
    return value


def days_ago(days: int, clock: Clock = utc_now) -> datetime:
    """Get the datetime N days before now."""
    return clock() - timedelta(days=days)


def hours_ago(hours: int, clock: Clock = utc_now) -> datetime:
    """Get the datetime N hours before now."""
    return clock() - timedelta(hours=hours)
