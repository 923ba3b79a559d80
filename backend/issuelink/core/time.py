from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return an aware UTC timestamp.

    Use this instead of datetime.utcnow() to avoid tz-naive datetimes and
    upcoming stdlib deprecations.
    """

    return datetime.now(timezone.utc)


def as_aware_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def millis_between(start: datetime, end: datetime) -> int:
    """Whole milliseconds from start to end (negative when end is earlier)."""

    delta = as_aware_utc(end) - as_aware_utc(start)
    return int(delta.total_seconds() * 1000)
