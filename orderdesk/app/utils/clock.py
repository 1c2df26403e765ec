"""Time helpers.

All persisted instants are UTC. Some drivers (SQLite) hand timestamps back
without an offset, so reads go through :func:`as_utc`.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return the current time as an aware UTC ``datetime``."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC ``datetime``."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def business_day(now: datetime, tz: str = "UTC") -> date:
    """Return the calendar date of ``now`` in the business time zone."""
    return as_utc(now).astimezone(ZoneInfo(tz)).date()


def day_bounds(day: date, tz: str = "UTC") -> tuple[datetime, datetime]:
    """Return the UTC instants bounding ``day`` in the business time zone."""
    start = datetime.combine(day, time.min, tzinfo=ZoneInfo(tz))
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
