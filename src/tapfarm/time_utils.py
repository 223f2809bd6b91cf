"""UTC time helpers shared by the farm and arcade cooldowns."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def hours(value: int) -> timedelta:
    """Cooldown length from a configured number of hours."""
    return timedelta(hours=value)


def to_unix(dt: datetime | None) -> int | None:
    """Unix timestamp in whole seconds, or None."""
    if dt is None:
        return None
    return int(as_utc(dt).timestamp())
