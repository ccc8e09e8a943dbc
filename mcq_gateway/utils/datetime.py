"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from drivers that drop tzinfo."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """First UTC midnight strictly after ``now``."""

    now = ensure_utc(now)
    return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def to_epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


__all__ = ["utc_now", "ensure_utc", "next_utc_midnight", "to_epoch_millis"]
