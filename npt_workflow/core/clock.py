"""Time helpers.

All workflow timestamps are timezone-aware UTC. SQLite hands back naive
datetimes, so values read from the store go through ``as_utc`` before they
are compared.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
