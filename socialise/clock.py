"""
Time helpers shared by the queue, the manager and the worker.

All timestamps are handled as timezone-aware UTC datetimes. SQLite hands
DateTime columns back without tzinfo, so values read from the store go
through ``as_utc`` before being compared.
"""
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_millis(value: datetime) -> int:
    return int(as_utc(value).timestamp() * 1000)


def get_zone(name: Optional[str]) -> ZoneInfo:
    """IANA zone by name (default UTC); unknown names raise ValueError."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e
