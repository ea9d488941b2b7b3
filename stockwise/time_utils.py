from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Aware 'now' in UTC; the default clock."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are interpreted as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes to ISO-8601 with millisecond precision and trailing 'Z',
    the format browsers produce with Date.toISOString().
    """
    if dt is None:
        return None
    dt = ensure_utc(dt)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    - None / "" -> None
    - "...Z" or "...+/-HH:MM" is converted to UTC
    - naive values are interpreted as UTC
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if s.endswith('Z'):
        s = s[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(s))


def to_epoch_ms(dt: datetime) -> int:
    return (ensure_utc(dt) - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(value))


def truncate_ms(dt: datetime) -> datetime:
    dt = ensure_utc(dt)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)
