"""Coercions shared by the GPSLogger payload models."""

from __future__ import annotations

from datetime import datetime, timezone


def empty_to_none(value):
    """GPSLogger sends absent optional values as empty strings."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _from_unix(value: int, per_second: int = 1) -> datetime:
    try:
        return datetime.fromtimestamp(value / per_second, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"unix time {value} is out of range") from e


def from_unix_seconds(value):
    value = empty_to_none(value)
    if value is None or isinstance(value, datetime):
        return value
    return _from_unix(int(value))


def from_unix_millis(value):
    value = empty_to_none(value)
    if value is None or isinstance(value, datetime):
        return value
    return _from_unix(int(value), per_second=1000)
