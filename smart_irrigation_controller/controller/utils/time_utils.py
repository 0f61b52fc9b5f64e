"""
Unified time utilities for the irrigation controller.

Ensures consistent timestamp handling across:
- DeviceStateManager (persistent snapshot JSON)
- Controller interlock arithmetic
- IrrigationEvent logging
"""

from datetime import datetime, timezone
from typing import Optional


def now() -> datetime:
    """Return current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO8601."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso(iso_str: Optional[str]) -> Optional[datetime]:
    """Convert ISO8601 string to an aware datetime (naive values are taken as UTC)."""
    if iso_str is None:
        return None
    dt = datetime.fromisoformat(iso_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def from_epoch_ms(value: float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)


def to_epoch_ms(dt: Optional[datetime]) -> int:
    """
    Convert datetime to epoch milliseconds.

    A missing timestamp maps to 0, i.e. "longer ago than any interlock window".
    """
    if dt is None:
        return 0
    return int(dt.timestamp() * 1000)


def elapsed_ms(start: Optional[datetime], end: datetime) -> int:
    """
    Milliseconds elapsed between `start` and `end`.

    :param start: Start datetime, or None if the event never happened.
    :param end: End datetime.
    :return: Elapsed milliseconds. A None start is treated as the epoch.
    """
    return to_epoch_ms(end) - to_epoch_ms(start)
