"""
Timestamp Utilities

Heartbeats carry epoch milliseconds (what devices send); alarms and
cleaning entries carry timezone-aware UTC datetimes. These helpers
convert between the two and provide the default clock used by every
service.

Example:
    now = utc_now()
    age_ms = to_epoch_ms(now) - record.last_seen_at
"""

import math
from datetime import datetime, timezone
from typing import Callable

MS_PER_MINUTE = 60 * 1000
MS_PER_DAY = 24 * 60 * MS_PER_MINUTE

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch_ms(ts: datetime) -> float:
    """
    Convert a datetime to epoch milliseconds.

    Naive datetimes are taken to be UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.timestamp() * 1000


def from_epoch_ms(value: float) -> datetime:
    """Convert epoch milliseconds to a UTC datetime."""
    return datetime.fromtimestamp(value / 1000, timezone.utc)


def is_epoch_number(value) -> bool:
    """
    Check whether a heartbeat timestamp is usable.

    Booleans, strings, NaN and infinities are rejected: devices that send
    any of these are treated as never having been seen.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_iso(ts_iso: str | datetime | None) -> datetime | None:
    """
    Parse an ISO timestamp (as returned by Supabase) into a UTC datetime.

    Args:
        ts_iso: ISO format timestamp (e.g., "2024-01-15T10:30:17.234Z")

    Returns:
        Aware datetime, or None if the value is empty or unparseable
    """
    if ts_iso is None or ts_iso == "":
        return None
    if isinstance(ts_iso, datetime):
        return ts_iso if ts_iso.tzinfo else ts_iso.replace(tzinfo=timezone.utc)

    try:
        dt = datetime.fromisoformat(ts_iso.replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    """Number of complete days elapsed from `earlier` to `later`."""
    elapsed_ms = to_epoch_ms(later) - to_epoch_ms(earlier)
    return math.floor(elapsed_ms / MS_PER_DAY)
