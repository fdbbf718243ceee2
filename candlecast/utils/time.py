"""
Time utilities shared by the stores, the session cache and the scheduler.

Every component that needs "now" accepts a clock callable defaulting to
``utc_now`` so tests can drive time deterministically.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def to_micros(ts: datetime) -> int:
    """Convert a datetime to integer UTC microseconds since the epoch."""
    delta = ensure_utc(ts) - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_micros(value: Optional[int]) -> Optional[datetime]:
    """Inverse of ``to_micros``; passes None through."""
    if value is None:
        return None
    return datetime.fromtimestamp(value // 1_000_000, timezone.utc).replace(
        microsecond=value % 1_000_000
    )


def format_time(ts: Optional[datetime]) -> Optional[str]:
    """ISO8601 representation for logs and API payloads."""
    return ensure_utc(ts).isoformat() if ts is not None else None


def seconds_between(start: datetime, end: datetime) -> float:
    """Elapsed seconds from start to end (negative if end precedes start)."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()
