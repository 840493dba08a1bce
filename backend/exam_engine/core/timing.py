"""
Server-side exam clock.

All remaining-time and expiry decisions are computed here from the
session's persisted ``started_at`` and ``time_limit``. Nothing is held in
process memory and nothing the client reports about elapsed time is used,
so a restart loses no timing state.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get the current UTC time as a timezone-aware datetime.

    Returns:
        Current datetime in UTC with tzinfo set
    """
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware, assuming UTC if naive.

    SQLite returns naive datetimes even for ``DateTime(timezone=True)``
    columns, so every timestamp read back from the store passes through here
    before arithmetic.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware datetime

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime must not be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def deadline(started_at: datetime, time_limit: Optional[int]) -> Optional[datetime]:
    """Authoritative end timestamp of a session, or None for untimed sessions."""
    if time_limit is None:
        return None
    return ensure_timezone_aware(started_at) + timedelta(minutes=time_limit)


def remaining_seconds(
    started_at: datetime,
    time_limit: Optional[int],
    now: Optional[datetime] = None,
) -> Optional[int]:
    """
    Seconds left before the session deadline.

    Computed as ``time_limit * 60 - floor(elapsed_seconds)`` and floored at
    zero, so the value is non-increasing over time and reaches exactly zero
    at the deadline.

    Args:
        started_at: Server timestamp recorded when the session started
        time_limit: Time limit in minutes, or None for untimed sessions
        now: Current time (defaults to ``utc_now()``)

    Returns:
        Remaining whole seconds, or None when the session is untimed
    """
    if time_limit is None:
        return None
    now = ensure_timezone_aware(now) if now is not None else utc_now()
    elapsed = (now - ensure_timezone_aware(started_at)).total_seconds()
    remaining = time_limit * 60 - math.floor(elapsed)
    return max(0, remaining)


def is_expired(
    started_at: datetime,
    time_limit: Optional[int],
    now: Optional[datetime] = None,
) -> bool:
    """Whether a timed session has run out of time. Untimed sessions never expire."""
    remaining = remaining_seconds(started_at, time_limit, now)
    return remaining is not None and remaining <= 0
