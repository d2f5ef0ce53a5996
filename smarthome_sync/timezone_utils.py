"""
Time helpers for the SmartHome sync bridge.

Device updates and history records carry wall-clock timestamps in
milliseconds since the epoch. These helpers keep every conversion in one
place so the registry, the history aggregator and the HTTP layer agree.
"""

import time
from datetime import datetime, timezone, timedelta
from typing import Optional, Union

MS_PER_HOUR = 3600 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Get current UTC time with timezone information."""
    return datetime.now(timezone.utc)


def from_timestamp_ms(timestamp_ms: Union[int, float], tz: Optional[timezone] = None) -> datetime:
    """Convert an epoch-millisecond timestamp to a timezone-aware datetime.

    Args:
        timestamp_ms: Milliseconds since epoch
        tz: Target timezone (defaults to UTC)
    """
    if tz is None:
        tz = timezone.utc
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=tz)


def to_timestamp_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def hours_ago_ms(hours: Union[int, float], now: Optional[int] = None) -> int:
    """Epoch milliseconds `hours` before `now`."""
    if now is None:
        now = now_ms()
    return now - int(hours * MS_PER_HOUR)


def start_of_day_ms(now: Optional[int] = None) -> int:
    """Local midnight of the day containing `now`, in epoch milliseconds."""
    if now is None:
        now = now_ms()
    local = datetime.fromtimestamp(now / 1000.0).astimezone()
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def utc_isoformat(timestamp_ms: Optional[int] = None) -> str:
    """ISO-8601 string with a 'Z' suffix for an epoch-millisecond timestamp."""
    dt = utc_now() if timestamp_ms is None else from_timestamp_ms(timestamp_ms)
    return dt.isoformat().replace('+00:00', 'Z')


def age_seconds(timestamp_ms: int, now: Optional[int] = None) -> float:
    """Seconds elapsed since `timestamp_ms`."""
    if now is None:
        now = now_ms()
    return (now - timestamp_ms) / 1000.0


def is_expired(timestamp_ms: int, timeout_minutes: Union[int, float], now: Optional[int] = None) -> bool:
    """Check if a timestamp is older than the timeout.

    Args:
        timestamp_ms: Timestamp to check
        timeout_minutes: Timeout in minutes
        now: Reference time (defaults to the current time)
    """
    timeout = timedelta(minutes=timeout_minutes).total_seconds()
    return age_seconds(timestamp_ms, now) > timeout


def format_age(timestamp_ms: int, now: Optional[int] = None) -> str:
    """Format age as human-readable string.

    Returns:
        Human-readable age string (e.g., "2m 30s ago", "1h 15m ago")
    """
    total_seconds = max(age_seconds(timestamp_ms, now), 0)

    if total_seconds < 60:
        return f"{int(total_seconds)}s ago"
    elif total_seconds < 3600:
        minutes = int(total_seconds // 60)
        seconds = int(total_seconds % 60)
        return f"{minutes}m {seconds}s ago"
    elif total_seconds < 86400:
        hours = int(total_seconds // 3600)
        minutes = int((total_seconds % 3600) // 60)
        return f"{hours}h {minutes}m ago"
    else:
        days = int(total_seconds // 86400)
        hours = int((total_seconds % 86400) // 3600)
        return f"{days}d {hours}h ago"
