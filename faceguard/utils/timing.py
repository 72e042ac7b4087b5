"""
Timing utilities.

Helper functions for timestamps, calendar-day keys and durations.
All timestamps are timezone-aware UTC.
"""

import time
from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def day_key(moment: Optional[Union[datetime, date]] = None) -> str:
    """
    Calendar-day key (UTC ISO date) for a moment.

    Args:
        moment: Datetime or date (defaults to now)

    Returns:
        Date string, e.g. "2026-10-18"
    """
    if moment is None:
        moment = utc_now()
    if isinstance(moment, datetime):
        moment = _as_utc(moment).date()
    return moment.isoformat()


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return _as_utc(moment).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts the trailing "Z" written by JavaScript clients. Naive values
    are taken as UTC.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f'timestamp must be a string, got {type(value).__name__}')
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return _as_utc(datetime.fromisoformat(text))


def bump_timestamp(previous: int, now: Optional[int] = None) -> int:
    """
    Next lastUpdated value for a locally mutated record.

    Strictly greater than ``previous`` even if the local clock went back.
    """
    if now is None:
        now = now_ms()
    return max(int(now), int(previous or 0) + 1)


def format_duration(seconds: float) -> str:
    """
    Format a duration the way the daily report shows it.

    Args:
        seconds: Duration in seconds (negative values render as zero)

    Returns:
        Formatted string (e.g., "2h 30m")
    """
    seconds = max(0, int(seconds))

    hours = seconds // 3600
    minutes = (seconds % 3600) // 60

    return f'{hours}h {minutes}m'


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
