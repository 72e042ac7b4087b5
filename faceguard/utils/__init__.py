"""
Utility modules package.
"""

from .timing import (
    bump_timestamp,
    day_key,
    format_duration,
    now_ms,
    parse_iso,
    to_iso,
    utc_now,
)

__all__ = [
    'bump_timestamp',
    'day_key',
    'format_duration',
    'now_ms',
    'parse_iso',
    'to_iso',
    'utc_now',
]
