"""
Time Utilities
UTC day-key arithmetic for the daily ledger
"""

from datetime import datetime, timezone

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def day_key_from_ms(ms: int) -> str:
    """Return the UTC calendar date (YYYY-MM-DD) containing the instant"""
    return datetime.fromtimestamp(ms // SECOND_MS, tz=timezone.utc).strftime("%Y-%m-%d")


def next_utc_midnight(ms: int) -> int:
    """Return the first UTC midnight strictly after the instant"""
    return (ms // DAY_MS + 1) * DAY_MS


def previous_day_key(ms: int) -> str:
    """Day-key of the UTC day before the one containing the instant"""
    return day_key_from_ms(ms - DAY_MS)

