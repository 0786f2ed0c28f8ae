"""
Message Utilities
Helpers for formatting replies and parsing mentions
"""

import re
from datetime import datetime, timezone
from typing import Optional

USER_MENTION = re.compile(r"^<@!?(\d+)>$")
ROLE_MENTION = re.compile(r"^<@&(\d+)>$")
SNOWFLAKE = re.compile(r"^\d+$")

BLOCK_REASON = "Daily voice limit reached"
UNBLOCK_REASON = "Timegate expired"
DISCONNECT_REASON = "Time limit reached"


def format_duration(ms: int) -> str:
    """Format milliseconds as 'Xm Ys'"""
    total_seconds = max(0, ms) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s"


def format_utc(ms: Optional[int]) -> str:
    """Format an epoch-ms instant as an RFC 1123 UTC date"""
    if ms is None:
        return "unknown time"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")


def parse_user_id(raw: str) -> Optional[str]:
    """Extract a user ID from a mention or a bare ID"""
    raw = raw.strip()
    match = USER_MENTION.match(raw)
    if match:
        return match.group(1)
    return raw if SNOWFLAKE.match(raw) else None


def parse_role_id(raw: str) -> Optional[str]:
    """Extract a role ID from a role mention or a bare ID"""
    raw = raw.strip()
    match = ROLE_MENTION.match(raw)
    if match:
        return match.group(1)
    return raw if SNOWFLAKE.match(raw) else None


def block_notice(limit_minutes: int, block_hours: int = 24) -> str:
    return (
        f"You have hit the {limit_minutes} minute voice limit. "
        f"You have been blocked from voice for {block_hours} hours."
    )


def unblock_notice(block_hours: int = 24) -> str:
    return f"Your {block_hours}-hour voice block has expired. You can join voice again."
