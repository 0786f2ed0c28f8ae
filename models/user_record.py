"""
User Record Model
Per-(guild, user) accounting state for voice time tracking
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class UserState(Enum):
    """Lifecycle state of a tracked member"""
    IDLE = "idle"
    IN_SESSION = "in_session"
    BLOCKED = "blocked"


class TransitionKind(Enum):
    """Voice state change delivered by the gateway"""
    JOINED = "joined"
    LEFT = "left"
    SWITCHED = "switched"


@dataclass
class UserRecord:
    """Accounting state for one member of one guild (timestamps in epoch ms)"""
    active_session_start: Optional[int] = None
    daily_totals: Dict[str, int] = field(default_factory=dict)
    block_expires_at: Optional[int] = None

    def in_session(self) -> bool:
        """Check if a session is open"""
        return self.active_session_start is not None

    def is_blocked(self, now_ms: int) -> bool:
        """Check if the block is still in force at the given instant"""
        return self.block_expires_at is not None and self.block_expires_at > now_ms

    def block_expired(self, now_ms: int) -> bool:
        """Check if a block is recorded but has already run out"""
        return self.block_expires_at is not None and self.block_expires_at <= now_ms

    def state(self, now_ms: int) -> UserState:
        if self.is_blocked(now_ms):
            return UserState.BLOCKED
        if self.in_session():
            return UserState.IN_SESSION
        return UserState.IDLE

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "active_session_start": self.active_session_start,
            "daily_totals": dict(self.daily_totals),
            "block_expires_at": self.block_expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'UserRecord':
        """Create from dictionary, dropping negative or malformed totals"""
        totals = {}
        for key, value in (data.get("daily_totals") or {}).items():
            if isinstance(value, (int, float)) and value >= 0:
                totals[str(key)] = int(value)
        return cls(
            active_session_start=_optional_ms(data.get("active_session_start")),
            daily_totals=totals,
            block_expires_at=_optional_ms(data.get("block_expires_at")),
        )


@dataclass(frozen=True)
class QuotaStatus:
    """Answer to a status query"""
    remaining_ms: int
    blocked: bool
    blocked_until: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "remaining_ms": self.remaining_ms,
            "blocked": self.blocked,
            "blocked_until": self.blocked_until,
        }


def _optional_ms(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)
