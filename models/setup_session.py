"""
Setup Session Model
Tracks an admin's step-by-step setup conversation
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

SETUP_TIMEOUT = timedelta(minutes=5)


class SetupStep(Enum):
    BLOCK_ROLE = 1
    TRACK_ROLE = 2
    DAILY_LIMIT = 3


@dataclass
class SetupSession:
    """A setup conversation in one guild, driven by one member"""
    user_id: int
    step: SetupStep = SetupStep.BLOCK_ROLE
    block_role_id: Optional[str] = None
    track_role_id: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    def is_expired(self, now: datetime = None) -> bool:
        """Check if the conversation has been abandoned"""
        return (now or datetime.now()) - self.started_at > SETUP_TIMEOUT
