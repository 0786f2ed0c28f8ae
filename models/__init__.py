"""
Models package for Timegate
"""

from models.user_record import UserRecord, UserState, TransitionKind, QuotaStatus
from models.guild_config import GuildConfig
from models.setup_session import SetupSession, SetupStep

__all__ = ["UserRecord", "UserState", "TransitionKind", "QuotaStatus", "GuildConfig", "SetupSession", "SetupStep"]
