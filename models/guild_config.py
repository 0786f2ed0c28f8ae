"""
Guild Config Model
Per-guild roles and daily voice limit
"""

from dataclasses import dataclass

from utils.time_utils import MINUTE_MS


@dataclass
class GuildConfig:
    """Roles and limit configured for a guild"""
    guild_id: str
    block_role_id: str
    track_role_id: str
    daily_limit_minutes: int = 60

    @property
    def limit_ms(self) -> int:
        """Daily limit in milliseconds"""
        return self.daily_limit_minutes * MINUTE_MS

    def to_dict(self) -> dict:
        """Convert to the config file representation"""
        return {
            "id": self.guild_id,
            "blockRoleId": self.block_role_id,
            "trackRoleId": self.track_role_id,
            "dailyLimitMinutes": self.daily_limit_minutes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GuildConfig':
        """Create from a config file entry"""
        return cls(
            guild_id=str(data["id"]),
            block_role_id=str(data["blockRoleId"]),
            track_role_id=str(data["trackRoleId"]),
            daily_limit_minutes=data.get("dailyLimitMinutes", 60),
        )
