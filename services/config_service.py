"""
Config Service
Process settings from the environment and per-guild config from config.json
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiofiles
from dotenv import load_dotenv

from models.guild_config import GuildConfig
from utils.errors import ConfigError

logger = logging.getLogger("timegate")


@dataclass
class Settings:
    """Process-wide settings"""
    bot_token: Optional[str] = None
    command_prefix: str = "!tg"
    data_file: str = os.path.join("data", "state.json")
    config_file: str = "config.json"
    port: int = 8004
    block_duration_hours: int = 24
    block_sweep_seconds: int = 60
    session_sweep_seconds: int = 30
    env_guild: Optional[dict] = field(default=None)

    @classmethod
    def from_env(cls) -> 'Settings':
        """Build settings from the environment, reading a .env file first if present"""
        load_dotenv()

        env_guild = None
        if os.getenv("GUILD_ID") and os.getenv("BLOCK_ROLE_ID") and os.getenv("TRACK_ROLE_ID"):
            env_guild = {
                "id": os.getenv("GUILD_ID"),
                "blockRoleId": os.getenv("BLOCK_ROLE_ID"),
                "trackRoleId": os.getenv("TRACK_ROLE_ID"),
                "dailyLimitMinutes": _int_env("DAILY_LIMIT_MINUTES", 60),
            }

        return cls(
            bot_token=os.getenv("DISCORD_BOT_TOKEN") or None,
            command_prefix=os.getenv("COMMAND_PREFIX", "!tg"),
            data_file=os.getenv("DATA_FILE", os.path.join("data", "state.json")),
            config_file=os.getenv("CONFIG_FILE", "config.json"),
            port=_int_env("PORT", 8004),
            block_duration_hours=_int_env("BLOCK_DURATION_HOURS", 24),
            block_sweep_seconds=_int_env("BLOCK_SWEEP_SECONDS", 60),
            session_sweep_seconds=_int_env("SESSION_SWEEP_SECONDS", 30),
            env_guild=env_guild,
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def validate_guild_entry(entry: dict) -> GuildConfig:
    """Validate one config.json guild entry"""
    if not isinstance(entry, dict):
        raise ConfigError(f"Guild entry must be an object, got {entry!r}")
    if not entry.get("id") or not entry.get("blockRoleId") or not entry.get("trackRoleId"):
        raise ConfigError(
            f"Guild entry incomplete (id, blockRoleId, trackRoleId required). Offending entry: {json.dumps(entry)}"
        )
    minutes = entry.get("dailyLimitMinutes")
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
        raise ConfigError(f"Guild {entry['id']} dailyLimitMinutes must be a positive integer (minutes).")
    return GuildConfig.from_dict(entry)


class GuildConfigService:
    """Registry of guild configs backed by config.json"""

    def __init__(self, file_path: str, env_guild: Optional[dict] = None):
        """
        Initialize the registry.

        Args:
            file_path: Path of config.json
            env_guild: Single-guild override taken from the environment
        """
        self.file_path = file_path
        self.env_guild = env_guild
        self._guilds: Dict[str, GuildConfig] = {}

    def load(self):
        """Load guild configs; raises ConfigError on an invalid file"""
        file_config = {}
        if os.path.exists(self.file_path):
            try:
                with open(self.file_path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
            except (OSError, ValueError) as e:
                raise ConfigError(f"Failed to parse {self.file_path}: {e}") from e

        entries = file_config.get("guilds", []) if isinstance(file_config, dict) else None
        if self.env_guild:
            entries = [self.env_guild]
        if not isinstance(entries, list):
            raise ConfigError("guilds must be an array in config.json")

        self._guilds = {}
        for entry in entries:
            config = validate_guild_entry(entry)
            self._guilds[config.guild_id] = config

        for config in self._guilds.values():
            logger.info(
                f"Guild: {config.guild_id} | Block role: {config.block_role_id} | "
                f"Track role: {config.track_role_id} | Daily limit: {config.daily_limit_minutes} minutes"
            )

    def get(self, guild_id: str) -> Optional[GuildConfig]:
        return self._guilds.get(str(guild_id))

    def all(self) -> List[GuildConfig]:
        return list(self._guilds.values())

    def apply_setup(self, guild_id: str, block_role_id: str, track_role_id: str, minutes: int) -> GuildConfig:
        """Create or replace a guild's config"""
        config = GuildConfig(
            guild_id=str(guild_id),
            block_role_id=str(block_role_id),
            track_role_id=str(track_role_id),
            daily_limit_minutes=minutes,
        )
        self._guilds[config.guild_id] = config
        return config

    def set_limit(self, guild_id: str, minutes: int) -> GuildConfig:
        """Update a configured guild's daily limit"""
        config = self._guilds.get(str(guild_id))
        if config is None:
            raise ConfigError(f"Guild {guild_id} is not configured")
        if minutes <= 0:
            raise ConfigError("Daily limit must be a positive number of minutes")
        config.daily_limit_minutes = minutes
        return config

    async def save(self, guild_id: str):
        """Merge a guild's config into config.json, keeping unrelated keys"""
        config = self._guilds.get(str(guild_id))
        if config is None:
            return

        existing = {}
        if os.path.exists(self.file_path):
            try:
                async with aiofiles.open(self.file_path, mode="r", encoding="utf-8") as f:
                    existing = json.loads(await f.read())
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read {self.file_path} before saving, rewriting it: {e}")
                existing = {}
        if not isinstance(existing, dict):
            existing = {}

        guilds = existing.get("guilds") if isinstance(existing.get("guilds"), list) else []
        for i, entry in enumerate(guilds):
            if isinstance(entry, dict) and str(entry.get("id")) == config.guild_id:
                guilds[i] = {**entry, **config.to_dict()}
                break
        else:
            guilds.append(config.to_dict())

        existing["guilds"] = guilds
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)
        async with aiofiles.open(self.file_path, mode="w", encoding="utf-8") as f:
            await f.write(json.dumps(existing, indent=2))
        logger.info(f"Saved config for guild {config.guild_id} to {self.file_path}")
