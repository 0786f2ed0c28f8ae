"""
Discord Effects
Applies block/unblock effects through the Discord API
"""

import logging
from typing import Optional

import discord

from services.config_service import GuildConfigService
from services.effects import EffectHandler
from utils.message_utils import (
    BLOCK_REASON,
    DISCONNECT_REASON,
    UNBLOCK_REASON,
    block_notice,
    unblock_notice,
)

logger = logging.getLogger("timegate")


async def disconnect_member(member: discord.Member) -> bool:
    """Disconnect a member from voice if they are connected"""
    if member is None or member.voice is None or member.voice.channel is None:
        return False
    try:
        await member.move_to(None, reason=DISCONNECT_REASON)
        return True
    except discord.HTTPException as e:
        logger.error(f"Failed to disconnect member {member.id}: {e}")
        return False


def has_role(member: discord.Member, role_id: str) -> bool:
    return any(str(role.id) == str(role_id) for role in member.roles)


class DiscordEffectHandler(EffectHandler):
    """Effect handler backed by a connected discord.py client"""

    def __init__(self, bot: discord.Client, guild_configs: GuildConfigService, block_hours: int = 24):
        """
        Initialize the handler.

        Args:
            bot: Connected Discord client
            guild_configs: Registry used to look up the block role
            block_hours: Block length quoted in notifications
        """
        self.bot = bot
        self.guild_configs = guild_configs
        self.block_hours = block_hours

    async def fetch_member(self, guild_id: str, user_id: str) -> Optional[discord.Member]:
        """Look up a member from cache, falling back to the API"""
        guild = self.bot.get_guild(int(guild_id))
        if guild is None:
            logger.warning(f"Guild {guild_id} is not available to the bot")
            return None
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(int(user_id))
        except discord.HTTPException as e:
            logger.warning(f"Could not fetch member {user_id} in guild {guild_id}: {e}")
            return None

    async def request_block_effects(self, guild_id: str, user_id: str, limit_minutes: int):
        member = await self.fetch_member(guild_id, user_id)
        if member is None:
            return
        config = self.guild_configs.get(guild_id)

        if config is not None:
            try:
                await member.add_roles(discord.Object(id=int(config.block_role_id)), reason=BLOCK_REASON)
            except discord.HTTPException as e:
                logger.error(f"Failed to assign block role to {user_id}: {e}")

        await disconnect_member(member)

        try:
            await member.send(block_notice(limit_minutes, self.block_hours))
        except discord.HTTPException as e:
            logger.debug(f"Could not DM {user_id} about the block: {e}")

    async def request_unblock_effects(self, guild_id: str, user_id: str):
        member = await self.fetch_member(guild_id, user_id)
        if member is None:
            return
        config = self.guild_configs.get(guild_id)

        if config is not None and has_role(member, config.block_role_id):
            try:
                await member.remove_roles(discord.Object(id=int(config.block_role_id)), reason=UNBLOCK_REASON)
            except discord.HTTPException as e:
                logger.error(f"Failed to remove block role from {user_id}: {e}")

        try:
            await member.send(unblock_notice(self.block_hours))
        except discord.HTTPException as e:
            logger.debug(f"Could not DM {user_id} about the unblock: {e}")
