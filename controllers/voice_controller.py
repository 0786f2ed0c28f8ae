"""
Voice Controller
Turns Discord voice state updates into ledger transitions
"""

import logging
from typing import Optional

import discord
from discord.ext import commands

from services.timegate_service import TimegateService
from models.guild_config import GuildConfig
from models.user_record import TransitionKind
from controllers.discord_effects import disconnect_member, has_role

logger = logging.getLogger("timegate")


def classify_transition(before: discord.VoiceState, after: discord.VoiceState) -> Optional[TransitionKind]:
    """Classify a voice state change; mute/deafen updates return None"""
    old_channel = before.channel.id if before.channel else None
    new_channel = after.channel.id if after.channel else None

    if old_channel is None and new_channel is not None:
        return TransitionKind.JOINED
    if old_channel is not None and new_channel is None:
        return TransitionKind.LEFT
    if old_channel is not None and new_channel is not None and old_channel != new_channel:
        return TransitionKind.SWITCHED
    return None


def should_track(member: discord.Member, config: GuildConfig) -> bool:
    """Only members holding the tracked role are timed"""
    return has_role(member, config.track_role_id)


class VoiceController:
    """Controller for voice state events"""

    def __init__(self, bot: commands.Bot, timegate_service: TimegateService):
        """
        Initialize the voice controller.

        Args:
            bot: Discord bot instance
            timegate_service: Service that owns the accounting state
        """
        self.bot = bot
        self.timegate_service = timegate_service

        # Register event handler
        bot.add_listener(self.on_voice_state_update, "on_voice_state_update")

    async def on_voice_state_update(self,
                                    member: discord.Member,
                                    before: discord.VoiceState,
                                    after: discord.VoiceState):
        """Handle a member joining, leaving or switching voice channels"""
        if member.bot:
            return
        guild_id = str(member.guild.id)
        config = self.timegate_service.guild_configs.get(guild_id)
        if config is None or not should_track(member, config):
            return

        kind = classify_transition(before, after)
        if kind is None:
            return

        user_id = str(member.id)
        if self.timegate_service.is_blocked(guild_id, user_id):
            if kind in (TransitionKind.JOINED, TransitionKind.SWITCHED):
                logger.info(f"Blocked member {member} tried to join voice, disconnecting")
                await disconnect_member(member)
            return

        blocked = await self.timegate_service.on_transition(guild_id, user_id, kind)
        if blocked:
            logger.info(f"Member {member} reached the daily limit in guild {guild_id}")
