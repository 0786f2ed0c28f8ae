"""
Command Controller
Handles Timegate text and slash commands
"""

import logging
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from services.timegate_service import TimegateService
from models.guild_config import GuildConfig
from models.setup_session import SetupSession, SetupStep
from controllers.voice_controller import should_track
from utils.errors import ConfigError
from utils.message_utils import format_duration, format_utc, parse_role_id, parse_user_id

logger = logging.getLogger("timegate")


class CommandController:
    """Controller for handling Discord bot commands"""

    def __init__(self, bot: commands.Bot, timegate_service: TimegateService, prefix: str = "!tg"):
        """
        Initialize the command controller.

        Args:
            bot: Discord bot instance
            timegate_service: Service answering status queries and limit changes
            prefix: Text command prefix, quoted in help replies
        """
        self.bot = bot
        self.timegate_service = timegate_service
        self.prefix = prefix
        self._setup_sessions: Dict[str, SetupSession] = {}  # guild_id -> conversation

        # Register commands
        self._register_commands()
        self._register_app_commands()
        bot.add_listener(self.on_message, "on_message")

    def _register_commands(self):
        """Register all text commands"""
        @self.bot.command(name="time", aliases=["status"])
        async def time_command(ctx, target: str = None):
            await self.time(ctx, target)

        @self.bot.command(name="setlimit")
        async def setlimit_command(ctx, minutes: str = None):
            await self.setlimit(ctx, minutes)

        @self.bot.command(name="setup")
        async def setup_command(ctx, block_role: str = None, track_role: str = None, minutes: str = None):
            await self.setup(ctx, block_role, track_role, minutes)

        @self.bot.command(name="help")
        async def help_command(ctx):
            await self.help(ctx)

        @self.bot.event
        async def on_command_error(ctx, error):
            await self.on_command_error(ctx, error)

    def _register_app_commands(self):
        """Register slash commands on the bot's command tree"""
        @self.bot.tree.command(name="time", description="Show remaining voice time")
        @app_commands.guild_only()
        @app_commands.describe(user="User to check (Manage Server required for others)")
        async def time_slash(interaction: discord.Interaction, user: Optional[discord.Member] = None):
            await self.time_interaction(interaction, user)

        @self.bot.tree.command(name="setlimit", description="Update the daily voice limit (Manage Server only)")
        @app_commands.guild_only()
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.describe(minutes="Daily limit in minutes")
        async def setlimit_slash(interaction: discord.Interaction, minutes: app_commands.Range[int, 1]):
            await self.setlimit_interaction(interaction, minutes)

        @self.bot.tree.command(name="setup", description="Configure block role, track role, and daily limit for this server")
        @app_commands.guild_only()
        @app_commands.default_permissions(manage_guild=True)
        @app_commands.describe(
            block_role="Role that blocks voice connect",
            track_role="Role required to be timed",
            daily_limit_minutes="Daily limit in minutes",
        )
        async def setup_slash(interaction: discord.Interaction,
                              block_role: discord.Role,
                              track_role: discord.Role,
                              daily_limit_minutes: app_commands.Range[int, 1]):
            await self.setup_interaction(interaction, block_role, track_role, daily_limit_minutes)

    # Shared replies

    def setup_needed_text(self) -> str:
        return (
            f"This server is not configured yet. An admin can run `{self.prefix}setup` (text) or `/setup` "
            f"to configure block role, track role, and daily limit."
        )

    def status_text(self, member: discord.Member, config: GuildConfig, is_self: bool) -> str:
        """Describe a member's remaining time or block"""
        subject = "You" if is_self else member.display_name
        if not should_track(member, config):
            verb = "are" if is_self else "is"
            return f"{subject} {verb} not in the tracked role; no voice limit is applied."

        status = self.timegate_service.query_status(str(member.guild.id), str(member.id))
        if status.blocked:
            verb = "are" if is_self else "is"
            return f"{subject} {verb} blocked from voice until {format_utc(status.blocked_until)}."

        verb = "have" if is_self else "has"
        return f"{subject} {verb} {format_duration(status.remaining_ms)} of voice time left today."

    @staticmethod
    def parse_minutes(raw) -> Optional[int]:
        """Parse a positive whole number of minutes"""
        try:
            minutes = int(str(raw).strip())
        except (TypeError, ValueError):
            return None
        return minutes if minutes > 0 else None

    # Text commands

    async def time(self, ctx, target: Optional[str]):
        """Show remaining voice time for the author or another member"""
        if ctx.guild is None:
            await ctx.send("This bot only works in servers.")
            return
        config = self.timegate_service.guild_configs.get(str(ctx.guild.id))
        if config is None:
            await ctx.send(self.setup_needed_text())
            return

        member = ctx.author
        if target:
            if not ctx.author.guild_permissions.manage_guild:
                await ctx.send("You need the Manage Server permission to view other users.")
                return
            user_id = parse_user_id(target)
            if user_id is None:
                await ctx.send("Please mention a user or provide a valid user ID.")
                return
            member = ctx.guild.get_member(int(user_id))
            if member is None:
                try:
                    member = await ctx.guild.fetch_member(int(user_id))
                except discord.HTTPException:
                    member = None
            if member is None:
                await ctx.send("Could not find that user in this server.")
                return

        await ctx.send(self.status_text(member, config, member.id == ctx.author.id))

    async def setlimit(self, ctx, raw_minutes: Optional[str]):
        """Change the guild's daily limit"""
        if ctx.guild is None:
            await ctx.send("This bot only works in servers.")
            return
        if not ctx.author.guild_permissions.manage_guild:
            await ctx.send("You need the Manage Server permission to change the limit.")
            return
        if self.timegate_service.guild_configs.get(str(ctx.guild.id)) is None:
            await ctx.send(self.setup_needed_text())
            return

        minutes = self.parse_minutes(raw_minutes)
        if minutes is None:
            await ctx.send(f"Usage: {self.prefix}setlimit <minutes> (positive number)")
            return

        await self.timegate_service.set_limit(str(ctx.guild.id), minutes)
        await ctx.send(f"Daily voice limit updated to {minutes} minutes.")

    async def setup(self, ctx, block_role: Optional[str], track_role: Optional[str], raw_minutes: Optional[str]):
        """Configure block role, track role and limit in one command, or start a conversation when no arguments are given"""
        if ctx.guild is None:
            await ctx.send("This bot only works in servers.")
            return
        if not ctx.author.guild_permissions.manage_guild:
            await ctx.send("You need the Manage Server permission to run setup.")
            return

        if block_role is None and track_role is None and raw_minutes is None:
            await self.start_setup_session(ctx)
            return

        usage = f"Usage: {self.prefix}setup <block role> <track role> <daily limit minutes>"
        block_role_id = parse_role_id(block_role) if block_role else None
        track_role_id = parse_role_id(track_role) if track_role else None
        minutes = self.parse_minutes(raw_minutes)
        if block_role_id is None or track_role_id is None or minutes is None:
            await ctx.send(usage)
            return

        for role_id, label in ((block_role_id, "blocking"), (track_role_id, "tracking")):
            if ctx.guild.get_role(int(role_id)) is None:
                await ctx.send(f"Could not find that role. Please provide a valid role ID or mention for the {label} role.")
                return

        config = await self.timegate_service.apply_setup(str(ctx.guild.id), block_role_id, track_role_id, minutes)
        await ctx.send(self.setup_complete_text(config))

    @staticmethod
    def setup_complete_text(config: GuildConfig) -> str:
        return (
            f"Setup complete. Blocking role: <@&{config.block_role_id}>, Tracking role: <@&{config.track_role_id}>, "
            f"Daily limit: {config.daily_limit_minutes} minutes."
        )

    async def help(self, ctx):
        """List commands"""
        await ctx.send(
            f"Commands: {self.prefix}setup [<block role> <track role> <minutes>] (Manage Server) | "
            f"{self.prefix}time [user] | {self.prefix}setlimit <minutes> (Manage Server only)"
        )

    async def on_command_error(self, ctx, error):
        """Handle command errors"""
        if isinstance(error, commands.CommandNotFound):
            await ctx.send(f"Unknown command. Try {self.prefix}help.")
            return
        if isinstance(error, commands.CommandInvokeError) and isinstance(error.original, ConfigError):
            await ctx.send(str(error.original))
            return
        logger.error(f"Command error: {error}")
        await ctx.send(f"An error occurred: {error}")

    # Setup conversation

    def _active_setup(self, guild_id: str) -> Optional[SetupSession]:
        session = self._setup_sessions.get(guild_id)
        if session is not None and session.is_expired():
            del self._setup_sessions[guild_id]
            logger.info(f"Setup conversation in guild {guild_id} timed out")
            return None
        return session

    async def start_setup_session(self, ctx):
        """Start a step-by-step setup conversation with the author"""
        guild_id = str(ctx.guild.id)
        if self._active_setup(guild_id) is not None:
            await ctx.send(
                "Setup is already in progress for this server. "
                "Finish the current setup or wait for it to time out."
            )
            return

        self._setup_sessions[guild_id] = SetupSession(user_id=ctx.author.id)
        await ctx.send(
            "Timegate setup started. Step 1/3: Reply with the **role ID or mention** for the blocking role "
            "(the role that prevents voice connect)."
        )

    async def on_message(self, message: discord.Message):
        """Feed replies from the member running setup into their conversation"""
        if message.author.bot or message.guild is None:
            return
        if message.content.startswith(self.prefix):
            return
        session = self._active_setup(str(message.guild.id))
        if session is None or session.user_id != message.author.id:
            return
        await self.handle_setup_reply(message, session)

    async def handle_setup_reply(self, message: discord.Message, session: SetupSession):
        """Advance a setup conversation by one step"""
        content = message.content.strip()
        channel = message.channel

        if session.step in (SetupStep.BLOCK_ROLE, SetupStep.TRACK_ROLE):
            label = "blocking" if session.step is SetupStep.BLOCK_ROLE else "tracking"
            role_id = parse_role_id(content)
            if role_id is None or message.guild.get_role(int(role_id)) is None:
                await channel.send(f"Could not find that role. Please reply with a valid role ID or mention for the {label} role.")
                return
            if session.step is SetupStep.BLOCK_ROLE:
                session.block_role_id = role_id
                session.step = SetupStep.TRACK_ROLE
                await channel.send(
                    "Step 2/3: Reply with the **role ID or mention** for the tracking role "
                    "(members with this role are timed)."
                )
            else:
                session.track_role_id = role_id
                session.step = SetupStep.DAILY_LIMIT
                await channel.send("Step 3/3: Reply with the **daily limit in minutes** (positive number).")
            return

        minutes = self.parse_minutes(content)
        if minutes is None:
            await channel.send("Please enter a positive number of minutes.")
            return

        guild_id = str(message.guild.id)
        del self._setup_sessions[guild_id]
        config = await self.timegate_service.apply_setup(
            guild_id, session.block_role_id, session.track_role_id, minutes
        )
        await channel.send(self.setup_complete_text(config))

    # Slash commands

    async def time_interaction(self, interaction: discord.Interaction, user: Optional[discord.Member]):
        config = self.timegate_service.guild_configs.get(str(interaction.guild_id))
        if config is None:
            await interaction.response.send_message(self.setup_needed_text(), ephemeral=True)
            return

        member = user or interaction.user
        if member.id != interaction.user.id and not interaction.permissions.manage_guild:
            await interaction.response.send_message(
                "You need the Manage Server permission to view other users.", ephemeral=True
            )
            return

        await interaction.response.send_message(
            self.status_text(member, config, member.id == interaction.user.id), ephemeral=True
        )

    async def setlimit_interaction(self, interaction: discord.Interaction, minutes: int):
        if not interaction.permissions.manage_guild:
            await interaction.response.send_message(
                "You need the Manage Server permission to change the limit.", ephemeral=True
            )
            return
        if self.timegate_service.guild_configs.get(str(interaction.guild_id)) is None:
            await interaction.response.send_message(self.setup_needed_text(), ephemeral=True)
            return

        await self.timegate_service.set_limit(str(interaction.guild_id), minutes)
        await interaction.response.send_message(f"Daily voice limit updated to {minutes} minutes.", ephemeral=True)

    async def setup_interaction(self,
                                interaction: discord.Interaction,
                                block_role: discord.Role,
                                track_role: discord.Role,
                                minutes: int):
        if not interaction.permissions.manage_guild:
            await interaction.response.send_message("You need the Manage Server permission to run setup.", ephemeral=True)
            return

        config = await self.timegate_service.apply_setup(
            str(interaction.guild_id), str(block_role.id), str(track_role.id), minutes
        )
        await interaction.response.send_message(self.setup_complete_text(config), ephemeral=True)
