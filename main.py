"""
Timegate
Discord bot that limits daily voice time for members with a tracked role
Blocks members for a fixed period once the limit is reached
"""

import os
import sys
import asyncio
import logging
import threading

import discord
from discord.ext import commands

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from services.config_service import Settings, GuildConfigService
from services.state_store import StateStore
from services.timegate_service import TimegateService
from services.reconciliation import ReconciliationScheduler, SweepConfig
from controllers.voice_controller import VoiceController
from controllers.command_controller import CommandController
from controllers.discord_effects import DiscordEffectHandler
from controllers.status_controller import status_controller, status_router
from utils.errors import ConfigError
from utils.time_utils import HOUR_MS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("timegate")

# Services
settings = None
timegate_service = None
scheduler = None
voice_controller = None
command_controller = None
BOT = None


def initialize_services():
    """Load configuration and state, then sanitize sessions left over from the last run"""
    global settings, timegate_service, scheduler

    settings = Settings.from_env()

    guild_configs = GuildConfigService(settings.config_file, env_guild=settings.env_guild)
    guild_configs.load()

    store = StateStore(settings.data_file)
    timegate_service = TimegateService(
        store,
        guild_configs,
        block_duration_ms=settings.block_duration_hours * HOUR_MS,
    )
    dropped = timegate_service.startup()

    scheduler = ReconciliationScheduler(
        timegate_service,
        SweepConfig(
            block_interval_seconds=settings.block_sweep_seconds,
            session_interval_seconds=settings.session_sweep_seconds,
        ),
    )

    logger.info(
        f"State loaded from {settings.data_file}: {len(guild_configs.all())} configured guilds, "
        f"{dropped} stale sessions cleared"
    )


def create_discord_bot():
    """Create and configure a new Discord bot instance"""
    INTENTS = discord.Intents.default()
    INTENTS.guilds = True
    INTENTS.voice_states = True
    INTENTS.members = True
    INTENTS.message_content = True

    bot = commands.Bot(
        command_prefix=settings.command_prefix,
        intents=INTENTS,
        help_command=None,
        description='Timegate - daily voice time limits'
    )

    @bot.event
    async def on_ready():
        """Bot is ready and connected to Discord"""
        logger.info(f"Timegate bot ready as {bot.user.name} ({bot.user.id})")

        timegate_service.set_effect_handler(
            DiscordEffectHandler(bot, timegate_service.guild_configs, settings.block_duration_hours)
        )
        status_controller.set_references(timegate_service, scheduler, bot, asyncio.get_running_loop())
        await scheduler.start()

        try:
            synced = await bot.tree.sync()
            logger.info(f"Registered {len(synced)} slash commands globally")
        except discord.HTTPException as e:
            logger.error(f"Failed to register slash commands: {e}")

    return bot


# Health check endpoint for Docker
from fastapi import FastAPI
import uvicorn

app = FastAPI(
    title="Timegate Health",
    description="Health and status endpoints for the Timegate bot"
)

# Include status router
app.include_router(status_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    bot_ready = False
    if BOT and not BOT.is_closed():
        bot_ready = BOT.is_ready()

    return {
        "status": "healthy",
        "service": "timegate",
        "bot_ready": bot_ready,
        "discord_enabled": bool(settings and settings.bot_token),
        "reconciliation": scheduler.stats if scheduler else {},
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint - ready once state has been loaded"""
    state = {}
    if timegate_service:
        state = await status_controller.run_on_service_loop(lambda: timegate_service.stats)
    return {
        "status": "ready" if timegate_service else "starting",
        "state": state,
    }


def run_health_server():
    """Run the health check server on a separate thread"""
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


async def shutdown():
    """Graceful shutdown"""
    global BOT
    if scheduler and scheduler.running:
        await scheduler.stop()
    if timegate_service:
        await timegate_service.shutdown()
    if BOT and not BOT.is_closed():
        await BOT.close()


async def main():
    """Main entry point"""
    global BOT, voice_controller, command_controller

    try:
        initialize_services()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    status_controller.set_references(timegate_service, scheduler, None, asyncio.get_running_loop())

    # Start health check server in a separate thread
    health_thread = threading.Thread(target=run_health_server, daemon=True)
    health_thread.start()

    if not settings.bot_token:
        logger.error("Missing bot token. Set DISCORD_BOT_TOKEN in .env or the environment")
        sys.exit(1)

    BOT = create_discord_bot()
    voice_controller = VoiceController(BOT, timegate_service)
    command_controller = CommandController(BOT, timegate_service, settings.command_prefix)

    logger.info("Starting Timegate...")
    try:
        await BOT.start(settings.bot_token)
    finally:
        await shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
