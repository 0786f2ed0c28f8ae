"""
Status Controller
HTTP endpoints for inspecting Timegate state and running sweeps on demand
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from services.timegate_service import TimegateService
from services.reconciliation import ReconciliationScheduler

logger = logging.getLogger("timegate")

# APIRouter for status endpoints
status_router = APIRouter(
    prefix="/api",
    tags=["Status"]
)


class StatusController:
    """Controller exposing service state over HTTP"""

    def __init__(self):
        self.timegate_service: Optional[TimegateService] = None
        self.scheduler: Optional[ReconciliationScheduler] = None
        self.bot = None
        self.loop = None  # Event loop that owns the service lock

    def set_references(self, timegate_service, scheduler=None, bot=None, loop=None):
        """Set references to the running service, scheduler, bot and its event loop"""
        self.timegate_service = timegate_service
        self.scheduler = scheduler
        self.bot = bot
        self.loop = loop

    def _require_service(self) -> TimegateService:
        if self.timegate_service is None:
            raise HTTPException(status_code=503, detail="Timegate service not initialized")
        return self.timegate_service

    async def run_on_service_loop(self, func, *args):
        """
        Call func on the event loop that owns the service.

        The HTTP server runs on its own thread and loop; anything touching
        the store is handed to the bot's loop so it never interleaves with a
        save or a sweep.
        """
        async def call():
            return func(*args)

        if self.loop is not None and self.loop.is_running() and self.loop is not asyncio.get_running_loop():
            future = asyncio.run_coroutine_threadsafe(call(), self.loop)
            return await asyncio.wrap_future(future)
        return await call()

    async def get_status(self) -> dict:
        """Get service, scheduler and bot status"""
        service = self._require_service()
        state = await self.run_on_service_loop(lambda: service.stats)
        return {
            "success": True,
            "bot_ready": self.bot.is_ready() if self.bot else False,
            "state": state,
            "reconciliation": self.scheduler.stats if self.scheduler else {},
        }

    async def get_user_status(self, guild_id: str, user_id: str) -> dict:
        """Get remaining time and block state for one member"""
        service = self._require_service()
        if service.guild_configs.get(guild_id) is None:
            raise HTTPException(status_code=404, detail=f"Guild {guild_id} is not configured")
        return await self.run_on_service_loop(self._user_status, service, guild_id, user_id)

    @staticmethod
    def _user_status(service: TimegateService, guild_id: str, user_id: str) -> dict:
        status = service.query_status(guild_id, user_id)
        return {
            "guild_id": guild_id,
            "user_id": user_id,
            "state": service.get_state(guild_id, user_id).value,
            **status.to_dict(),
        }

    async def run_sweeps(self) -> dict:
        """Run both reconciliation sweeps immediately"""
        self._require_service()
        if self.scheduler is None:
            raise HTTPException(status_code=503, detail="Reconciliation scheduler not running")
        if self.loop is not None and self.loop.is_running() and self.loop is not asyncio.get_running_loop():
            future = asyncio.run_coroutine_threadsafe(self.scheduler.run_once(), self.loop)
            result = await asyncio.wrap_future(future)
        else:
            result = await self.scheduler.run_once()
        logger.info(f"Sweeps run via API: {result}")
        return {"success": True, **result}


# Create status controller instance
status_controller = StatusController()


# Register API endpoints
@status_router.get("/status")
async def get_status():
    """Get the current service status"""
    return await status_controller.get_status()


@status_router.get("/guilds/{guild_id}/users/{user_id}")
async def get_user_status(guild_id: str, user_id: str):
    """Get a member's remaining voice time"""
    return await status_controller.get_user_status(guild_id, user_id)


@status_router.post("/sweeps/run")
async def run_sweeps():
    """Run the reconciliation sweeps now"""
    return await status_controller.run_sweeps()
