"""
Timegate Service
Single entry point for voice transitions, status queries and reconciliation sweeps
"""

import asyncio
import logging
from typing import List, Optional

from services.state_store import StateStore
from services.ledger import Ledger
from services.quota_service import QuotaService
from services.config_service import GuildConfigService
from services.effects import EffectHandler, NullEffectHandler
from models.guild_config import GuildConfig
from models.user_record import QuotaStatus, TransitionKind, UserState
from utils.clock import Clock, SystemClock
from utils.time_utils import DAY_MS

logger = logging.getLogger("timegate")


class TimegateService:
    """
    Owns the accounting state and serializes every mutation.

    Event handlers and both sweeps go through the same asyncio.Lock, so the
    store is never iterated while another task is changing it. Effect
    requests run after the lock is released; their failure is logged and
    never rolls back the state change that triggered them.
    """

    def __init__(self,
                 store: StateStore,
                 guild_configs: GuildConfigService,
                 effects: EffectHandler = None,
                 clock: Clock = None,
                 block_duration_ms: int = DAY_MS):
        """
        Initialize the service.

        Args:
            store: Durable state store
            guild_configs: Registry of configured guilds and their limits
            effects: Collaborator that applies block/unblock effects
            clock: Wall-clock source
            block_duration_ms: How long a block lasts once the limit is reached
        """
        self.store = store
        self.guild_configs = guild_configs
        self.effects = effects or NullEffectHandler()
        self.clock = clock or SystemClock()
        self.block_duration_ms = block_duration_ms
        self.ledger = Ledger(store)
        self.quota = QuotaService(store)
        self._lock = asyncio.Lock()

        # Statistics
        self._blocks_issued = 0
        self._blocks_cleared = 0
        self._effect_failures = 0

    def set_effect_handler(self, effects: EffectHandler):
        """Attach the platform collaborator once it is available"""
        self.effects = effects

    def startup(self) -> int:
        """Load the snapshot and drop sessions that survived a restart"""
        self.store.load()
        return self.store.clear_active_sessions()

    async def shutdown(self) -> int:
        """Credit open sessions up to now and flush the store"""
        async with self._lock:
            with self.store.deferred_save():
                closed = self.ledger.end_all_sessions(self.clock.now_ms())
                self.store.save()
        logger.info(f"State flushed on shutdown ({closed} open sessions credited)")
        return closed

    def _limit_ms(self, guild_id: str) -> Optional[int]:
        config = self.guild_configs.get(guild_id)
        return config.limit_ms if config else None

    def is_blocked(self, guild_id: str, user_id: str, now_ms: int = None) -> bool:
        now_ms = self.clock.now_ms() if now_ms is None else now_ms
        return self.quota.is_blocked(guild_id, user_id, now_ms)

    def get_state(self, guild_id: str, user_id: str, now_ms: int = None) -> UserState:
        now_ms = self.clock.now_ms() if now_ms is None else now_ms
        return self.quota.get_state(guild_id, user_id, now_ms)

    async def on_transition(self,
                            guild_id: str,
                            user_id: str,
                            kind: TransitionKind,
                            now_ms: int = None) -> bool:
        """
        Apply a voice transition for a tracked member.

        Blocked members are left untouched; the caller decides whether to
        disconnect them.

        Returns:
            True if this transition exhausted the quota and triggered a block
        """
        guild_id, user_id = str(guild_id), str(user_id)
        now_ms = self.clock.now_ms() if now_ms is None else now_ms
        config = self.guild_configs.get(guild_id)

        blocked = False
        try:
            async with self._lock:
                if self.quota.is_blocked(guild_id, user_id, now_ms):
                    return False

                if kind is TransitionKind.JOINED:
                    self.ledger.start_session(guild_id, user_id, now_ms)
                    return False

                with self.store.deferred_save():
                    self.ledger.end_session(guild_id, user_id, now_ms)
                    blocked = self._block_if_exhausted(guild_id, user_id, now_ms, config)
                    if kind is TransitionKind.SWITCHED and not blocked:
                        self.ledger.start_session(guild_id, user_id, now_ms)
        finally:
            if blocked:
                await self._request_block_effects(guild_id, user_id, config)
        return blocked

    def _block_if_exhausted(self, guild_id: str, user_id: str, now_ms: int,
                            config: Optional[GuildConfig]) -> bool:
        if config is None:
            return False
        remaining = self.quota.get_remaining_ms(guild_id, user_id, now_ms, config.limit_ms)
        if remaining > 0:
            return False
        self.quota.set_block(guild_id, user_id, now_ms + self.block_duration_ms)
        self._blocks_issued += 1
        return True

    def query_status(self,
                     guild_id: str,
                     user_id: str,
                     now_ms: int = None,
                     limit_ms: int = None) -> QuotaStatus:
        """Remaining time and block state for a member"""
        guild_id, user_id = str(guild_id), str(user_id)
        now_ms = self.clock.now_ms() if now_ms is None else now_ms
        if limit_ms is None:
            limit_ms = self._limit_ms(guild_id) or 0

        blocked = self.quota.is_blocked(guild_id, user_id, now_ms)
        return QuotaStatus(
            remaining_ms=self.quota.get_remaining_ms(guild_id, user_id, now_ms, limit_ms),
            blocked=blocked,
            blocked_until=self.quota.get_block_expiry(guild_id, user_id) if blocked else None,
        )

    async def set_limit(self, guild_id: str, minutes: int) -> GuildConfig:
        """Change a guild's daily limit; stored totals are left as they are"""
        config = self.guild_configs.set_limit(guild_id, minutes)
        await self.guild_configs.save(config.guild_id)
        logger.info(f"Daily limit for guild {config.guild_id} set to {minutes} minutes")
        return config

    async def apply_setup(self, guild_id: str, block_role_id: str, track_role_id: str, minutes: int) -> GuildConfig:
        """Configure roles and limit for a guild"""
        config = self.guild_configs.apply_setup(guild_id, block_role_id, track_role_id, minutes)
        await self.guild_configs.save(config.guild_id)
        logger.info(f"Guild {config.guild_id} configured with a {minutes} minute limit")
        return config

    async def process_expired_blocks(self) -> List[tuple]:
        """
        Lift every block whose expiry has passed.

        State is cleared before the unblock effects are requested, and stays
        cleared whatever the effects' outcome. The sweep's changes are
        persisted as one snapshot; if that write fails, the effects for every
        cleared member are still requested before the error propagates.

        Returns:
            (guild_id, user_id) pairs that were unblocked
        """
        now_ms = self.clock.now_ms()
        cleared = []
        try:
            async with self._lock:
                with self.store.deferred_save():
                    for guild_id in self.store.guild_ids():
                        for user_id in self.store.expired_block_ids(guild_id, now_ms):
                            self.quota.clear_block(guild_id, user_id)
                            self._blocks_cleared += 1
                            cleared.append((guild_id, user_id))
        finally:
            for guild_id, user_id in cleared:
                await self._run_effect(
                    self.effects.request_unblock_effects(guild_id, user_id),
                    f"unblock effects for {user_id} in guild {guild_id}",
                )
        if cleared:
            logger.info(f"Expired {len(cleared)} blocks")
        return cleared

    async def check_active_sessions(self) -> List[tuple]:
        """
        Block members whose open session has used up the quota.

        No voice event fires when a member simply stays connected past the
        limit; this sweep is what catches them. As with the expiry sweep, a
        failed snapshot write still lets every block issued by the sweep
        reach the effect handler.

        Returns:
            (guild_id, user_id) pairs that were blocked
        """
        now_ms = self.clock.now_ms()
        blocked = []
        try:
            async with self._lock:
                with self.store.deferred_save():
                    for config in self.guild_configs.all():
                        for user_id in self.store.active_session_ids(config.guild_id):
                            remaining = self.quota.get_remaining_ms(config.guild_id, user_id, now_ms, config.limit_ms)
                            if remaining > 0:
                                continue
                            self.ledger.end_session(config.guild_id, user_id, now_ms)
                            self.quota.set_block(config.guild_id, user_id, now_ms + self.block_duration_ms)
                            self._blocks_issued += 1
                            blocked.append((config.guild_id, user_id))
        finally:
            for guild_id, user_id in blocked:
                await self._request_block_effects(guild_id, user_id, self.guild_configs.get(guild_id))
        return blocked

    async def _request_block_effects(self, guild_id: str, user_id: str, config: Optional[GuildConfig]):
        limit_minutes = config.daily_limit_minutes if config else 0
        await self._run_effect(
            self.effects.request_block_effects(guild_id, user_id, limit_minutes),
            f"block effects for {user_id} in guild {guild_id}",
        )

    async def _run_effect(self, coro, description: str):
        try:
            await coro
        except Exception as e:
            self._effect_failures += 1
            logger.warning(f"Failed to apply {description}: {e}")

    @property
    def stats(self) -> dict:
        """Get service statistics"""
        return {
            **self.store.stats(self.clock.now_ms()),
            "configured_guilds": len(self.guild_configs.all()),
            "blocks_issued": self._blocks_issued,
            "blocks_cleared": self._blocks_cleared,
            "effect_failures": self._effect_failures,
        }
