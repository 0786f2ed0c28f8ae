"""
Quota Service
Daily limit checks and the block lifecycle for tracked members
"""

import logging
from typing import Optional

from services.state_store import StateStore
from models.user_record import UserRecord, UserState
from utils.time_utils import day_key_from_ms

logger = logging.getLogger("timegate")


class QuotaService:
    """State machine over Idle, InSession and Blocked"""

    def __init__(self, store: StateStore):
        self.store = store

    def _peek(self, guild_id: str, user_id: str) -> UserRecord:
        return self.store.peek_user(guild_id, user_id) or UserRecord()

    def get_remaining_ms(self, guild_id: str, user_id: str, now_ms: int, limit_ms: int) -> int:
        """
        Remaining voice time for today.

        An open session counts against the limit up to now_ms, so the value
        shrinks as time passes without any write.
        """
        record = self._peek(guild_id, user_id)
        if record.is_blocked(now_ms):
            return 0

        used = record.daily_totals.get(day_key_from_ms(now_ms), 0)
        if record.in_session():
            used += max(0, now_ms - record.active_session_start)
        return max(0, limit_ms - used)

    def is_blocked(self, guild_id: str, user_id: str, now_ms: int) -> bool:
        return self._peek(guild_id, user_id).is_blocked(now_ms)

    def get_block_expiry(self, guild_id: str, user_id: str) -> Optional[int]:
        return self._peek(guild_id, user_id).block_expires_at

    def get_state(self, guild_id: str, user_id: str, now_ms: int) -> UserState:
        return self._peek(guild_id, user_id).state(now_ms)

    def set_block(self, guild_id: str, user_id: str, expires_at_ms: int):
        """Block a member until the given instant, dropping any open session"""
        record = self.store.get_user(guild_id, user_id)
        record.block_expires_at = expires_at_ms
        record.active_session_start = None
        self.store.save()
        logger.info(f"Blocked {user_id} in guild {guild_id} until {expires_at_ms}")

    def clear_block(self, guild_id: str, user_id: str):
        """
        Lift a block and start a fresh quota window.

        A session opened after the block ran out is kept; set_block already
        dropped any session that predates the block.
        """
        record = self.store.get_user(guild_id, user_id)
        record.block_expires_at = None
        record.daily_totals = {}
        self.store.save()
        logger.info(f"Cleared block for {user_id} in guild {guild_id}")
