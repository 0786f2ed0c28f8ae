"""
Ledger
Session bookkeeping and per-UTC-day voice totals
"""

import logging

from services.state_store import StateStore
from models.user_record import UserRecord
from utils.time_utils import day_key_from_ms, next_utc_midnight, previous_day_key

logger = logging.getLogger("timegate")


class Ledger:
    """Opens and closes sessions and splits their duration across UTC days"""

    def __init__(self, store: StateStore):
        self.store = store

    def start_session(self, guild_id: str, user_id: str, now_ms: int):
        """
        Open a session for a member.

        The caller must check the member is not blocked first. A second call
        without an intervening end overwrites the start time.
        """
        record = self.store.get_user(guild_id, user_id)
        record.active_session_start = now_ms
        self.store.save()
        logger.debug(f"Session started for {user_id} in guild {guild_id}")

    def end_session(self, guild_id: str, user_id: str, now_ms: int) -> int:
        """
        Close a member's session and credit its duration.

        Returns:
            The member's total for today after crediting, or 0 if no session was open
        """
        record = self.store.get_user(guild_id, user_id)
        if not record.in_session():
            return 0

        self._add_duration_across_days(record, record.active_session_start, now_ms)
        record.active_session_start = None
        self._prune_old_totals(record, now_ms)
        self.store.save()

        total = record.daily_totals.get(day_key_from_ms(now_ms), 0)
        logger.debug(f"Session ended for {user_id} in guild {guild_id}, today's total {total}ms")
        return total

    def end_all_sessions(self, now_ms: int) -> int:
        """Close every open session, crediting time up to now. Returns the number closed."""
        closed = 0
        for guild_id, user_id, record in self.store.iter_users():
            if record.in_session():
                self.end_session(guild_id, user_id, now_ms)
                closed += 1
        return closed

    def get_total_for_day(self, guild_id: str, user_id: str, day_key: str) -> int:
        record = self.store.peek_user(guild_id, user_id)
        return record.daily_totals.get(day_key, 0) if record else 0

    @staticmethod
    def _add_duration_across_days(record: UserRecord, start_ms: int, end_ms: int):
        # Each chunk runs from the cursor to the next UTC midnight, clamped to end_ms.
        cursor = start_ms
        while cursor < end_ms:
            chunk_end = min(end_ms, next_utc_midnight(cursor))
            key = day_key_from_ms(cursor)
            record.daily_totals[key] = record.daily_totals.get(key, 0) + (chunk_end - cursor)
            cursor = chunk_end

    @staticmethod
    def _prune_old_totals(record: UserRecord, reference_ms: int):
        cutoff = previous_day_key(reference_ms)
        for key in [k for k in record.daily_totals if k < cutoff]:
            del record.daily_totals[key]
