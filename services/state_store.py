"""
State Store
Crash-safe JSON snapshot of every guild's user accounting records
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from models.user_record import UserRecord
from utils.errors import StorePersistenceError

logger = logging.getLogger("timegate")


class StateStore:
    """
    Owns the in-memory map guild -> user -> UserRecord and its durable copy.

    The full snapshot is rewritten after every mutation. Writes go to a
    temporary file in the same directory which then replaces the target,
    so a reader never observes a half-written snapshot.
    """

    def __init__(self, file_path: str):
        """
        Initialize the store.

        Args:
            file_path: Path of the JSON snapshot
        """
        self.file_path = file_path
        self._guilds: Dict[str, Dict[str, UserRecord]] = {}
        self._deferred = 0
        self._dirty = False

    def load(self):
        """Load the snapshot, falling back to an empty state when it is missing or unreadable"""
        self._guilds = {}
        if not os.path.exists(self.file_path):
            logger.info(f"No state file at {self.file_path}, starting empty")
            self.save()
            return

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw = f.read()
            data = json.loads(raw) if raw.strip() else {"guilds": {}}
            self._guilds = self._parse(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to read state file {self.file_path}: {e}. Starting with empty state")
            self._guilds = {}
            return

        logger.info(f"Loaded state for {len(self._guilds)} guilds from {self.file_path}")

    @staticmethod
    def _parse(data: dict) -> Dict[str, Dict[str, UserRecord]]:
        guilds = {}
        for guild_id, guild in data.get("guilds", {}).items():
            users = guild.get("users", {})
            guilds[str(guild_id)] = {
                str(user_id): UserRecord.from_dict(record)
                for user_id, record in users.items()
            }
        return guilds

    def snapshot(self) -> dict:
        """Serializable view of the whole state"""
        return {
            "guilds": {
                guild_id: {"users": {user_id: record.to_dict() for user_id, record in users.items()}}
                for guild_id, users in self._guilds.items()
            }
        }

    def save(self):
        """Persist the full snapshot atomically, or mark it dirty while saves are deferred"""
        if self._deferred:
            self._dirty = True
            return
        self._write()

    @contextmanager
    def deferred_save(self):
        """
        Hold saves made inside the block and write one snapshot when it exits.

        Every mutation in the block lands in memory before anything touches
        the disk, so a write failure cannot leave the batch half applied.
        """
        self._deferred += 1
        try:
            yield
        finally:
            self._deferred -= 1
        if self._deferred == 0 and self._dirty:
            self._write()

    def _write(self):
        directory = os.path.dirname(os.path.abspath(self.file_path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.snapshot(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.file_path)
            self._dirty = False
        except OSError as e:
            logger.exception(f"Failed to write state file {self.file_path}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorePersistenceError(self.file_path, e) from e

    def get_user(self, guild_id: str, user_id: str) -> UserRecord:
        """
        Return the record for a member, creating an empty one on first reference.

        Only mutating paths call this; reads go through peek_user.
        """
        users = self._guilds.setdefault(str(guild_id), {})
        record = users.get(str(user_id))
        if record is None:
            record = UserRecord()
            users[str(user_id)] = record
        return record

    def peek_user(self, guild_id: str, user_id: str) -> Optional[UserRecord]:
        """Return the record for a member without creating it"""
        return self._guilds.get(str(guild_id), {}).get(str(user_id))

    def guild_ids(self) -> List[str]:
        return list(self._guilds)

    def iter_users(self, guild_id: Optional[str] = None) -> Iterator[Tuple[str, str, UserRecord]]:
        """Yield (guild_id, user_id, record) for every known member, optionally for one guild"""
        if guild_id is not None:
            guilds = [(str(guild_id), self._guilds.get(str(guild_id), {}))]
        else:
            guilds = list(self._guilds.items())
        for gid, users in guilds:
            for uid, record in list(users.items()):
                yield gid, uid, record

    def active_session_ids(self, guild_id: str) -> List[str]:
        """Members of a guild with an open session"""
        return [uid for _, uid, record in self.iter_users(guild_id) if record.in_session()]

    def blocked_user_ids(self, guild_id: str, now_ms: int) -> List[str]:
        """Members of a guild whose block is still in force"""
        return [uid for _, uid, record in self.iter_users(guild_id) if record.is_blocked(now_ms)]

    def expired_block_ids(self, guild_id: str, now_ms: int) -> List[str]:
        """Members of a guild whose block has run out but is still recorded"""
        return [uid for _, uid, record in self.iter_users(guild_id) if record.block_expired(now_ms)]

    def clear_active_sessions(self) -> int:
        """
        Drop every open session without crediting any time.

        Run at startup: a session that survived a restart has no reliable
        elapsed-time signal.

        Returns:
            Number of sessions dropped
        """
        dropped = 0
        for _, _, record in self.iter_users():
            if record.in_session():
                record.active_session_start = None
                dropped += 1
        if dropped:
            self.save()
            logger.info(f"Cleared {dropped} stale active sessions")
        return dropped

    def stats(self, now_ms: int) -> dict:
        """Counts of known guilds, users, open sessions and active blocks"""
        users = list(self.iter_users())
        return {
            "guilds": len(self._guilds),
            "users": len(users),
            "active_sessions": sum(1 for _, _, r in users if r.in_session()),
            "blocked_users": sum(1 for _, _, r in users if r.is_blocked(now_ms)),
        }
