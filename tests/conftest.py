from datetime import datetime, timezone

import pytest

from services.state_store import StateStore
from services.config_service import GuildConfigService
from services.effects import EffectHandler
from services.timegate_service import TimegateService
from utils.clock import FakeClock

GUILD = "111"
USER = "222"
BLOCK_ROLE = "900"
TRACK_ROLE = "901"


def ms_from_iso(value: str) -> int:
    """Parse an ISO-8601 timestamp into epoch milliseconds (naive values are UTC)"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(round(parsed.timestamp() * 1000))


class RecordingEffects(EffectHandler):
    """Effect handler that records requests and can be told to fail"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.blocked = []
        self.unblocked = []

    async def request_block_effects(self, guild_id, user_id, limit_minutes):
        self.blocked.append((guild_id, user_id, limit_minutes))
        if self.fail:
            raise RuntimeError("role change rejected")

    async def request_unblock_effects(self, guild_id, user_id):
        self.unblocked.append((guild_id, user_id))
        if self.fail:
            raise RuntimeError("role change rejected")


@pytest.fixture
def clock():
    return FakeClock(ms_from_iso("2024-03-05T12:00:00Z"))


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "data" / "state.json")


@pytest.fixture
def store(state_path):
    store = StateStore(state_path)
    store.load()
    return store


@pytest.fixture
def guild_configs(tmp_path):
    configs = GuildConfigService(str(tmp_path / "config.json"))
    configs.apply_setup(GUILD, BLOCK_ROLE, TRACK_ROLE, 60)
    return configs


@pytest.fixture
def effects():
    return RecordingEffects()


@pytest.fixture
def service(store, guild_configs, effects, clock):
    return TimegateService(store, guild_configs, effects=effects, clock=clock)
