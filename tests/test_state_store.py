import json
import os
from unittest.mock import patch

import pytest

from services.state_store import StateStore
from utils.errors import StorePersistenceError
from utils.time_utils import MINUTE_MS

from tests.conftest import ms_from_iso


def test_missing_file_creates_empty_snapshot(state_path):
    store = StateStore(state_path)
    store.load()

    with open(state_path) as f:
        assert json.load(f) == {"guilds": {}}


def test_corrupt_file_falls_back_to_empty_state(state_path, caplog):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        f.write("{not json")

    store = StateStore(state_path)
    store.load()

    assert store.guild_ids() == []
    assert "Failed to read state file" in caplog.text


def test_wrong_shape_falls_back_to_empty_state(state_path):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"guilds": {"g": {"users": {"u": "oops"}}}}, f)

    store = StateStore(state_path)
    store.load()

    assert list(store.iter_users()) == []


def test_snapshot_round_trip(store, state_path):
    record = store.get_user("g", "u")
    record.daily_totals = {"2024-03-05": 5 * MINUTE_MS}
    record.block_expires_at = ms_from_iso("2024-03-06T12:00:00Z")
    store.save()

    reloaded = StateStore(state_path)
    reloaded.load()

    assert reloaded.get_user("g", "u") == record
    assert not any(name.endswith(".tmp") for name in os.listdir(os.path.dirname(state_path)))


def test_negative_totals_are_dropped_on_load(state_path):
    os.makedirs(os.path.dirname(state_path))
    with open(state_path, "w") as f:
        json.dump({"guilds": {"g": {"users": {"u": {"daily_totals": {"2024-03-05": -5, "2024-03-04": 7}}}}}}, f)

    store = StateStore(state_path)
    store.load()

    assert store.get_user("g", "u").daily_totals == {"2024-03-04": 7}


def test_startup_sanitation_drops_open_sessions_without_credit(store, state_path):
    start = ms_from_iso("2024-03-05T10:00:00Z")
    store.get_user("g1", "a").active_session_start = start
    store.get_user("g1", "a").daily_totals = {"2024-03-05": MINUTE_MS}
    store.get_user("g2", "b").active_session_start = start
    store.get_user("g2", "c")
    store.save()

    restarted = StateStore(state_path)
    restarted.load()
    dropped = restarted.clear_active_sessions()

    assert dropped == 2
    assert restarted.get_user("g1", "a").active_session_start is None
    assert restarted.get_user("g1", "a").daily_totals == {"2024-03-05": MINUTE_MS}
    assert restarted.get_user("g2", "b").daily_totals == {}

    on_disk = StateStore(state_path)
    on_disk.load()
    assert on_disk.active_session_ids("g1") == []


def test_write_failure_is_raised(store):
    with patch("services.state_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StorePersistenceError) as excinfo:
            store.save()

    assert "disk full" in str(excinfo.value)
    assert not any(name.endswith(".tmp") for name in os.listdir(os.path.dirname(store.file_path)))


def test_lookups_by_guild(store):
    now = ms_from_iso("2024-03-05T12:00:00Z")
    store.get_user("g", "active").active_session_start = now
    store.get_user("g", "blocked").block_expires_at = now + 1
    store.get_user("g", "expired").block_expires_at = now
    store.get_user("other", "x").active_session_start = now

    assert store.active_session_ids("g") == ["active"]
    assert store.blocked_user_ids("g", now) == ["blocked"]
    assert store.expired_block_ids("g", now) == ["expired"]
    assert store.stats(now) == {"guilds": 2, "users": 4, "active_sessions": 2, "blocked_users": 1}


def test_peek_does_not_create_records(store):
    assert store.peek_user("g", "u") is None
    assert list(store.iter_users()) == []


def test_deferred_save_writes_once_on_exit(store):
    with patch.object(store, "_write", wraps=store._write) as write:
        with store.deferred_save():
            store.get_user("g", "a").active_session_start = 1
            store.save()
            store.get_user("g", "b").active_session_start = 2
            store.save()
            assert write.call_count == 0

    assert write.call_count == 1
    reloaded = StateStore(store.file_path)
    reloaded.load()
    assert reloaded.peek_user("g", "b").active_session_start == 2


def test_failed_deferred_write_is_retried_by_next_save(store):
    store.get_user("g", "a").block_expires_at = 5
    with patch("services.state_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StorePersistenceError):
            with store.deferred_save():
                store.save()

    with store.deferred_save():
        pass

    reloaded = StateStore(store.file_path)
    reloaded.load()
    assert reloaded.peek_user("g", "a").block_expires_at == 5
