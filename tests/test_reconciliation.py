import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.user_record import TransitionKind
from services.reconciliation import ReconciliationScheduler, SweepConfig
from services.timegate_service import TimegateService
from utils.time_utils import MINUTE_MS, DAY_MS

from tests.conftest import GUILD, USER


@pytest.mark.asyncio
async def test_run_once_runs_both_sweeps(service, clock, effects):
    service.quota.set_block(GUILD, "expired", clock.now_ms() - 1)
    await service.on_transition(GUILD, USER, TransitionKind.JOINED)
    clock.advance(60 * MINUTE_MS)

    scheduler = ReconciliationScheduler(service)
    result = await scheduler.run_once()

    assert result == {"unblocked": 1, "blocked": 1}
    assert effects.unblocked == [(GUILD, "expired")]
    assert effects.blocked == [(GUILD, USER, 60)]
    assert scheduler.stats["block_sweeps"] == 1
    assert scheduler.stats["session_sweeps"] == 1


@pytest.mark.asyncio
async def test_loops_sweep_until_stopped(service, clock, effects):
    await service.on_transition(GUILD, USER, TransitionKind.JOINED)
    clock.advance(60 * MINUTE_MS)
    scheduler = ReconciliationScheduler(
        service, SweepConfig(block_interval_seconds=0.01, session_interval_seconds=0.01)
    )

    await scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert scheduler.running is False
    assert effects.blocked == [(GUILD, USER, 60)]
    assert service.is_blocked(GUILD, USER)
    assert scheduler.stats["session_sweeps"] >= 1


@pytest.mark.asyncio
async def test_sweep_error_does_not_stop_loop():
    calls = []

    async def flaky_sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return []

    service = MagicMock(spec=TimegateService)
    service.process_expired_blocks = AsyncMock(side_effect=flaky_sweep)
    service.check_active_sessions = AsyncMock(return_value=[])
    scheduler = ReconciliationScheduler(
        service, SweepConfig(block_interval_seconds=0.01, session_interval_seconds=10)
    )

    await scheduler.start()
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert scheduler.stats["errors"] == 1
    assert service.process_expired_blocks.await_count >= 2


@pytest.mark.asyncio
async def test_block_lifecycle_end_to_end(service, clock, effects):
    scheduler = ReconciliationScheduler(service)
    await service.on_transition(GUILD, USER, TransitionKind.JOINED)
    clock.advance(75 * MINUTE_MS)
    await scheduler.run_once()
    assert service.is_blocked(GUILD, USER)

    clock.advance(DAY_MS)
    await scheduler.run_once()

    assert not service.is_blocked(GUILD, USER)
    assert service.query_status(GUILD, USER).remaining_ms == 60 * MINUTE_MS
    assert effects.unblocked == [(GUILD, USER)]
