"""
Reconciliation Scheduler
Periodic sweeps that expire blocks and catch sessions running past the limit
"""

import asyncio
import logging
from dataclasses import dataclass

from services.timegate_service import TimegateService

logger = logging.getLogger("timegate")


@dataclass
class SweepConfig:
    """Intervals for the reconciliation sweeps"""
    block_interval_seconds: float = 60  # Expired-block sweep
    session_interval_seconds: float = 30  # Active-session sweep; bounds how far a member can overshoot


class ReconciliationScheduler:
    """Runs the two sweeps on their own asyncio tasks"""

    def __init__(self, service: TimegateService, config: SweepConfig = None):
        """
        Initialize the scheduler.

        Args:
            service: Service whose sweeps are run
            config: Sweep intervals
        """
        self.service = service
        self.config = config or SweepConfig()
        self._tasks = []
        self._running = False

        # Statistics
        self._block_sweeps = 0
        self._session_sweeps = 0
        self._sweep_errors = 0

    async def start(self):
        """Start both sweep loops"""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop("block-expiry", self.config.block_interval_seconds, self._run_block_sweep)),
            asyncio.create_task(self._loop("active-session", self.config.session_interval_seconds, self._run_session_sweep)),
        ]
        logger.info(
            f"Reconciliation started (blocks every {self.config.block_interval_seconds}s, "
            f"sessions every {self.config.session_interval_seconds}s)"
        )

    async def stop(self):
        """Stop both sweep loops"""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Reconciliation stopped")

    async def _loop(self, name: str, interval: float, sweep):
        while self._running:
            try:
                await asyncio.sleep(interval)
                await sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._sweep_errors += 1
                logger.error(f"Error in {name} sweep: {e}")

    async def _run_block_sweep(self):
        self._block_sweeps += 1
        return await self.service.process_expired_blocks()

    async def _run_session_sweep(self):
        self._session_sweeps += 1
        return await self.service.check_active_sessions()

    async def run_once(self) -> dict:
        """Run both sweeps immediately"""
        unblocked = await self._run_block_sweep()
        blocked = await self._run_session_sweep()
        return {"unblocked": len(unblocked), "blocked": len(blocked)}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Get scheduler statistics"""
        return {
            "running": self._running,
            "block_sweeps": self._block_sweeps,
            "session_sweeps": self._session_sweeps,
            "errors": self._sweep_errors,
        }
