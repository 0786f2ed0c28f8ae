"""
Clock
Wall-clock sources in epoch milliseconds
"""

import time


class Clock:
    """Supplies the current wall-clock time"""

    def now_ms(self) -> int:
        raise NotImplementedError


class SystemClock(Clock):
    """Clock backed by the system time"""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class FakeClock(Clock):
    """Manually driven clock for tests and replays"""

    def __init__(self, start_ms: int = 0):
        self._now = start_ms

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int):
        self._now = now_ms

    def advance(self, ms: int) -> int:
        """Move the clock forward and return the new time"""
        self._now += ms
        return self._now
