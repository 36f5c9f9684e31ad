"""
Time source used by the resilience layer and job polling.
"""

import asyncio
import time


class Clock:
    """Wall-clock time plus a cooperative sleep."""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)


class FakeClock(Clock):
    """Clock whose time only moves when something sleeps or ``advance`` is called.

    Used in tests to simulate backoff and polling without real delays.
    """

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps = []

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        # yield so other tasks get a turn, as a real sleep would
        await asyncio.sleep(0)


SYSTEM_CLOCK = Clock()
