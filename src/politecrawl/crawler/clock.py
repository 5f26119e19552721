"""
Clock abstraction used for every wait in the crawler.

``SystemClock`` delegates to ``time`` and ``asyncio.sleep``. ``ManualClock``
keeps a priority queue of pending wakeups and only moves when ``advance`` is
called, so scheduling delays, TTLs and sweep intervals can be tested without
real sleeping.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import List, Tuple


class Clock:
    """Interface: a monotonic reading, a wall-clock reading and a sleep."""

    def monotonic(self) -> float:
        raise NotImplementedError

    def time(self) -> float:
        raise NotImplementedError

    async def sleep(self, delay: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


class ManualClock(Clock):
    """
    Deterministic clock for tests.

    ``sleep`` registers a future in a heap ordered by wake time; ``advance``
    moves time forward and resolves every wakeup that has come due, in order,
    yielding to the event loop between them so woken tasks run before the
    next one fires.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._start = start
        self._counter = itertools.count()
        self._wakeups: List[Tuple[float, int, asyncio.Future[None]]] = []

    def monotonic(self) -> float:
        return self._now - self._start

    def time(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, fut in self._wakeups if not fut.done())

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            await asyncio.sleep(0)
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._wakeups, (self._now + delay, next(self._counter), future))
        await future

    async def advance(self, seconds: float) -> None:
        target = self._now + seconds
        await _settle()
        while self._wakeups and self._wakeups[0][0] <= target:
            wake_at, _, future = heapq.heappop(self._wakeups)
            self._now = max(self._now, wake_at)
            if not future.done():
                future.set_result(None)
            await _settle()
        self._now = target
        await _settle()


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)
