"""
jitter.py — Adaptive pre-dispatch delay.

Every notification waits a random delay before its devices are pushed,
so that an observer of provider traffic cannot line pushes up with the
events that caused them. The delay ceiling shrinks as traffic grows:

═══════════════════════════════════════════════════════════════════════════
FORMULA
═══════════════════════════════════════════════════════════════════════════

    freq   = samples / age_of_oldest_sample      (0.25/s while < 4 samples)
    bound  = 1 / (freq × a),   a = (2 − √2) / 2
    delay  ~ Uniform[0, min(bound, max_jitter)]

    freq (1/s)    bound (s)
    ──────────    ─────────
    0.25          13.657
    1.0           3.414
    10.0          0.341
    100.0         0.034

Samples are the start instants of notifications that reached at least
one device, so failing requests cannot be used to shrink the delay.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import math
import random
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 25
BOOTSTRAP_SAMPLES = 4
BOOTSTRAP_FREQUENCY = 0.25  # pushes per second
JITTER_FACTOR = (2 - math.sqrt(2)) / 2


class ReadWriteLock:
    """
    asyncio reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so writes are not starved.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class JitterEstimator:
    """
    Keeps the recent success history and rolls jitter delays from it.

    One instance is shared by every request the application serves.

    Parameters
    ----------
    max_jitter : float
        Ceiling in seconds. 0 disables jitter.
    clock : callable
        Monotonic clock in seconds; must match the ``started_at`` values
        handed to ``record_success``.
    rng : random.Random
        Source of the uniform draw.
    """

    def __init__(
        self,
        max_jitter: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.max_jitter = max(0.0, max_jitter)
        self._clock = clock
        self._rng = rng or random.Random()
        self._history: List[float] = []  # min-heap, oldest at [0]
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        return len(self._history)

    @staticmethod
    def jitter_bound(freq: float) -> float:
        """Un-clamped delay ceiling for a push frequency (per second)."""
        return 1.0 / (freq * JITTER_FACTOR)

    async def delay_bound(self) -> float:
        """Current ceiling of the uniform draw, already clamped to max_jitter."""
        if self.max_jitter == 0:
            return 0.0
        async with self._lock.read():
            samples = len(self._history)
            if samples < BOOTSTRAP_SAMPLES:
                bound = self.jitter_bound(BOOTSTRAP_FREQUENCY)
            else:
                age = self._clock() - self._history[0]
                bound = self.jitter_bound(samples / age) if age > 0 else 0.0
        return min(bound, self.max_jitter)

    async def estimate_delay(self) -> float:
        """Roll a delay from ``[0, delay_bound()]``."""
        bound = await self.delay_bound()
        if bound <= 0:
            return 0.0
        return min(max(self._rng.uniform(0.0, bound), 0.0), bound)

    async def record_success(self, started_at: float) -> None:
        """Remember a notification that reached at least one device."""
        async with self._lock.write():
            heapq.heappush(self._history, started_at)
            while len(self._history) > HISTORY_CAPACITY:
                heapq.heappop(self._history)
        logger.debug("Jitter history now holds %d samples", len(self._history))

    def oldest_sample(self) -> Optional[float]:
        return self._history[0] if self._history else None
