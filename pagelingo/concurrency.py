"""Counting semaphore with observable counters for bounded dispatch."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Dict


class CountingSemaphore:
    """FIFO counting semaphore.

    ``release`` hands the slot straight to the oldest queued ``acquire``
    so ``in_flight`` never exceeds ``max_concurrency``.
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.in_flight = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def queued(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self.in_flight < self.max_concurrency and not self.queued:
            self.in_flight += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation: pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self.in_flight <= 0:
            raise RuntimeError("release() called more times than acquire()")
        self.in_flight -= 1

    def snapshot(self) -> Dict[str, int]:
        return {
            "max_concurrency": self.max_concurrency,
            "in_flight": self.in_flight,
            "queued": self.queued,
        }

    async def __aenter__(self) -> "CountingSemaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
