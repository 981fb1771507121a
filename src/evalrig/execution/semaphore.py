"""Counting semaphore with FIFO hand-off.

Bounds how many execution units of a variant group run at once when an
eval sets ``parallel_limit``. Unlike asyncio.Semaphore, a release hands
its permit directly to the oldest waiter, and ``available()`` and
``queue_length()`` are part of the public contract.
"""

from __future__ import annotations

import asyncio
from collections import deque


class Semaphore:
    """FIFO counting semaphore for cooperative tasks.

    ``release()`` without a matching ``acquire()`` is a caller bug and is
    not guarded against: it simply adds a permit.
    """

    def __init__(self, permits: int) -> None:
        if permits <= 0:
            raise ValueError("Semaphore permits must be positive")
        self._permits = permits
        self._waiters: deque[asyncio.Future[None]] = deque()

    async def acquire(self) -> None:
        """Take a permit, waiting in FIFO order if none is available."""
        if self._permits > 0:
            self._permits -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # Permit was handed over just before cancellation: pass it on.
            if waiter.done() and not waiter.cancelled():
                self.release()
            raise

    def release(self) -> None:
        """Hand the permit to the oldest live waiter, or return it to the pool."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._permits += 1

    def available(self) -> int:
        """Number of free permits."""
        return self._permits

    def queue_length(self) -> int:
        """Number of callers waiting for a permit."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def __aenter__(self) -> Semaphore:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()
