"""Tests for evalrig.execution.semaphore - FIFO counting semaphore."""

from __future__ import annotations

import asyncio

import pytest

from evalrig.execution.semaphore import Semaphore


class TestSemaphoreConstruction:
    """Permit count validation."""

    @pytest.mark.parametrize("permits", [0, -1])
    def test_non_positive_permits_rejected(self, permits):
        with pytest.raises(ValueError):
            Semaphore(permits)

    def test_starts_with_all_permits(self):
        sem = Semaphore(3)
        assert sem.available() == 3
        assert sem.queue_length() == 0


class TestSemaphoreAcquireRelease:
    """Blocking, hand-off and restoration of permits."""

    @pytest.mark.asyncio
    async def test_n_plus_one_acquire_blocks_until_release(self):
        sem = Semaphore(2)
        await sem.acquire()
        await sem.acquire()
        assert sem.available() == 0

        blocked = asyncio.create_task(sem.acquire())
        await asyncio.sleep(0)
        assert not blocked.done()
        assert sem.queue_length() == 1

        sem.release()
        await asyncio.wait_for(blocked, timeout=1)
        assert sem.available() == 0
        assert sem.queue_length() == 0

    @pytest.mark.asyncio
    async def test_release_without_waiters_adds_permit(self):
        sem = Semaphore(2)
        sem.release()
        assert sem.available() == 3

    @pytest.mark.asyncio
    async def test_waiters_admitted_in_fifo_order(self):
        sem = Semaphore(1)
        await sem.acquire()
        order: list[int] = []

        async def waiter(n: int) -> None:
            await sem.acquire()
            order.append(n)

        tasks = [asyncio.create_task(waiter(n)) for n in range(3)]
        await asyncio.sleep(0)
        assert sem.queue_length() == 3

        for _ in range(3):
            sem.release()
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        await asyncio.gather(*tasks)
        assert order == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_skipped(self):
        sem = Semaphore(1)
        await sem.acquire()

        cancelled = asyncio.create_task(sem.acquire())
        survivor = asyncio.create_task(sem.acquire())
        await asyncio.sleep(0)
        cancelled.cancel()
        await asyncio.sleep(0)
        assert sem.queue_length() == 1

        sem.release()
        await asyncio.wait_for(survivor, timeout=1)
        assert sem.available() == 0

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self):
        sem = Semaphore(1)
        with pytest.raises(RuntimeError):
            async with sem:
                assert sem.available() == 0
                raise RuntimeError("boom")
        assert sem.available() == 1

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_permits(self):
        sem = Semaphore(2)
        running = 0
        peak = 0

        async def work() -> None:
            nonlocal running, peak
            async with sem:
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0.01)
                running -= 1

        await asyncio.gather(*(work() for _ in range(6)))
        assert peak == 2
        assert sem.available() == 2
