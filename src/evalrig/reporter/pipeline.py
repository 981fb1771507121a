"""Ordered delivery of run events to subscribers.

A single worker task drains the queue, handing each event to every
subscriber in turn before taking the next one. Senders get a future
that settles once the event has been handled, so a unit can wait until
its result is persisted before releasing its permit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from evalrig.errors import StorageError
from evalrig.reporter.events import Event

logger = logging.getLogger(__name__)

Subscriber = Callable[[Event], Awaitable[None]]


class EventPipeline:
    """FIFO event bus with a single consumer.

    Args:
        subscribers: Coroutine functions called with every event, in
            registration order.
    """

    def __init__(self, subscribers: Iterable[Subscriber] = ()) -> None:
        self._subscribers: list[Subscriber] = list(subscribers)
        self._queue: asyncio.Queue[tuple[Event, asyncio.Future[None]]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self.errors: list[str] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def _ensure_worker(self) -> asyncio.Queue[tuple[Event, asyncio.Future[None]]]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._work())
        return self._queue

    def send(self, event: Event) -> asyncio.Future[None]:
        """Enqueue an event.

        Returns:
            Future resolved when every subscriber has handled the event,
            or failed with StorageError if any subscriber raised.
        """
        queue = self._ensure_worker()
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        queue.put_nowait((event, future))
        return future

    async def _work(self) -> None:
        assert self._queue is not None
        while True:
            event, future = await self._queue.get()
            failures: list[str] = []
            try:
                for subscriber in self._subscribers:
                    try:
                        await subscriber(event)
                    except Exception as exc:
                        logger.exception("Failed to handle %s event", event.type)
                        failures.append(f"{event.type}: {type(exc).__name__}: {exc}")
            finally:
                self.errors.extend(failures)
                if not future.done():
                    if failures:
                        future.set_exception(StorageError("; ".join(failures)))
                    else:
                        future.set_result(None)
                self._queue.task_done()

    async def wait_for_completion(self) -> None:
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the worker."""
        await self.wait_for_completion()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
