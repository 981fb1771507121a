"""Live broadcast of run events to connected clients."""

from __future__ import annotations

import asyncio

from evalrig.reporter.events import Event, serialize_event


class Subscription:
    """One client's view of the event stream, as JSON text messages.

    Iteration ends when the subscription or the broadcaster is closed.
    """

    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> str:
        message = await self.queue.get()
        if message is None:
            raise StopAsyncIteration
        return message

    def close(self) -> None:
        self._broadcaster._clients.discard(self)
        self.queue.put_nowait(None)


class Broadcaster:
    """Pipeline subscriber mirroring every event to all subscriptions."""

    def __init__(self) -> None:
        self._clients: set[Subscription] = set()

    def subscribe(self) -> Subscription:
        """Register a client; it receives every event sent from now on."""
        subscription = Subscription(self)
        self._clients.add(subscription)
        return subscription

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def __call__(self, event: Event) -> None:
        message = serialize_event(event)
        for client in list(self._clients):
            client.queue.put_nowait(message)

    def close(self) -> None:
        for client in list(self._clients):
            client.close()
