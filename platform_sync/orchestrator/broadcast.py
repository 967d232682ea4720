"""In-process publish/subscribe fan-out of progress events."""

from __future__ import annotations

import asyncio
from threading import Lock
from typing import cast

from platform_sync.workers.contracts import SyncProgress

__all__ = ["ProgressBroadcaster", "ProgressSubscription"]

_CLOSED = object()


class ProgressSubscription:
    """Bounded mailbox of one subscriber.

    Delivery is at-most-once: a subscriber that falls behind loses its oldest
    events, and events published before subscribing are never replayed.
    """

    def __init__(self, broadcaster: ProgressBroadcaster, capacity: int) -> None:
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: object) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            if item is not _CLOSED:
                self.dropped += 1
        self._queue.put_nowait(item)

    async def get(self) -> SyncProgress | None:
        """Return the next event, or ``None`` once the subscription is closed."""

        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return cast(SyncProgress, item)

    def get_nowait(self) -> SyncProgress | None:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _CLOSED:
            return None
        return cast(SyncProgress, item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broadcaster._unsubscribe(self)
        self._offer(_CLOSED)

    def __aiter__(self) -> ProgressSubscription:
        return self

    async def __anext__(self) -> SyncProgress:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ProgressBroadcaster:
    def __init__(self, *, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: list[ProgressSubscription] = []
        self._lock = Lock()

    def subscribe(self) -> ProgressSubscription:
        subscription = ProgressSubscription(self, self._capacity)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, event: SyncProgress) -> int:
        """Deliver ``event`` to every current subscriber; return how many received it."""

        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._offer(event)
        return len(subscribers)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()

    def _unsubscribe(self, subscription: ProgressSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
