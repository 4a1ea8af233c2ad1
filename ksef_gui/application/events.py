"""In-process fan-out of progress events to open SSE streams."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


class Subscription:
    """One open event stream. Iterate it to receive serialized messages."""

    def __init__(self, hub: "EventHub", maxsize: int) -> None:
        self._hub = hub
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, message: str) -> bool:
        """Queue ``message`` without waiting; False means this subscriber is gone or stalled."""

        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def drain(self) -> list[str]:
        """Return everything queued so far without waiting."""

        messages: list[str] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                break
            messages.append(item)
        return messages

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        await self._hub.unsubscribe(self)


class EventHub:
    """Best-effort broadcast; a subscriber that cannot take a message is dropped."""

    def __init__(self, *, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, *, maxsize: int | None = None) -> Subscription:
        subscription = Subscription(self, self._queue_size if maxsize is None else maxsize)
        async with self._lock:
            self._subscribers.append(subscription)
        logger.debug("SSE subscriber added (%d open)", len(self._subscribers))
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
        subscription.close()

    async def publish(self, event_type: str, payload: dict[str, Any] | None = None) -> None:
        message = json.dumps({"type": event_type, "data": payload or {}}, ensure_ascii=False, default=str)
        async with self._lock:
            snapshot = list(self._subscribers)

        dead = [subscription for subscription in snapshot if not subscription.offer(message)]
        if dead:
            async with self._lock:
                self._subscribers = [item for item in self._subscribers if item not in dead]
            for subscription in dead:
                subscription.close()
            logger.debug("Dropped %d unresponsive SSE subscriber(s)", len(dead))

    async def close(self) -> None:
        async with self._lock:
            snapshot, self._subscribers = self._subscribers, []
        for subscription in snapshot:
            subscription.close()
