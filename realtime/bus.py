from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    type: str
    data: dict

    @property
    def topic(self) -> str:
        """Leading segment of the type: ``feed.updated`` belongs to ``feed``."""
        return self.type.split(".", 1)[0]


class EventBus:
    """Fan-out of notifications to subscriber queues.

    A subscriber may ask for a subset of topics (``feed``, ``weather``,
    ``clock``); everything else is kept out of its queue. Slow subscribers
    lose their oldest queued notification rather than blocking the publisher,
    and the bus counts how many were lost that way.
    """

    def __init__(self, queue_size: int = 200) -> None:
        self._lock = asyncio.Lock()
        self._queue_size = queue_size
        # queue -> topics it wants; None means all of them
        self._subscribers: dict[asyncio.Queue[Notification], frozenset[str] | None] = {}
        self._dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped(self) -> int:
        return self._dropped

    async def subscribe(
        self, topics: Iterable[str] | None = None
    ) -> asyncio.Queue[Notification]:
        queue: asyncio.Queue[Notification] = asyncio.Queue(maxsize=self._queue_size)
        wanted = frozenset(topics) if topics is not None else None
        async with self._lock:
            self._subscribers[queue] = wanted or None
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[Notification]) -> None:
        async with self._lock:
            self._subscribers.pop(queue, None)

    @asynccontextmanager
    async def subscription(
        self, topics: Iterable[str] | None = None
    ) -> AsyncIterator[asyncio.Queue[Notification]]:
        queue = await self.subscribe(topics)
        try:
            yield queue
        finally:
            await self.unsubscribe(queue)

    async def publish(self, notification: Notification) -> int:
        """Queue ``notification`` for every interested subscriber.

        Returns how many subscribers received it.
        """
        async with self._lock:
            targets = [
                queue
                for queue, wanted in self._subscribers.items()
                if wanted is None or notification.topic in wanted
            ]
        for queue in targets:
            if queue.full():
                queue.get_nowait()
                self._dropped += 1
                logger.debug("subscriber queue full; dropped oldest notification")
            queue.put_nowait(notification)
        return len(targets)
