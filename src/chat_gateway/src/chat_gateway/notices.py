"""Per-user fan-out of coordinator notices to open chat streams."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

    from chat_gateway.events import StreamEvent

__all__ = ["NoticeHub"]

logger = logging.getLogger("chat_gateway.notices")


class NoticeHub:
    """Deliver events published for a user to every stream that user has open."""

    def __init__(self) -> None:
        """Start with no subscribers."""
        self._subscribers: dict[str, set[asyncio.Queue[Any]]] = {}

    def subscribe(self, user_id: str, queue: asyncio.Queue[Any] | None = None) -> asyncio.Queue[Any]:
        """Register ``queue`` (or a new one) for ``user_id``."""
        queue = queue if queue is not None else asyncio.Queue()
        self._subscribers.setdefault(user_id, set()).add(queue)
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue[Any]) -> None:
        """Drop a queue registered with ``subscribe``."""
        queues = self._subscribers.get(user_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[user_id]

    @contextmanager
    def subscription(self, user_id: str, queue: asyncio.Queue[Any] | None = None) -> Iterator[asyncio.Queue[Any]]:
        """Subscribe for the duration of a ``with`` block."""
        queue = self.subscribe(user_id, queue)
        try:
            yield queue
        finally:
            self.unsubscribe(user_id, queue)

    async def publish(self, user_id: str, event: StreamEvent) -> int:
        """Queue ``event`` for every open stream of ``user_id``. Returns how many received it."""
        queues = list(self._subscribers.get(user_id, ()))
        for queue in queues:
            queue.put_nowait(event)
        if not queues:
            logger.debug("No open stream for %s; notice dropped", user_id)
        return len(queues)
