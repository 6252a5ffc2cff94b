"""Conversation to remote-thread bindings with idle expiry."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

__all__ = ["ThreadBinding", "ThreadCache"]

logger = logging.getLogger("chat_gateway.threads")


class ThreadBinding(BaseModel):
    """One conversation's remote thread and when it was last used."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    thread_id: str
    last_used: float

    def touched(self, now: float) -> ThreadBinding:
        """Return a copy with a refreshed timestamp."""
        return self.model_copy(update={"last_used": now})


class ThreadCache:
    """In-memory map of conversation id to thread id, at most one thread per conversation.

    Lookups and the create-on-miss path share a per-conversation lock, so concurrent callers
    for the same conversation wait for a single creation instead of racing.
    """

    def __init__(self, ttl_seconds: float = 3600.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        """Create an empty cache whose bindings expire after ``ttl_seconds`` idle."""
        self._ttl = ttl_seconds
        self._clock = clock
        self._bindings: dict[str, ThreadBinding] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def ttl_seconds(self) -> float:
        """Get the idle time-to-live."""
        return self._ttl

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._bindings

    def get(self, conversation_id: str) -> ThreadBinding | None:
        """Return the live binding for a conversation, if any, without refreshing it."""
        binding = self._bindings.get(conversation_id)
        if binding is None or self._expired(binding, self._clock()):
            return None
        return binding

    async def get_or_create(self, conversation_id: str, create: Callable[[], Awaitable[str]]) -> str:
        """Return the cached thread id, or call ``create`` once and cache its result.

        Args:
            conversation_id: Caller-supplied conversation identifier.
            create: Coroutine factory that creates a remote thread and returns its id.

        Returns:
            The thread id bound to the conversation.

        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            binding = self._bindings.get(conversation_id)
            now = self._clock()
            if binding is not None and not self._expired(binding, now):
                self._bindings[conversation_id] = binding.touched(now)
                return binding.thread_id
            thread_id = await create()
            self._bindings[conversation_id] = ThreadBinding(
                conversation_id=conversation_id,
                thread_id=thread_id,
                last_used=self._clock(),
            )
            logger.info("Bound conversation %s to thread %s", conversation_id, thread_id)
            return thread_id

    def evict_stale(self) -> list[str]:
        """Drop bindings idle longer than the TTL and return their conversation ids."""
        now = self._clock()
        stale = [cid for cid, binding in self._bindings.items() if self._expired(binding, now)]
        for conversation_id in stale:
            del self._bindings[conversation_id]
            self._drop_lock(conversation_id)
        if stale:
            logger.info("Evicted %d idle thread binding(s)", len(stale))
        return stale

    def clear(self, conversation_id: str | None = None) -> int:
        """Remove one binding, or every binding when no id is given. Returns how many were removed."""
        if conversation_id is None:
            removed = len(self._bindings)
            self._bindings.clear()
            for key in list(self._locks):
                self._drop_lock(key)
            return removed
        self._drop_lock(conversation_id)
        return 1 if self._bindings.pop(conversation_id, None) is not None else 0

    def _expired(self, binding: ThreadBinding, now: float) -> bool:
        return now - binding.last_used > self._ttl

    def _drop_lock(self, conversation_id: str) -> None:
        lock = self._locks.get(conversation_id)
        if lock is not None and not lock.locked():
            del self._locks[conversation_id]
