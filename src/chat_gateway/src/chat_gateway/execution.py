"""Remote execution gateway: thread bindings, streamed runs, retries and the apology fallback."""

from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import agent_runtime_api
from agent_runtime_api import RemoteServiceError, RemoteUnavailable, TransientNetworkError
from chat_gateway.config import GatewaySettings
from chat_gateway.sse import SSEDecoder, SSEEvent
from chat_gateway.threads import ThreadCache

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from agent_runtime_api import Client, RunRequest

__all__ = [
    "HistoryTrimmer",
    "RemoteExecutionGateway",
    "RunAccumulator",
    "apology_message",
    "backoff_delay_ms",
    "thread_id_from",
]

logger = logging.getLogger("chat_gateway.execution")

THREAD_ID_KEYS = ("thread_id", "id", "threadId")
PARTIAL_EVENT = "messages/partial"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def backoff_delay_ms(attempt: int, base_delay_ms: float, rng: Callable[[], float] = random.random) -> float:
    """Return the wait before retry ``attempt`` (1-based): exponential plus under 100ms of jitter."""
    return base_delay_ms * 2 ** (attempt - 1) + rng() * 100


def apology_message(agent_id: str) -> str:
    """Return the synthetic assistant reply used when an agent cannot be reached."""
    return (
        f"I apologize, but I'm having trouble connecting to the {agent_id} service right now. "
        "Please try again in a moment."
    )


def thread_id_from(body: dict[str, Any]) -> str:
    """Pull the thread identifier out of a create-thread response.

    Raises:
        RemoteUnavailable: The response carries no identifier.

    """
    for key in THREAD_ID_KEYS:
        value = body.get(key)
        if value:
            return str(value)
    error_message = "Thread creation did not return an identifier"
    raise RemoteUnavailable(error_message)


def _is_assistant(message: Any) -> bool:  # noqa: ANN401
    return isinstance(message, dict) and (message.get("role") == "assistant" or message.get("type") == "ai")


def _last_user_index(messages: list[Any]) -> int:
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if isinstance(message, dict) and (message.get("role") in ("user", "human") or message.get("type") == "human"):
            return index
    return -1


def _as_text(content: Any) -> str:  # noqa: ANN401
    return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)


def latest_assistant_content(messages: list[Any]) -> str:
    """Return the newest non-empty assistant content in ``messages``, or an empty string."""
    for message in reversed(messages):
        if _is_assistant(message) and message.get("content"):
            return _as_text(message["content"])
    return ""


class RunAccumulator:
    """Fold a run's events into the latest message list and the latest assistant content."""

    def __init__(self) -> None:
        """Start with no messages and no content."""
        self.messages: list[Any] = []
        self.content = ""

    def add(self, event: SSEEvent) -> None:
        """Fold one decoded event."""
        if event.kind == "text":
            self.content = event.text or ""
            return
        data = event.data
        if not isinstance(data, dict):
            return
        messages = data.get("messages")
        if isinstance(messages, list):
            self.messages = messages
            latest = latest_assistant_content(messages)
            if latest:
                self.content = latest
            return
        partial = data.get("partial")
        if PARTIAL_EVENT in (event.event, data.get("event")) and partial and not self.content:
            self.content = _as_text(partial)

    def result(self) -> dict[str, Any]:
        """Return ``{messages, content}``, synthesizing a single assistant message when none arrived."""
        content = self.content or latest_assistant_content(self.messages)
        messages = self.messages or [{"role": "assistant", "content": content}]
        return {"messages": messages, "content": content}


class HistoryTrimmer:
    """Strip thread history that a state snapshot repeats from earlier turns.

    Snapshot-style streams resend the whole message list with every event. In the first snapshot
    of a run only the messages after the newest user message are new; after that, only the
    messages appended since the previous snapshot are.
    """

    def __init__(self) -> None:
        """Start before the first snapshot."""
        self._seen: int | None = None

    def trim(self, event: SSEEvent) -> SSEEvent:
        """Return ``event`` with already-seen messages removed."""
        if event.kind != "json" or not isinstance(event.data, dict):
            return event
        messages = event.data.get("messages")
        if not isinstance(messages, list):
            return event
        if self._seen is None:
            fresh = messages[_last_user_index(messages) + 1 :]
            self._seen = len(messages)
        else:
            fresh = messages[self._seen :]
            self._seen = max(self._seen, len(messages))
        return event.model_copy(update={"data": {**event.data, "messages": fresh}})


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class RemoteExecutionGateway:
    """Run remote agents on behalf of conversations.

    Every conversation is bound to one remote thread. Transient network failures are retried
    with exponential backoff; anything that still fails becomes an apology reply so a turn
    always gets an answer.
    """

    def __init__(
        self,
        client: Client | None = None,
        settings: GatewaySettings | None = None,
        *,
        cache: ThreadCache | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Create a gateway.

        Args:
            client: Remote execution client; defaults to the registered implementation.
            settings: Retry, stream-mode and cache settings; defaults to the environment.
            cache: Thread binding cache; one is built from ``settings`` when omitted.
            sleep: Awaitable delay, in seconds, used between retries.
            rng: Jitter source returning floats in ``[0, 1)``.
            now: Clock used for thread creation timestamps.

        """
        self._client = client or agent_runtime_api.get_client()
        self._settings = settings or GatewaySettings.from_env()
        self._cache = cache or ThreadCache(self._settings.thread_ttl_seconds)
        self._sleep = sleep
        self._rng = rng
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def settings(self) -> GatewaySettings:
        """Get the gateway settings."""
        return self._settings

    @property
    def cache(self) -> ThreadCache:
        """Get the thread binding cache."""
        return self._cache

    async def ensure_thread(self, conversation_id: str, user_id: str, agent_id: str | None = None) -> str:
        """Return the conversation's thread id, creating the remote thread on a miss.

        Raises:
            RemoteUnavailable: Thread creation returned no identifier.
            TransientNetworkError: The service could not be reached.
            RemoteRunError: The service rejected the request.

        """
        agent = agent_id or self._settings.default_agent_id

        async def create() -> str:
            body = await self._client.create_thread(
                {
                    "conversationId": conversation_id,
                    "userId": user_id,
                    "agentId": agent,
                    "createdAt": self._now().isoformat(),
                },
            )
            return thread_id_from(body)

        return await self._cache.get_or_create(conversation_id, create)

    async def invoke(self, agent_id: str, message: str, user_id: str, conversation_id: str) -> dict[str, Any]:
        """Run ``agent_id`` with ``message`` and return ``{messages, content}``.

        Never raises for remote failures; the apology reply stands in instead.
        """
        attempt = 0
        while True:
            try:
                result = await self._run_once(agent_id, message, user_id, conversation_id)
            except TransientNetworkError as exc:
                attempt += 1
                if attempt > self._settings.max_retries:
                    logger.warning("Giving up on %s after %d attempts: %s", agent_id, attempt, exc)
                    return self._apology(agent_id)
                delay_ms = backoff_delay_ms(attempt, self._settings.retry_base_delay_ms, self._rng)
                logger.info("Transient failure calling %s (%s); retrying in %.0f ms", agent_id, exc, delay_ms)
                await self._sleep(delay_ms / 1000)
            except RemoteServiceError as exc:
                logger.warning("Remote agent %s failed: %s", agent_id, exc)
                return self._apology(agent_id)
            else:
                self._cache.evict_stale()
                return result

    async def stream(
        self,
        agent_id: str,
        message: str,
        user_id: str,
        conversation_id: str,
        *,
        new_messages_only: bool = True,
    ) -> AsyncIterator[SSEEvent]:
        """Yield decoded run events as they arrive.

        Transient failures are retried only until the first event has been yielded. When the
        run cannot be started an apology event is yielded instead. With ``new_messages_only``
        the thread history repeated by snapshot events is stripped.
        """
        attempt = 0
        while True:
            trimmer = HistoryTrimmer() if new_messages_only else None
            yielded = False
            try:
                thread_id = await self.ensure_thread(conversation_id, user_id, agent_id)
                request = self._request(agent_id, message, user_id, conversation_id)
                async for event in self._events(thread_id, request):
                    yielded = True
                    yield trimmer.trim(event) if trimmer is not None else event
            except TransientNetworkError as exc:
                if yielded:
                    logger.warning("Stream from %s interrupted: %s", agent_id, exc)
                    return
                attempt += 1
                if attempt > self._settings.max_retries:
                    logger.warning("Giving up on %s after %d attempts: %s", agent_id, attempt, exc)
                    yield self._apology_event(agent_id)
                    return
                delay_ms = backoff_delay_ms(attempt, self._settings.retry_base_delay_ms, self._rng)
                logger.info("Transient failure streaming %s (%s); retrying in %.0f ms", agent_id, exc, delay_ms)
                await self._sleep(delay_ms / 1000)
            except RemoteServiceError as exc:
                logger.warning("Remote agent %s failed: %s", agent_id, exc)
                if not yielded:
                    yield self._apology_event(agent_id)
                return
            else:
                self._cache.evict_stale()
                return

    def clear(self, conversation_id: str | None = None) -> int:
        """Forget one conversation's thread, or all of them."""
        removed = self._cache.clear(conversation_id)
        logger.info("Cleared %d thread binding(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_once(self, agent_id: str, message: str, user_id: str, conversation_id: str) -> dict[str, Any]:
        thread_id = await self.ensure_thread(conversation_id, user_id, agent_id)
        request = self._request(agent_id, message, user_id, conversation_id)
        accumulator = RunAccumulator()
        async for event in self._events(thread_id, request):
            accumulator.add(event)
        return accumulator.result()

    async def _events(self, thread_id: str, request: RunRequest) -> AsyncIterator[SSEEvent]:
        decoder = SSEDecoder()
        fragments = self._client.stream_run(thread_id, request)
        try:
            async for fragment in fragments:
                for event in decoder.feed(fragment):
                    if event.done:
                        return
                    yield event
                if decoder.done:
                    return
            for event in decoder.flush():
                if not event.done:
                    yield event
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

    def _request(self, agent_id: str, message: str, user_id: str, conversation_id: str) -> RunRequest:
        return agent_runtime_api.run_request(
            assistant_id=agent_id,
            message=message,
            user_id=user_id,
            conversation_id=conversation_id,
            stream_mode=self._settings.stream_mode,
        )

    @staticmethod
    def _apology(agent_id: str) -> dict[str, Any]:
        text = apology_message(agent_id)
        return {"messages": [{"role": "assistant", "content": text}], "content": text}

    @staticmethod
    def _apology_event(agent_id: str) -> SSEEvent:
        return SSEEvent(kind="json", data={"messages": [{"role": "assistant", "content": apology_message(agent_id)}]})
