"""Tests for the remote execution gateway."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import langgraph_client_impl  # noqa: F401  # binds agent_runtime_api.run_request
import pytest
from chat_gateway.config import GatewaySettings
from chat_gateway.execution import (
    HistoryTrimmer,
    RemoteExecutionGateway,
    RunAccumulator,
    apology_message,
    backoff_delay_ms,
    thread_id_from,
)
from chat_gateway.sse import SSEEvent
from chat_gateway.threads import ThreadCache

from agent_runtime_api import Client, RemoteRunError, RemoteUnavailable, TransientNetworkError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from agent_runtime_api import RunRequest

HI_BODY = 'data: {"messages":[{"role":"assistant","content":"hi"}]}\n\ndata: [DONE]\n\n'
APOLOGY = "I apologize, but I'm having trouble connecting to the supervisor service right now. Please try again in a moment."


class FakeClient(Client):
    """Scripted remote client.

    Each run consumes the next script entry: a list of fragments to yield, or an exception to raise
    before the first fragment.
    """

    def __init__(self, runs: list[Any], thread_body: dict[str, Any] | None = None) -> None:
        self.runs = list(runs)
        self.thread_body = {"thread_id": "t1"} if thread_body is None else thread_body
        self.thread_calls: list[dict[str, Any]] = []
        self.run_calls: list[tuple[str, dict[str, Any]]] = []

    async def create_thread(self, metadata: Mapping[str, Any]) -> dict[str, Any]:
        self.thread_calls.append(dict(metadata))
        return self.thread_body

    async def stream_run(self, thread_id: str, request: RunRequest) -> AsyncIterator[str]:
        self.run_calls.append((thread_id, request.to_dict()))
        script = self.runs.pop(0)
        if isinstance(script, BaseException):
            raise script
        for fragment in script:
            if isinstance(fragment, BaseException):
                raise fragment
            yield fragment


class Sleeper:
    """Records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _gateway(client: FakeClient, sleeper: Sleeper | None = None, **overrides: Any) -> RemoteExecutionGateway:
    settings = GatewaySettings(**overrides)
    return RemoteExecutionGateway(client, settings, sleep=sleeper or Sleeper(), rng=lambda: 0.5)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(("attempt", "low", "high"), [(1, 1000, 1100), (2, 2000, 2100), (3, 4000, 4100)])
@pytest.mark.parametrize("jitter", [0.0, 0.5, 0.999])
def test_backoff_delay_ranges(attempt: int, low: int, high: int, jitter: float) -> None:
    """Backoff doubles per attempt and adds under 100ms of jitter."""
    delay = backoff_delay_ms(attempt, 1000, lambda: jitter)

    assert low <= delay < high


def test_apology_names_agent() -> None:
    """The apology reply names the unreachable agent."""
    assert apology_message("supervisor") == APOLOGY


@pytest.mark.parametrize("body", [{"thread_id": "x"}, {"id": "x"}, {"threadId": "x"}])
def test_thread_id_from_accepts_known_keys(body: dict[str, Any]) -> None:
    """Any of the known identifier keys is accepted."""
    assert thread_id_from(body) == "x"


def test_thread_id_from_missing_raises() -> None:
    """A response without an identifier is an unavailable service."""
    with pytest.raises(RemoteUnavailable):
        thread_id_from({"metadata": {}})


def test_accumulator_seeds_from_partial_only_when_empty() -> None:
    """Partial events seed the content until a full message list arrives."""
    accumulator = RunAccumulator()

    accumulator.add(SSEEvent(kind="json", data={"partial": "thinking"}, event="messages/partial"))
    assert accumulator.content == "thinking"

    accumulator.add(SSEEvent(kind="json", data={"messages": [{"role": "assistant", "content": "done"}]}))
    accumulator.add(SSEEvent(kind="json", data={"partial": "late"}, event="messages/partial"))

    assert accumulator.result() == {"messages": [{"role": "assistant", "content": "done"}], "content": "done"}


def test_accumulator_text_event_synthesizes_message() -> None:
    """A plain text event becomes the content and a single assistant message."""
    accumulator = RunAccumulator()
    accumulator.add(SSEEvent(kind="text", text="plain reply"))

    assert accumulator.result() == {"messages": [{"role": "assistant", "content": "plain reply"}], "content": "plain reply"}


def test_history_trimmer_drops_repeated_history() -> None:
    """Only messages after the newest user turn, then only appended ones, are kept."""
    # ARRANGE
    trimmer = HistoryTrimmer()
    history = [
        {"role": "user", "content": "old question"},
        {"role": "assistant", "content": "old answer"},
        {"role": "user", "content": "new question"},
    ]
    first = SSEEvent(kind="json", data={"messages": [*history, {"role": "assistant", "content": "step 1"}]})
    second = SSEEvent(
        kind="json",
        data={"messages": [*history, {"role": "assistant", "content": "step 1"}, {"role": "assistant", "content": "step 2"}]},
    )

    # ACT
    trimmed_first = trimmer.trim(first)
    trimmed_second = trimmer.trim(second)

    # ASSERT
    assert trimmed_first.data["messages"] == [{"role": "assistant", "content": "step 1"}]
    assert trimmed_second.data["messages"] == [{"role": "assistant", "content": "step 2"}]


def test_history_trimmer_leaves_other_events() -> None:
    """Events without a message list pass through unchanged."""
    event = SSEEvent(kind="json", data={"status": "working"})

    assert HistoryTrimmer().trim(event) is event


# ---------------------------------------------------------------------------
# invoke
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_invoke_returns_assistant_content() -> None:
    """A run streaming one assistant message returns its content."""
    # ARRANGE
    client = FakeClient([[HI_BODY]])
    gateway = _gateway(client)

    # ACT
    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    # ASSERT
    assert result == {"messages": [{"role": "assistant", "content": "hi"}], "content": "hi"}
    assert client.thread_calls[0]["conversationId"] == "conv_1"
    assert client.thread_calls[0]["userId"] == "u1"
    assert client.thread_calls[0]["agentId"] == "supervisor"
    thread_id, body = client.run_calls[0]
    assert thread_id == "t1"
    assert body["assistant_id"] == "supervisor"
    assert body["stream_mode"] == "values"


@pytest.mark.asyncio
async def test_invoke_reuses_thread_per_conversation() -> None:
    """The second turn of a conversation reuses its thread."""
    client = FakeClient([[HI_BODY], [HI_BODY]])
    gateway = _gateway(client)

    await gateway.invoke("supervisor", "one", "u1", "conv_1")
    await gateway.invoke("supervisor", "two", "u1", "conv_1")

    assert len(client.thread_calls) == 1
    assert [call[0] for call in client.run_calls] == ["t1", "t1"]


@pytest.mark.asyncio
async def test_invoke_sweeps_idle_bindings_and_recreates_thread() -> None:
    """A successful turn evicts idle bindings; the idle conversation then gets a new thread."""
    # ARRANGE
    clock = FakeClock()
    client = FakeClient([[HI_BODY], [HI_BODY], [HI_BODY]])
    cache = ThreadCache(ttl_seconds=60, clock=clock)
    gateway = RemoteExecutionGateway(client, GatewaySettings(), cache=cache, sleep=Sleeper(), rng=lambda: 0.5)

    # ACT
    await gateway.invoke("supervisor", "one", "u1", "conv_idle")
    clock.now += 61
    await gateway.invoke("supervisor", "two", "u1", "conv_busy")
    swept = "conv_idle" not in cache
    await gateway.invoke("supervisor", "three", "u1", "conv_idle")

    # ASSERT
    assert swept
    assert [call["conversationId"] for call in client.thread_calls] == ["conv_idle", "conv_busy", "conv_idle"]
    assert "conv_idle" in cache


@pytest.mark.asyncio
async def test_invoke_handles_fragmented_body() -> None:
    """Fragments that split events still produce the full reply."""
    fragments = [HI_BODY[:10], HI_BODY[10:37], HI_BODY[37:]]
    gateway = _gateway(FakeClient([fragments]))

    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    assert result["content"] == "hi"


@pytest.mark.asyncio
async def test_invoke_retries_transient_failures() -> None:
    """Transient failures are retried with growing delays until a run succeeds."""
    # ARRANGE
    sleeper = Sleeper()
    client = FakeClient([TransientNetworkError("reset"), TransientNetworkError("reset"), [HI_BODY]])
    gateway = _gateway(client, sleeper)

    # ACT
    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    # ASSERT
    assert result["content"] == "hi"
    assert sleeper.delays == [pytest.approx(1.05), pytest.approx(2.05)]


@pytest.mark.asyncio
async def test_invoke_apologizes_after_exhausting_retries() -> None:
    """After max_retries + 1 transient failures the apology is returned."""
    sleeper = Sleeper()
    client = FakeClient([TransientNetworkError("reset")] * 4)
    gateway = _gateway(client, sleeper)

    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    assert result == {"messages": [{"role": "assistant", "content": APOLOGY}], "content": APOLOGY}
    assert len(client.run_calls) == 4  # noqa: PLR2004
    assert len(sleeper.delays) == 3  # noqa: PLR2004


@pytest.mark.asyncio
async def test_invoke_apologizes_on_http_error_without_retry() -> None:
    """Non-transient failures are not retried."""
    sleeper = Sleeper()
    client = FakeClient([RemoteRunError(500, "boom")])
    gateway = _gateway(client, sleeper)

    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    assert result["content"] == APOLOGY
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_invoke_apologizes_when_thread_has_no_id() -> None:
    """A thread without an identifier yields the apology and caches nothing."""
    client = FakeClient([], thread_body={})
    gateway = _gateway(client)

    result = await gateway.invoke("supervisor", "hello", "u1", "conv_1")

    assert result["content"] == APOLOGY
    assert "conv_1" not in gateway.cache


# ---------------------------------------------------------------------------
# stream
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_yields_events_until_done() -> None:
    """Decoded events are yielded and the terminator is not."""
    gateway = _gateway(FakeClient([[HI_BODY]]))

    events = [event async for event in gateway.stream("supervisor", "hello", "u1", "conv_1")]

    assert len(events) == 1
    assert events[0].data == {"messages": [{"role": "assistant", "content": "hi"}]}


@pytest.mark.asyncio
async def test_stream_trims_history_by_default() -> None:
    """History repeated in snapshots is stripped unless the caller opts out."""
    body = (
        'data: {"messages":[{"role":"user","content":"q"},{"role":"assistant","content":"a"}]}\n\n'
        "data: [DONE]\n\n"
    )
    gateway = _gateway(FakeClient([[body], [body]]))

    trimmed = [event async for event in gateway.stream("supervisor", "q", "u1", "conv_1")]
    full = [event async for event in gateway.stream("supervisor", "q", "u1", "conv_1", new_messages_only=False)]

    assert trimmed[0].data["messages"] == [{"role": "assistant", "content": "a"}]
    assert len(full[0].data["messages"]) == 2  # noqa: PLR2004


@pytest.mark.asyncio
async def test_stream_retries_before_first_event() -> None:
    """A transient failure before anything was yielded is retried."""
    sleeper = Sleeper()
    gateway = _gateway(FakeClient([TransientNetworkError("reset"), [HI_BODY]]), sleeper)

    events = [event async for event in gateway.stream("supervisor", "hello", "u1", "conv_1")]

    assert events[0].data["messages"][0]["content"] == "hi"
    assert len(sleeper.delays) == 1


@pytest.mark.asyncio
async def test_stream_interrupted_after_first_event_stops() -> None:
    """A failure after events were yielded ends the stream without retry or apology."""
    sleeper = Sleeper()
    first = 'data: {"messages":[{"role":"assistant","content":"partial"}]}\n\n'
    gateway = _gateway(FakeClient([[first, TransientNetworkError("reset")]]), sleeper)

    events = [event async for event in gateway.stream("supervisor", "hello", "u1", "conv_1")]

    assert [event.data["messages"][0]["content"] for event in events] == ["partial"]
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_stream_apologizes_when_run_cannot_start() -> None:
    """When every attempt fails the stream yields a single apology event."""
    gateway = _gateway(FakeClient([RemoteRunError(503, "down")]))

    events = [event async for event in gateway.stream("supervisor", "hello", "u1", "conv_1")]

    assert events == [SSEEvent(kind="json", data={"messages": [{"role": "assistant", "content": APOLOGY}]})]


def test_clear_drops_bindings() -> None:
    """clear() forwards to the cache."""
    gateway = _gateway(FakeClient([]))

    assert gateway.clear("missing") == 0
    assert gateway.clear() == 0
