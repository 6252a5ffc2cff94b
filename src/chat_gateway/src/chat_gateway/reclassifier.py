"""Turn loosely-typed agent output into the typed events a chat client renders.

Classification is a pure function of the chunk plus one carried value, the last workflow
context seen, so the same input always yields the same events.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from chat_gateway.config import ClassifierSettings
from chat_gateway.events import (
    PassthroughEvent,
    StreamEvent,
    message_event,
    metadata_event,
    raw_event,
    status_event,
)
from chat_gateway.sse import SSEEvent

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = [
    "PASSTHROUGH_TYPES",
    "StreamReclassifier",
    "classify_chunk",
    "extract_metadata",
    "extract_texts",
    "is_ephemeral_chunk",
    "is_plan_like",
    "is_status_like",
]

logger = logging.getLogger("chat_gateway.reclassifier")

PASSTHROUGH_TYPES = frozenset({"message", "status", "metadata", "error", "raw", "progress", "done"})
HIDDEN_ROLES = frozenset({"user", "human", "system", "tool"})
ROUTING_SOURCES_EXCLUDED = frozenset({"supervisor", "user", "planner"})

_PLAN_STRING = re.compile(r'"action"\s*:\s*"[a-z_]+"', re.IGNORECASE)
_CONTENT_FRAGMENT = re.compile(r'"content"\s*:\s*"([^"]{1,2000})"')
_EMOJI = re.compile("[\U0001f300-\U0001faff\u2600-\u27bf\u2b50\u2b06\u2934\u2935]")

_DEFAULT_SETTINGS = ClassifierSettings()


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def is_plan_like(value: Any, settings: ClassifierSettings = _DEFAULT_SETTINGS) -> bool:  # noqa: ANN401
    """Return True for planner/supervisor recommendation shapes.

    Strings qualify when they look like a serialized object with an ``action`` field. Objects
    qualify when they carry an ``action`` together with a ``confidence`` or a planner key.
    """
    if isinstance(value, str):
        stripped = value.strip()
        return stripped.startswith("{") and _PLAN_STRING.search(stripped) is not None
    if isinstance(value, dict):
        if not isinstance(value.get("action"), str):
            return False
        return "confidence" in value or any(value.get(key) for key in settings.plan_keys)
    return False


def is_status_like(text: Any, settings: ClassifierSettings = _DEFAULT_SETTINGS) -> bool:  # noqa: ANN401
    """Return True for short progress text such as "Thinking..." or "✅ Done"."""
    if not isinstance(text, str):
        return False
    stripped = text.strip()
    if not stripped or len(stripped) > settings.status_max_chars:
        return False
    lowered = stripped.lower()
    if any(keyword in lowered for keyword in settings.status_keywords):
        return True
    return _EMOJI.search(stripped) is not None and len(stripped.split()) <= settings.status_max_emoji_words


def is_ephemeral_chunk(chunk: Any) -> bool:  # noqa: ANN401
    """Return True when the chunk marks itself as ephemeral progress."""
    if not isinstance(chunk, dict):
        return False
    progress = chunk.get("progress")
    return isinstance(progress, dict) and bool(progress.get("ephemeral"))


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _present(value: Any) -> str | None:  # noqa: ANN401
    return "present" if value else None


def _last_message(chunk: dict[str, Any]) -> dict[str, Any] | None:
    messages = chunk.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[-1], dict):
        return messages[-1]
    return None


def extract_metadata(
    chunk: Any,  # noqa: ANN401
    prev_context: str | None,
    settings: ClassifierSettings = _DEFAULT_SETTINGS,
    now_ms: int = 0,
) -> tuple[dict[str, Any] | None, str | None]:
    """Find internal coordination data in a chunk.

    Returns:
        ``({"kind", "data"}, new_context)``, or ``(None, new_context)`` when the chunk carries
        nothing of interest. The carried context follows the newest ``workflowContext`` seen;
        an unchanged context on its own is suppressed.

    """
    if not isinstance(chunk, dict):
        return None, prev_context
    context = chunk.get("workflowContext")
    new_context = context if isinstance(context, str) and context else prev_context

    recommendation = chunk.get("plannerRecommendation") or chunk.get("planningRecommendation")
    if recommendation:
        return {"kind": "planner_recommendation", "data": recommendation, "timestamp": now_ms}, new_context

    route = chunk.get("next")
    routing = bool(route) and route != settings.terminal_route
    last = _last_message(chunk)

    if routing and last is not None:
        from_agent = last.get("agent")
        if from_agent and from_agent not in ROUTING_SOURCES_EXCLUDED:
            deal = chunk.get("dealData")
            pending = chunk.get("pendingProduct")
            data = {
                "fromAgent": from_agent,
                "toAgent": route,
                "workflowContext": context,
                "dealData": (
                    {"applied": deal.get("applied"), "pending": deal.get("pending"), "type": deal.get("type")}
                    if isinstance(deal, dict)
                    else None
                ),
                "pendingProduct": (
                    {"product": pending.get("product"), "quantity": pending.get("quantity")}
                    if isinstance(pending, dict)
                    else None
                ),
                "cartData": _present(chunk.get("cartData")),
            }
            return {"kind": "agent_routing_decision", "data": data, "timestamp": now_ms}, new_context

    if routing and (chunk.get("supervisor") or chunk.get("agent") == "supervisor"):
        data = {
            "targetAgent": route,
            "workflowContext": context,
            "dealData": _present(chunk.get("dealData")),
            "pendingProduct": _present(chunk.get("pendingProduct")),
            "cartData": _present(chunk.get("cartData")),
        }
        return {"kind": "supervisor_decision", "data": data, "timestamp": now_ms}, new_context

    if last is not None and last.get("agent") and last.get("agent") != "user":
        data = {"agent": last.get("agent"), "role": last.get("role"), "timestamp": last.get("timestamp")}
        return {"kind": "agent_transition", "data": data, "timestamp": now_ms}, new_context

    if isinstance(context, str) and context and context != prev_context:
        data = {
            "context": context,
            "dealData": _present(chunk.get("dealData")),
            "pendingProduct": _present(chunk.get("pendingProduct")),
        }
        return {"kind": "workflow_context", "data": data, "timestamp": now_ms}, new_context

    return None, new_context


def _content_text(content: Any) -> str | None:  # noqa: ANN401
    """Return message content as text; block lists contribute their text blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ]
        joined = "".join(parts)
        return joined or None
    return None


def _is_hidden(message: dict[str, Any]) -> bool:
    return message.get("role") in HIDDEN_ROLES or message.get("type") in HIDDEN_ROLES


def extract_texts(obj: Any, settings: ClassifierSettings = _DEFAULT_SETTINGS) -> list[str]:  # noqa: ANN401, C901, PLR0912
    """Collect the human-readable strings in an agent state object, in source order.

    User-authored and tool messages are skipped, as are plan-like strings. Objects with no
    readable text yield nothing rather than their serialized form.
    """
    out: list[str] = []

    def push(text: str | None) -> None:
        if text and not is_plan_like(text, settings):
            out.append(text)

    if obj is None:
        return out
    if isinstance(obj, bytes):
        push(obj.decode("utf-8", errors="replace"))
        return out
    if isinstance(obj, str):
        push(obj)
        return out
    if not isinstance(obj, dict):
        return out

    message = obj.get("message")
    if isinstance(message, dict):
        kwargs = message.get("kwargs")
        if isinstance(kwargs, dict) and isinstance(kwargs.get("content"), str):
            push(kwargs["content"])
        if not _is_hidden(message):
            push(_content_text(message.get("content")))
    if not _is_hidden(obj):
        push(_content_text(obj.get("content")))

    for key in settings.agent_keys:
        nested = obj.get(key)
        if isinstance(nested, (dict, str)):
            out.extend(extract_texts(nested, settings))

    messages = obj.get("messages")
    if isinstance(messages, list):
        for item in messages:
            if isinstance(item, str):
                push(item)
            elif isinstance(item, dict) and not _is_hidden(item):
                if isinstance(item.get("message"), dict):
                    out.extend(extract_texts(item["message"], settings))
                else:
                    push(_content_text(item.get("content")))

    if not out and not isinstance(messages, list):
        match = _CONTENT_FRAGMENT.search(json.dumps(obj, ensure_ascii=False, default=str))
        if match:
            push(match.group(1))
    return out


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _text_event(text: str, chunk: Any, settings: ClassifierSettings) -> StreamEvent:  # noqa: ANN401
    if not (is_status_like(text, settings) or is_ephemeral_chunk(chunk)):
        return message_event(text)
    progress = chunk.get("progress") if isinstance(chunk, dict) else None
    progress = progress if isinstance(progress, dict) else {}
    agent = chunk.get("agent") if isinstance(chunk, dict) else None
    auto_remove_ms = progress.get("autoRemoveMs")
    return status_event(
        text,
        agent=agent or progress.get("agent"),
        auto_remove_ms=auto_remove_ms if isinstance(auto_remove_ms, int) else settings.default_auto_remove_ms,
    )


def _classify_object(
    chunk: dict[str, Any],
    prev_context: str | None,
    settings: ClassifierSettings,
    now_ms: int,
) -> tuple[list[StreamEvent], str | None]:
    kind = chunk.get("type")
    if isinstance(kind, str) and kind in PASSTHROUGH_TYPES:
        return [PassthroughEvent(type=kind, data=chunk)], prev_context

    events: list[StreamEvent] = []
    metadata, context = extract_metadata(chunk, prev_context, settings, now_ms)
    if metadata is not None:
        events.append(metadata_event(metadata["kind"], metadata["data"], metadata["timestamp"]))
    if is_plan_like(chunk, settings):
        if metadata is None:
            events.append(metadata_event("planner_recommendation", chunk, now_ms))
        return events, context

    events.extend(_text_event(text, chunk, settings) for text in extract_texts(chunk, settings))
    return events, context


def _embedded_object(line: str) -> Any:  # noqa: ANN401
    first = line.find("{")
    last = line.rfind("}")
    if first < 0 or last <= first:
        return None
    try:
        return json.loads(line[first : last + 1])
    except ValueError:
        return None


def _classify_line(
    line: str,
    prev_context: str | None,
    settings: ClassifierSettings,
    now_ms: int,
) -> tuple[list[StreamEvent], str | None]:
    try:
        parsed = json.loads(line)
    except ValueError:
        parsed = None
    else:
        if isinstance(parsed, dict):
            return _classify_object(parsed, prev_context, settings, now_ms)
        if isinstance(parsed, str):
            return [_text_event(parsed, None, settings)] if parsed.strip() else [], prev_context
        return [raw_event(line)], prev_context

    embedded = _embedded_object(line)
    if isinstance(embedded, dict):
        events, context = _classify_object(embedded, prev_context, settings, now_ms)
        if events:
            return events, context

    if is_plan_like(line, settings):
        return [], prev_context
    if is_status_like(line, settings):
        return [status_event(line, auto_remove_ms=settings.default_auto_remove_ms)], prev_context
    return [raw_event(line)], prev_context


def _classify(
    chunk: Any,  # noqa: ANN401
    prev_context: str | None,
    settings: ClassifierSettings,
    now_ms: int,
) -> tuple[list[StreamEvent], str | None]:
    if isinstance(chunk, SSEEvent):
        chunk = chunk.data if chunk.kind == "json" else (chunk.text or "")
    if isinstance(chunk, BaseModel):
        return [chunk], prev_context
    if isinstance(chunk, bytes):
        chunk = chunk.decode("utf-8", errors="replace")
    if isinstance(chunk, dict):
        return _classify_object(chunk, prev_context, settings, now_ms)
    if isinstance(chunk, str):
        events: list[StreamEvent] = []
        context = prev_context
        for line in chunk.splitlines():
            if not line.strip():
                continue
            line_events, context = _classify_line(line, context, settings, now_ms)
            events.extend(line_events)
        return events, context
    if chunk is None:
        return [], prev_context
    text = json.dumps(chunk, ensure_ascii=False, default=str)
    return [_text_event(text, None, settings)], prev_context


def classify_chunk(
    chunk: Any,  # noqa: ANN401
    prev_context: str | None = None,
    settings: ClassifierSettings = _DEFAULT_SETTINGS,
    now_ms: int = 0,
) -> tuple[list[StreamEvent], str | None]:
    """Classify one raw chunk.

    Args:
        chunk: Text, bytes, a decoded JSON object, an ``SSEEvent`` or an already-typed event.
        prev_context: The last workflow context seen on this stream.
        settings: Keyword lists and thresholds.
        now_ms: Timestamp stamped on metadata events.

    Returns:
        The events in source order and the workflow context to carry forward. Never raises;
        input that cannot be classified becomes a ``raw`` event.

    """
    try:
        return _classify(chunk, prev_context, settings, now_ms)
    except Exception:  # noqa: BLE001
        logger.warning("Could not classify chunk; forwarding as raw", exc_info=True)
        return [raw_event(_safe_text(chunk))], prev_context


def _safe_text(chunk: Any) -> str:  # noqa: ANN401
    try:
        return chunk if isinstance(chunk, str) else json.dumps(chunk, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(chunk)


class StreamReclassifier:
    """Per-stream wrapper that carries the workflow context between chunks."""

    def __init__(
        self,
        settings: ClassifierSettings | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Create a reclassifier for one stream."""
        self._settings = settings or _DEFAULT_SETTINGS
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._context: str | None = None

    @property
    def workflow_context(self) -> str | None:
        """Get the last workflow context seen."""
        return self._context

    def classify(self, chunk: Any) -> list[StreamEvent]:  # noqa: ANN401
        """Classify one chunk and advance the carried context."""
        events, self._context = classify_chunk(chunk, self._context, self._settings, self._clock())
        return events
