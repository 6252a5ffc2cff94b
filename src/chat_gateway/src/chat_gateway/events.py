"""Canonical event vocabulary sent to chat clients.

Every event serializes to ``{"type": ..., "payload": ...}``. Events that arrived with their own
discriminator are forwarded untouched as ``PassthroughEvent``.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "DONE_EVENT",
    "ErrorEvent",
    "MessageEvent",
    "MetadataEvent",
    "PassthroughEvent",
    "RawEvent",
    "StatusEvent",
    "StreamEvent",
    "encode_ndjson",
    "encode_sse",
    "error_event",
    "message_event",
    "metadata_event",
    "raw_event",
    "status_event",
    "to_wire",
]

DONE_EVENT: dict[str, Any] = {"type": "done"}


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class MessagePayload(BaseModel):
    """Durable assistant text."""

    content: str


class StatusPayload(BaseModel):
    """Short-lived progress text; clients remove it after ``autoRemoveMs`` unless superseded."""

    model_config = ConfigDict(populate_by_name=True)

    text: str
    agent: str | None = None
    ephemeral: bool = True
    auto_remove_ms: int | None = Field(default=None, alias="autoRemoveMs")


class MetadataPayload(BaseModel):
    """Internal coordination data, for developer tooling only."""

    kind: str
    data: Any = None
    timestamp: int


class ErrorPayload(BaseModel):
    message: str


class RawPayload(BaseModel):
    text: str


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class MessageEvent(BaseModel):
    type: Literal["message"] = "message"
    payload: MessagePayload


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    payload: StatusPayload


class MetadataEvent(BaseModel):
    type: Literal["metadata"] = "metadata"
    payload: MetadataPayload


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    payload: ErrorPayload


class RawEvent(BaseModel):
    type: Literal["raw"] = "raw"
    payload: RawPayload


class PassthroughEvent(BaseModel):
    """A chunk that already carried an event discriminator."""

    type: str
    data: dict[str, Any]


StreamEvent = MessageEvent | StatusEvent | MetadataEvent | ErrorEvent | RawEvent | PassthroughEvent


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def message_event(content: str) -> MessageEvent:
    """Build a durable message event."""
    return MessageEvent(payload=MessagePayload(content=content))


def status_event(text: str, *, agent: str | None = None, auto_remove_ms: int | None = None) -> StatusEvent:
    """Build an ephemeral status event."""
    return StatusEvent(payload=StatusPayload(text=text, agent=agent, ephemeral=True, auto_remove_ms=auto_remove_ms))


def metadata_event(kind: str, data: Any, timestamp: int) -> MetadataEvent:  # noqa: ANN401
    """Build a metadata event of the given kind."""
    return MetadataEvent(payload=MetadataPayload(kind=kind, data=data, timestamp=timestamp))


def error_event(message: str) -> ErrorEvent:
    """Build an error event."""
    return ErrorEvent(payload=ErrorPayload(message=message))


def raw_event(text: str) -> RawEvent:
    """Build a raw text event."""
    return RawEvent(payload=RawPayload(text=text))


# ---------------------------------------------------------------------------
# Wire encoding
# ---------------------------------------------------------------------------


def to_wire(event: StreamEvent) -> dict[str, Any]:
    """Return the JSON-serializable form of an event."""
    if isinstance(event, PassthroughEvent):
        return dict(event.data)
    return event.model_dump(by_alias=True, exclude_none=True)


def encode_ndjson(wire: dict[str, Any]) -> str:
    """Encode one wire event as a newline-delimited JSON line."""
    return json.dumps(wire, ensure_ascii=False, default=str) + "\n"


def encode_sse(wire: dict[str, Any]) -> str:
    """Encode one wire event as a server-sent-event block."""
    return f"data: {json.dumps(wire, ensure_ascii=False, default=str)}\n\n"
