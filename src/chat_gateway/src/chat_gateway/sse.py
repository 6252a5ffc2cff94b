"""Incremental decoder for server-sent-event bodies."""

from __future__ import annotations

import codecs
import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

__all__ = ["DONE_PAYLOAD", "SSEDecoder", "SSEEvent", "parse_sse"]

DONE_PAYLOAD = "[DONE]"


class SSEEvent(BaseModel):
    """One decoded event block: a JSON payload, a text payload, or the end-of-stream marker."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["json", "text", "done"]
    data: Any = None
    text: str | None = None
    event: str | None = None

    @property
    def done(self) -> bool:
        """Return True for the ``[DONE]`` terminator."""
        return self.kind == "done"


class SSEDecoder:
    """Turn transport fragments into events, one interpretation per completed block.

    Fragments may split blocks (and multi-byte characters) anywhere; incomplete blocks stay
    buffered until the blank-line separator arrives or ``flush`` is called at stream end.
    """

    def __init__(self) -> None:
        """Start with an empty buffer."""
        self._buffer = ""
        self._done = False
        self._bytes = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def done(self) -> bool:
        """Return True once the ``[DONE]`` terminator has been decoded."""
        return self._done

    def feed(self, fragment: str | bytes) -> list[SSEEvent]:
        """Buffer a fragment and return the events for every block it completes."""
        if self._done:
            return []
        if isinstance(fragment, bytes):
            fragment = self._bytes.decode(fragment)
        self._buffer = (self._buffer + fragment).replace("\r\n", "\n")
        events: list[SSEEvent] = []
        while not self._done:
            index = self._buffer.find("\n\n")
            if index == -1:
                break
            block = self._buffer[:index]
            self._buffer = self._buffer[index + 2 :]
            self._collect(block, events)
        return events

    def flush(self) -> list[SSEEvent]:
        """Decode whatever is still buffered as a final block."""
        tail = self._bytes.decode(b"", final=True)
        if self._done:
            return []
        block = (self._buffer + tail).replace("\r\n", "\n")
        self._buffer = ""
        events: list[SSEEvent] = []
        self._collect(block, events)
        return events

    def _collect(self, block: str, events: list[SSEEvent]) -> None:
        event = _decode_block(block)
        if event is None:
            return
        events.append(event)
        if event.done:
            self._done = True
            self._buffer = ""


def _decode_block(block: str) -> SSEEvent | None:
    """Decode one block; blocks without ``data:`` lines yield nothing."""
    data_lines: list[str] = []
    event_name: str | None = None
    for line in block.split("\n"):
        stripped = line.strip()
        if stripped.startswith("data:"):
            data_lines.append(stripped[5:].strip())
        elif stripped.startswith("event:"):
            event_name = stripped[6:].strip() or None
    if not data_lines:
        return None
    payload = "\n".join(data_lines)
    if payload == DONE_PAYLOAD:
        return SSEEvent(kind="done", event=event_name)
    try:
        return SSEEvent(kind="json", data=json.loads(payload), event=event_name)
    except ValueError:
        return SSEEvent(kind="text", text=payload, event=event_name)


def parse_sse(body: str | bytes) -> list[SSEEvent]:
    """Decode a complete SSE body."""
    decoder = SSEDecoder()
    return decoder.feed(body) + decoder.flush()
