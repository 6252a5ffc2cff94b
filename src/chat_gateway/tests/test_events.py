"""Tests for event wire encoding."""

from __future__ import annotations

import json

from chat_gateway.events import (
    DONE_EVENT,
    encode_ndjson,
    encode_sse,
    error_event,
    message_event,
    metadata_event,
    status_event,
    to_wire,
)


def test_status_wire_uses_camel_case_and_drops_unset_fields() -> None:
    """Status payloads serialize autoRemoveMs and omit a missing agent."""
    wire = to_wire(status_event("Searching...", auto_remove_ms=3000))

    assert wire == {"type": "status", "payload": {"text": "Searching...", "ephemeral": True, "autoRemoveMs": 3000}}


def test_metadata_wire() -> None:
    """Metadata keeps its kind, data and timestamp."""
    wire = to_wire(metadata_event("workflow_context", {"context": "checkout"}, 17))

    assert wire == {
        "type": "metadata",
        "payload": {"kind": "workflow_context", "data": {"context": "checkout"}, "timestamp": 17},
    }


def test_encoders_frame_one_event() -> None:
    """NDJSON is one line per event; SSE is one data block per event."""
    wire = to_wire(message_event("café"))

    line = encode_ndjson(wire)
    block = encode_sse(wire)

    assert line.endswith("\n")
    assert json.loads(line) == {"type": "message", "payload": {"content": "café"}}
    assert "café" in line
    assert block.startswith("data: ")
    assert block.endswith("\n\n")
    assert encode_ndjson(DONE_EVENT) == '{"type": "done"}\n'


def test_error_wire() -> None:
    """Errors carry a message."""
    assert to_wire(error_event("boom")) == {"type": "error", "payload": {"message": "boom"}}
