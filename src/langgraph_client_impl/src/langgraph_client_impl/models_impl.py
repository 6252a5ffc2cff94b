"""LangGraph run models colocated with the LangGraph client."""

from __future__ import annotations

from typing import Any

import agent_runtime_api
from agent_runtime_api import models

HUMAN_ROLE = "human"

# ---------------------------------------------------------------------------
# LangGraph models
# ---------------------------------------------------------------------------


class LangGraphRunRequest(models.RunRequest):
    """Run request serialized into the LangGraph ``runs/stream`` body."""

    def __init__(
        self,
        *,
        assistant_id: str,
        message: str,
        user_id: str,
        conversation_id: str,
        stream_mode: str = "values",
    ) -> None:
        """Create a LangGraph run request."""
        self._assistant_id = assistant_id
        self._message = message
        self._user_id = user_id
        self._conversation_id = conversation_id
        self._stream_mode = stream_mode

    @property
    def assistant_id(self) -> str:
        """Get the assistant (graph) to run."""
        return self._assistant_id

    @property
    def message(self) -> str:
        """Get the human message that starts the run."""
        return self._message

    @property
    def user_id(self) -> str:
        """Get the user the run executes for."""
        return self._user_id

    @property
    def conversation_id(self) -> str:
        """Get the conversation identifier."""
        return self._conversation_id

    @property
    def stream_mode(self) -> str:
        """Get the requested stream mode."""
        return self._stream_mode

    def to_dict(self) -> dict[str, Any]:
        """Return the wire body, forwarding the user as the run's credential subject."""
        return {
            "input": {
                "messages": [{"role": HUMAN_ROLE, "content": self._message}],
                "userId": self._user_id,
                "conversationId": self._conversation_id,
            },
            "assistant_id": self._assistant_id,
            "config": {"configurable": {"_credentials": {"user": {"sub": self._user_id}}}},
            "stream_mode": self._stream_mode,
        }


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def run_request_impl(
    *,
    assistant_id: str,
    message: str,
    user_id: str,
    conversation_id: str,
    stream_mode: str = "values",
) -> LangGraphRunRequest:
    """Build a LangGraphRunRequest."""
    return LangGraphRunRequest(
        assistant_id=assistant_id,
        message=message,
        user_id=user_id,
        conversation_id=conversation_id,
        stream_mode=stream_mode,
    )


# ---------------------------------------------------------------------------
# Factory registration
# ---------------------------------------------------------------------------


def register() -> None:
    """Register LangGraph factory helpers with the abstract API."""
    agent_runtime_api.run_request = run_request_impl
    models.run_request = run_request_impl
