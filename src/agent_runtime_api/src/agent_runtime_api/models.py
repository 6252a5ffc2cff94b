"""Abstract schemas for remote agent runs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

__all__ = ["RunRequest", "run_request"]


class RunRequest(ABC):
    """Abstract request to start one run of a remote agent."""

    @property
    @abstractmethod
    def assistant_id(self) -> str:
        """Return the remote agent (assistant) identifier."""
        raise NotImplementedError

    @property
    @abstractmethod
    def message(self) -> str:
        """Return the user message that starts the run."""
        raise NotImplementedError

    @property
    @abstractmethod
    def user_id(self) -> str:
        """Return the user on whose behalf the run executes."""
        raise NotImplementedError

    @property
    @abstractmethod
    def conversation_id(self) -> str:
        """Return the caller-supplied conversation identifier."""
        raise NotImplementedError

    @property
    @abstractmethod
    def stream_mode(self) -> str:
        """Return the stream mode requested from the service."""
        raise NotImplementedError

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-serializable wire body for the run."""
        raise NotImplementedError


def run_request(
    *,
    assistant_id: str,
    message: str,
    user_id: str,
    conversation_id: str,
    stream_mode: str = "values",
) -> RunRequest:
    """Construct a concrete RunRequest instance.

    Args:
        assistant_id: Remote agent to run.
        message: User message that starts the run.
        user_id: User on whose behalf the run executes.
        conversation_id: Caller-supplied conversation identifier.
        stream_mode: Stream mode requested from the service.

    Returns:
        Concrete RunRequest instance bound by the active implementation.

    """
    raise NotImplementedError
