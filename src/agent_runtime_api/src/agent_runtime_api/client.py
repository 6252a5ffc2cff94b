"""Abstract interfaces for remote agent execution services."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    from agent_runtime_api.models import RunRequest

__all__ = ["Client", "get_client"]


class Client(ABC):
    """The contract for remote multi-agent execution services."""

    @abstractmethod
    async def create_thread(self, metadata: Mapping[str, Any]) -> dict[str, Any]:
        """Create a remote execution thread.

        Args:
            metadata: Descriptive metadata stored with the thread (conversation, user, agent, creation time).

        Returns:
            The decoded response body. Services report the identifier as ``thread_id``, ``id`` or ``threadId``.

        Raises:
            TransientNetworkError: The service could not be reached.
            RemoteRunError: The service answered with a non-success status.

        """
        raise NotImplementedError

    @abstractmethod
    def stream_run(self, thread_id: str, request: RunRequest) -> AsyncIterator[str]:
        """Start a run on a thread and stream the raw server-sent-event body.

        Args:
            thread_id: Identifier returned by ``create_thread``.
            request: The run to start.

        Returns:
            Async iterator of decoded text fragments exactly as they arrive from the transport.
            Fragments may split event blocks at arbitrary positions.

        Raises:
            TransientNetworkError: The connection failed before or during the stream.
            RemoteRunError: The service answered with a non-success status.

        """
        raise NotImplementedError


def get_client() -> Client:
    """Return the default remote execution client implementation.

    Returns:
        Client implementation.

    """
    raise NotImplementedError
