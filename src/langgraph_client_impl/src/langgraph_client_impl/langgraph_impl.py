"""LangGraph Client Implementation.

Concrete agent_runtime_api.Client backed by a LangGraph-compatible HTTP server. Resolves the
server URL and API key from environment variables and maps transport failures onto the
agent_runtime_api error types used across the workspace.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

import httpx

import agent_runtime_api
from agent_runtime_api import Client, RemoteRunError, RunRequest, TransientNetworkError

DEFAULT_BASE_URL = "http://localhost:2024"
DEFAULT_TIMEOUT_SECONDS = 60.0

logger = logging.getLogger("langgraph_client_impl")

# ---------------------------------------------------------------------------
# Client implementation
# ---------------------------------------------------------------------------


class LangGraphClient(Client):
    """Concrete agent_runtime_api.Client that talks to a LangGraph server over HTTP.

    Configuration:
        - REMOTE_AGENT_URL (optional, defaults to http://localhost:2024)
        - REMOTE_AGENT_API_KEY (optional, sent as ``x-api-key``)
        - REMOTE_TIMEOUT_SECONDS (optional, defaults to 60)

    Attributes:
        _base_url: Server root without a trailing slash.
        _api_key: Optional API key for hosted deployments.
        _timeout: Per-request timeout in seconds.
        _transport: Optional httpx transport, used by tests to stub the server.

    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client, resolving URL/key/timeout defaults from the environment."""
        url = base_url or os.environ.get("REMOTE_AGENT_URL") or DEFAULT_BASE_URL
        self._base_url = url.rstrip("/")
        self._api_key = api_key or os.environ.get("REMOTE_AGENT_API_KEY")
        if timeout is None:
            timeout = float(os.environ.get("REMOTE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        """Get the server root URL."""
        return self._base_url

    async def create_thread(self, metadata: Mapping[str, Any]) -> dict[str, Any]:
        """Create a thread and return the decoded response body.

        Args:
            metadata: Metadata stored with the thread.

        Returns:
            Response body; an empty dict when the server returns no JSON object.

        """
        try:
            async with self._http() as http:
                response = await http.post("/threads", json={"metadata": dict(metadata)})
        except httpx.TransportError as exc:
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc
        if response.is_error:
            raise RemoteRunError(response.status_code, response.text)
        try:
            body = response.json()
        except ValueError:
            logger.warning("Thread creation returned a non-JSON body")
            return {}
        return body if isinstance(body, dict) else {}

    async def stream_run(self, thread_id: str, request: RunRequest) -> AsyncIterator[str]:
        """Start a streamed run and yield decoded text fragments as they arrive.

        Args:
            thread_id: Thread to run on.
            request: Run request; serialized with ``to_dict``.

        Yields:
            Text fragments of the server-sent-event body.

        """
        path = f"/threads/{thread_id}/runs/stream"
        try:
            async with (
                self._http() as http,
                http.stream("POST", path, json=request.to_dict(), headers={"Accept": "text/event-stream"}) as response,
            ):
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise RemoteRunError(response.status_code, body)
                async for fragment in response.aiter_text():
                    yield fragment
        except httpx.TransportError as exc:
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc

    def _http(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_client_impl() -> LangGraphClient:
    """Return a new LangGraphClient using env defaults."""
    return LangGraphClient()


# ---------------------------------------------------------------------------
# Factory registration
# ---------------------------------------------------------------------------


def register() -> None:
    """Bind the LangGraph client factory into agent_runtime_api.get_client."""
    agent_runtime_api.get_client = get_client_impl
