"""Public export surface for ``agent_runtime_api``."""

from agent_runtime_api.client import Client, get_client
from agent_runtime_api.errors import RemoteRunError, RemoteServiceError, RemoteUnavailable, TransientNetworkError
from agent_runtime_api.models import RunRequest, run_request

__all__ = [
    "Client",
    "RemoteRunError",
    "RemoteServiceError",
    "RemoteUnavailable",
    "RunRequest",
    "TransientNetworkError",
    "get_client",
    "run_request",
]
