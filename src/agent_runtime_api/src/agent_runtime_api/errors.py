"""Failures raised by remote execution clients."""

from __future__ import annotations

__all__ = ["RemoteRunError", "RemoteServiceError", "RemoteUnavailable", "TransientNetworkError"]


class RemoteServiceError(Exception):
    """Base class for remote execution service failures."""


class TransientNetworkError(RemoteServiceError):
    """Network-layer failure (reset, DNS, timeout) that is safe to retry."""


class RemoteRunError(RemoteServiceError):
    """The service answered with a non-success HTTP status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        """Record the status code and response body."""
        self.status_code = status_code
        self.body = body
        super().__init__(f"Remote service error: {status_code} {body}".strip())


class RemoteUnavailable(RemoteServiceError):
    """Thread creation or a run could not be completed."""
