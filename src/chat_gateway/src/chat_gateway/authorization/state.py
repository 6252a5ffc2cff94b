"""Process-wide backchannel authorization state.

The state is a single immutable value. Writers replace it whole under a lock, so a reader
polling ``/auth/status`` never sees a status paired with another write's message.
"""

from __future__ import annotations

import threading
import time
from typing import Literal

from pydantic import BaseModel, ConfigDict

from chat_gateway.errors import InvalidAuthorizationTransition

__all__ = ["AuthorizationState", "AuthorizationStateStore", "AuthorizationStatus"]

AuthorizationStatus = Literal["idle", "requested", "pending", "approved", "denied"]

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "idle": frozenset({"requested"}),
    "requested": frozenset({"pending", "denied"}),
    "pending": frozenset({"approved", "denied"}),
    "approved": frozenset({"idle"}),
    "denied": frozenset({"idle"}),
}


class AuthorizationState(BaseModel):
    """One snapshot of the authorization flow."""

    model_config = ConfigDict(frozen=True)

    status: AuthorizationStatus = "idle"
    message: str | None = None
    version: int = 0
    updated_at: float = 0.0


class AuthorizationStateStore:
    """Versioned holder for the shared ``AuthorizationState``."""

    def __init__(self) -> None:
        """Start idle at version 0."""
        self._lock = threading.Lock()
        self._state = AuthorizationState(updated_at=time.time())

    def get(self) -> AuthorizationState:
        """Return the current snapshot."""
        return self._state

    def set(
        self,
        status: AuthorizationStatus,
        message: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> AuthorizationState:
        """Move to ``status``.

        Args:
            status: The status to move to.
            message: Text shown alongside the status.
            expected_version: When given, only move if the current snapshot still has this version.

        Raises:
            InvalidAuthorizationTransition: ``status`` is not reachable from the current status, or
                another writer replaced the snapshot at ``expected_version``.

        """
        with self._lock:
            current = self._state
            if expected_version is not None and current.version != expected_version:
                error_message = f"Authorization state changed by another writer (version {current.version})"
                raise InvalidAuthorizationTransition(error_message)
            if status not in ALLOWED_TRANSITIONS[current.status]:
                error_message = f"Cannot move authorization state from {current.status} to {status}"
                raise InvalidAuthorizationTransition(error_message)
            self._state = AuthorizationState(
                status=status,
                message=message,
                version=current.version + 1,
                updated_at=time.time(),
            )
            return self._state

    def reset(self) -> AuthorizationState:
        """Return to ``idle`` from any status."""
        with self._lock:
            self._state = AuthorizationState(version=self._state.version + 1, updated_at=time.time())
            return self._state
