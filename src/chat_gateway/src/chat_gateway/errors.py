"""Authorization and usage failures raised by the gateway core."""

from __future__ import annotations

__all__ = [
    "AuthorizationDenied",
    "AuthorizationError",
    "AuthorizationExpired",
    "AuthorizationTimeout",
    "GatewayError",
    "InvalidAuthorizationTransition",
    "MissingUserId",
    "PollingFailed",
    "ProviderError",
]


class GatewayError(Exception):
    """Base class for gateway failures."""


class MissingUserId(GatewayError):
    """No user id could be derived for a protected action."""


class InvalidAuthorizationTransition(GatewayError):
    """The shared authorization state was asked to move backwards, skip a step, or was changed underneath."""


class AuthorizationError(GatewayError):
    """Base class for backchannel authorization failures."""

    reason = "Authorization failed"

    def __init__(self, detail: str | None = None) -> None:
        """Keep a human-readable detail alongside the class-level reason."""
        self.detail = detail or self.reason
        super().__init__(self.detail)


class ProviderError(AuthorizationError):
    """The identity provider rejected the backchannel authorize call."""

    reason = "Authorization request was rejected by the identity provider"

    def __init__(self, status_code: int, body: str) -> None:
        """Record the provider's status code and error body."""
        self.status_code = status_code
        self.body = body
        super().__init__(f"CIBA request failed: {status_code} - {body}")


class AuthorizationExpired(AuthorizationError):
    """The authorization request expired before the user responded."""

    reason = "Authorization request expired - user did not respond in time"


class AuthorizationTimeout(AuthorizationError):
    """Polling ran out of attempts without a resolution."""

    reason = "Authorization timeout - user did not respond in time"


class PollingFailed(AuthorizationError):
    """The token endpoint returned an unexpected error or stayed unreachable."""

    reason = "Authorization polling failed"


class AuthorizationDenied(AuthorizationError):
    """The protected action was not authorized; carries the denial reason."""

    reason = "The user has denied the request"
