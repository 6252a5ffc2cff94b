"""Identity-provider endpoint strategies for backchannel authorization."""

from __future__ import annotations

from abc import ABC, abstractmethod

__all__ = ["Auth0Endpoints", "BackchannelEndpoints", "OktaEndpoints", "endpoints_for"]


class BackchannelEndpoints(ABC):
    """Where a provider exposes its backchannel-authorize and token endpoints."""

    @abstractmethod
    def authorize_url(self, issuer: str) -> str:
        """Return the backchannel authorize endpoint for ``issuer``."""
        raise NotImplementedError

    @abstractmethod
    def token_url(self, issuer: str) -> str:
        """Return the token endpoint for ``issuer``."""
        raise NotImplementedError


class Auth0Endpoints(BackchannelEndpoints):
    """Auth0 tenants: ``/bc-authorize`` and ``/oauth/token`` at the tenant root."""

    def authorize_url(self, issuer: str) -> str:
        """Return ``{issuer}/bc-authorize``."""
        return f"{issuer.rstrip('/')}/bc-authorize"

    def token_url(self, issuer: str) -> str:
        """Return ``{issuer}/oauth/token``."""
        return f"{issuer.rstrip('/')}/oauth/token"


class OktaEndpoints(BackchannelEndpoints):
    """Okta authorization servers: ``/v1/bc-authorize`` and ``/v1/token``."""

    def authorize_url(self, issuer: str) -> str:
        """Return ``{issuer}/v1/bc-authorize``."""
        return f"{issuer.rstrip('/')}/v1/bc-authorize"

    def token_url(self, issuer: str) -> str:
        """Return ``{issuer}/v1/token``."""
        return f"{issuer.rstrip('/')}/v1/token"


_PROVIDERS: dict[str, type[BackchannelEndpoints]] = {
    "auth0": Auth0Endpoints,
    "okta": OktaEndpoints,
}


def endpoints_for(provider: str | None) -> BackchannelEndpoints:
    """Return the endpoint strategy for ``provider``; unknown or empty names use Auth0's layout."""
    strategy = _PROVIDERS.get((provider or "").strip().lower(), Auth0Endpoints)
    return strategy()
