"""Environment-driven settings for the gateway service.

Values are read once with ``os.environ`` (after ``load_dotenv``) and frozen into pydantic
models so that every component sees a consistent configuration for its lifetime.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from chat_gateway.authorization.providers import endpoints_for

load_dotenv()

DEFAULT_STATUS_KEYWORDS = (
    "thinking",
    "evaluating",
    "agent task",
    "task completed",
    "completed",
    "processing",
    "done",
    "searching",
    "checking",
    "adding",
    "updating",
    "preparing",
    "found",
)
DEFAULT_PLAN_KEYS = ("plannerRecommendation", "planningRecommendation", "targetAgent", "recommendedAgent")
DEFAULT_AGENT_KEYS = ("planner", "supervisor", "catalog", "deals", "cart_and_checkout", "notification_agent")
DEFAULT_PROXY_AGENTS = ("catalog", "deals", "cart", "payment")
DEFAULT_CIBA_SCOPES = "openid profile email checkout:buy"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_list(raw: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    """Split and trim a comma-separated list, falling back to ``default`` when empty."""
    if not raw:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


def _first(environ: Mapping[str, str], *names: str) -> str | None:
    """Return the first non-empty value among ``names``."""
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class GatewaySettings(BaseModel):
    """Remote execution gateway configuration."""

    model_config = ConfigDict(frozen=True)

    default_agent_id: str = "supervisor"
    stream_mode: str = "values"
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    thread_ttl_seconds: float = 3600.0
    proxy_agents: tuple[str, ...] = DEFAULT_PROXY_AGENTS
    checkout_agent_id: str = "cart_and_checkout"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GatewaySettings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            default_agent_id=env.get("REMOTE_AGENT_ID") or "supervisor",
            stream_mode=env.get("REMOTE_STREAM_MODE") or "values",
            max_retries=int(env.get("REMOTE_MAX_RETRIES", "3")),
            retry_base_delay_ms=int(env.get("REMOTE_RETRY_BASE_DELAY_MS", "1000")),
            thread_ttl_seconds=float(env.get("THREAD_CACHE_TTL_SECONDS", "3600")),
            proxy_agents=_parse_list(env.get("REMOTE_PROXY_AGENTS"), DEFAULT_PROXY_AGENTS),
            checkout_agent_id=env.get("REMOTE_CHECKOUT_AGENT_ID") or "cart_and_checkout",
        )


class CibaSettings(BaseModel):
    """Backchannel (CIBA) authorization configuration.

    The provider-specific endpoints are resolved when the settings are built, so callers never
    branch on the identity vendor per request.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "auth0"
    issuer: str
    client_id: str
    client_secret: str
    scope: str = DEFAULT_CIBA_SCOPES
    audience: str | None = None
    authorize_endpoint: str
    token_endpoint: str
    max_poll_attempts: int = 20
    notice_auto_remove_ms: int = 10000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CibaSettings:
        """Build settings from environment variables.

        Raises:
            RuntimeError: The issuer or client credentials are missing.

        """
        env = os.environ if environ is None else environ
        issuer = _first(env, "CIBA_ISSUER", "AUTH0_ISSUER_BASE_URL")
        client_id = _first(env, "CIBA_CLIENT_ID", "AUTH0_CLIENT_ID")
        client_secret = _first(env, "CIBA_CLIENT_SECRET", "AUTH0_CLIENT_SECRET")
        if not issuer or not client_id or not client_secret:
            error_message = "CIBA configuration missing: CIBA_ISSUER, CIBA_CLIENT_ID and CIBA_CLIENT_SECRET are required."
            raise RuntimeError(error_message)
        provider = (env.get("IDENTITY_PROVIDER") or "auth0").strip().lower()
        endpoints = endpoints_for(provider)
        issuer = issuer.rstrip("/")
        return cls(
            provider=provider,
            issuer=issuer,
            client_id=client_id,
            client_secret=client_secret,
            scope=env.get("CIBA_SCOPES") or DEFAULT_CIBA_SCOPES,
            audience=_first(env, "CIBA_AUDIENCE", "SHOP_API_AUDIENCE"),
            authorize_endpoint=endpoints.authorize_url(issuer),
            token_endpoint=endpoints.token_url(issuer),
            max_poll_attempts=int(env.get("CIBA_MAX_POLL_ATTEMPTS", "20")),
            notice_auto_remove_ms=int(env.get("AUTH_NOTICE_AUTO_REMOVE_MS", "10000")),
        )


class ClassifierSettings(BaseModel):
    """Heuristics used by the stream reclassifier."""

    model_config = ConfigDict(frozen=True)

    status_keywords: tuple[str, ...] = DEFAULT_STATUS_KEYWORDS
    status_max_chars: int = 200
    status_max_emoji_words: int = 6
    default_auto_remove_ms: int = 5000
    plan_keys: tuple[str, ...] = DEFAULT_PLAN_KEYS
    agent_keys: tuple[str, ...] = DEFAULT_AGENT_KEYS
    terminal_route: str = "__end__"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClassifierSettings:
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            status_keywords=tuple(k.lower() for k in _parse_list(env.get("STATUS_KEYWORDS"), DEFAULT_STATUS_KEYWORDS)),
            status_max_chars=int(env.get("STATUS_MAX_CHARS", "200")),
            default_auto_remove_ms=int(env.get("STATUS_AUTO_REMOVE_MS", "5000")),
        )
