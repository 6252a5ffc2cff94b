"""OpenID CIBA client: start a backchannel request, then poll the token endpoint."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel

from chat_gateway.errors import AuthorizationExpired, AuthorizationTimeout, PollingFailed, ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from chat_gateway.config import CibaSettings

__all__ = ["CIBA_GRANT_TYPE", "AuthRequest", "TokenResponse", "authorize", "initiate", "poll"]

logger = logging.getLogger("chat_gateway.authorization")

CIBA_GRANT_TYPE = "urn:openid:params:grant-type:ciba"
DEFAULT_EXPIRES_IN = 300
DEFAULT_INTERVAL = 5


class AuthRequest(BaseModel):
    """Handle for an outstanding backchannel request."""

    auth_req_id: str
    expires_in: int = DEFAULT_EXPIRES_IN
    interval: int = DEFAULT_INTERVAL


class TokenResponse(BaseModel):
    """Tokens issued once the user approves."""

    access_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None


async def initiate(
    http: httpx.AsyncClient,
    config: CibaSettings,
    user_id: str,
    binding_message: str,
) -> AuthRequest:
    """Send the backchannel-authorize request that pushes an approval prompt to the user.

    Raises:
        ProviderError: The provider answered with a non-success status, or with a body that
            carries no ``auth_req_id``.

    """
    form = {
        "scope": config.scope,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "login_hint": user_id,
        "binding_message": binding_message,
    }
    if config.audience:
        form["audience"] = config.audience

    logger.info("Initiating backchannel authorization for %s at %s", user_id, config.authorize_endpoint)
    response = await http.post(config.authorize_endpoint, data=form)
    if response.is_error:
        raise ProviderError(response.status_code, response.text)

    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(response.status_code, response.text) from exc
    if not isinstance(data, dict) or not data.get("auth_req_id"):
        raise ProviderError(response.status_code, response.text)
    return AuthRequest(
        auth_req_id=data["auth_req_id"],
        expires_in=data.get("expires_in") or DEFAULT_EXPIRES_IN,
        interval=data.get("interval") or DEFAULT_INTERVAL,
    )


async def poll(  # noqa: PLR0913
    http: httpx.AsyncClient,
    config: CibaSettings,
    auth_req_id: str,
    interval: float = DEFAULT_INTERVAL,
    max_attempts: int = 20,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> TokenResponse | None:
    """Poll the token endpoint until the request resolves.

    Waits ``interval`` seconds between attempts, never before the first one.

    Returns:
        The tokens on approval, or None when the user denied the request.

    Raises:
        AuthorizationExpired: The provider reported the request expired.
        PollingFailed: The provider returned an unexpected error, or the last attempt could
            not reach it.
        AuthorizationTimeout: Every attempt came back pending.

    """
    form = {
        "grant_type": CIBA_GRANT_TYPE,
        "auth_req_id": auth_req_id,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
    }
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            await sleep(interval)
        logger.info("Polling for authorization, attempt %d/%d", attempt, max_attempts)

        try:
            response = await http.post(config.token_endpoint, data=form)
            data = response.json()
        except (httpx.TransportError, ValueError) as exc:
            logger.warning("Authorization poll attempt %d failed: %s", attempt, exc)
            if attempt == max_attempts:
                error_message = "CIBA polling failed after maximum attempts"
                raise PollingFailed(error_message) from exc
            continue

        if response.is_success:
            logger.info("Authorization approved")
            return TokenResponse.model_validate(data)

        error = data.get("error") if isinstance(data, dict) else None
        if error == "authorization_pending":
            continue
        if error == "access_denied":
            logger.info("Authorization denied by user")
            return None
        if error == "expired_token":
            raise AuthorizationExpired

        description = data.get("error_description", "") if isinstance(data, dict) else ""
        error_message = f"CIBA polling error: {error} - {description}"
        raise PollingFailed(error_message)

    logger.info("Authorization timed out after %d attempts", max_attempts)
    raise AuthorizationTimeout


async def authorize(
    http: httpx.AsyncClient,
    config: CibaSettings,
    user_id: str,
    binding_message: str,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_initiated: Callable[[AuthRequest], Awaitable[Any]] | None = None,
) -> TokenResponse | None:
    """Run the whole flow: initiate, then poll until the request expires or the attempt cap is hit."""
    request = await initiate(http, config, user_id, binding_message)
    if on_initiated is not None:
        await on_initiated(request)
    max_attempts = min(config.max_poll_attempts, math.ceil(request.expires_in / request.interval))
    return await poll(http, config, request.auth_req_id, request.interval, max_attempts, sleep=sleep)
