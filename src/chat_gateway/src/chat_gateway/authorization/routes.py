"""Authorization status routes polled by chat clients."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response

from chat_gateway import services
from chat_gateway.authorization.state import AuthorizationState
from chat_gateway.models import AuthorizationStatusResponse

router = APIRouter(tags=["Auth"])
logger = logging.getLogger("chat_gateway.authorization")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/auth/status", response_model=AuthorizationStatusResponse, response_model_exclude_none=True)
def authorization_status(response: Response) -> AuthorizationStatusResponse:
    """Return the latest authorization state; never cached."""
    response.headers.update(NO_CACHE_HEADERS)
    return _to_response(_current_state())


@router.post("/auth/reset", response_model=AuthorizationStatusResponse, response_model_exclude_none=True)
def authorization_reset(response: Response) -> AuthorizationStatusResponse:
    """Force the shared state back to idle."""
    response.headers.update(NO_CACHE_HEADERS)
    logger.info("Authorization state reset on request")
    return _to_response(services.get_state_store().reset())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _current_state() -> AuthorizationState:
    """Read through the coordinator when it is configured, else straight from the store."""
    try:
        coordinator = services.get_coordinator()
    except RuntimeError:
        return services.get_state_store().get()
    return coordinator.current_state()


def _to_response(state: AuthorizationState) -> AuthorizationStatusResponse:
    return AuthorizationStatusResponse(
        status=state.status,
        message=state.message,
        version=state.version,
        updated_at=state.updated_at,
    )
