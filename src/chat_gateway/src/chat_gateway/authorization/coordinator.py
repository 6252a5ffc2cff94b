"""Suspend protected actions until the user approves them on another device."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from chat_gateway.authorization import ciba
from chat_gateway.authorization.state import AuthorizationState, AuthorizationStateStore, AuthorizationStatus
from chat_gateway.config import CibaSettings
from chat_gateway.errors import AuthorizationDenied, AuthorizationError, InvalidAuthorizationTransition, MissingUserId
from chat_gateway.events import StatusEvent, status_event

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    ProtectedAction = Callable[[dict[str, Any], Mapping[str, Any] | None], Awaitable[Any]]
    Notifier = Callable[[str, StatusEvent], Awaitable[Any]]

__all__ = [
    "APPROVED_NOTICE",
    "SENT_NOTICE",
    "BackchannelCoordinator",
    "binding_message",
    "resolve_user_id",
]

logger = logging.getLogger("chat_gateway.authorization")

SENT_NOTICE = "📱 Authorization request sent to your device. Please approve to continue."
APPROVED_NOTICE = "✅ Authorization approved! Processing your request..."
CANCELLED_REASON = "Authorization cancelled - the request was abandoned"
RESET_REASON = "Authorization cancelled - the request was reset while waiting"

_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s+\-_.,:#]")


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def resolve_user_id(payload: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> str:
    """Find the user to ask for approval.

    Looks at the caller's credential first, then a cart-scoped user, then a plain ``userId``.

    Raises:
        MissingUserId: None of them is set.

    """
    credentials = ((config or {}).get("configurable") or {}).get("_credentials") or {}
    user = credentials.get("user") or {}
    cart = payload.get("cartData")
    candidates = (
        user.get("sub") if isinstance(user, dict) else None,
        cart.get("userId") if isinstance(cart, dict) else None,
        payload.get("userId"),
    )
    for candidate in candidates:
        if candidate:
            return str(candidate)
    error_message = "User ID required for backchannel authorization"
    raise MissingUserId(error_message)


def _clean(text: str) -> str:
    return _DISALLOWED.sub("", text)


def binding_message(payload: Mapping[str, Any]) -> str:
    """Describe the action in the characters identity providers accept on an approval prompt."""
    product = payload.get("product")
    qty = payload.get("qty")
    if product and qty:
        return f"Do you want to buy {qty} {product}"

    summary = payload.get("cartSummary")
    if not summary:
        return "Do you want to proceed with this purchase"

    if isinstance(summary, str):
        try:
            parsed = json.loads(summary)
        except ValueError:
            return f"Do you want to checkout cart: {_clean(summary)}"
    else:
        parsed = summary

    if isinstance(parsed, dict):
        items = parsed.get("items")
        if parsed.get("totalValue") and items:
            count = len(items) if isinstance(items, list) else "multiple"
            return f"Do you want to checkout cart with {count} items for {parsed['totalValue']}"
        if isinstance(parsed.get("summary"), str) and parsed["summary"]:
            return f"Do you want to checkout cart: {_clean(parsed['summary'])}"
    elif isinstance(parsed, str) and parsed:
        return f"Do you want to checkout cart: {_clean(parsed)}"
    return "Do you want to checkout your cart"


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class BackchannelCoordinator:
    """Drive the shared authorization state around protected actions.

    One authorization runs at a time per process. The state moves
    ``idle -> requested -> pending -> approved`` (or ``denied``) and returns to ``idle``
    only after the protected action has finished.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: CibaSettings | None = None,
        *,
        store: AuthorizationStateStore | None = None,
        notify: Notifier | None = None,
        action_completed: Callable[[], bool] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Create a coordinator.

        Args:
            settings: Provider credentials and endpoints; read from the environment when omitted.
            store: Shared state holder.
            notify: Receives ``(user_id, status_event)`` at each phase; delivery is the callee's job.
            action_completed: Probe reporting that the protected action already finished.
            transport: Optional httpx transport for the identity provider.
            sleep: Awaitable delay used between polls.

        """
        self._settings = settings or CibaSettings.from_env()
        self._store = store or AuthorizationStateStore()
        self._notify = notify
        self._action_completed = action_completed
        self._transport = transport
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._version = 0

    @property
    def settings(self) -> CibaSettings:
        """Get the provider settings."""
        return self._settings

    @property
    def store(self) -> AuthorizationStateStore:
        """Get the shared state holder."""
        return self._store

    def current_state(self) -> AuthorizationState:
        """Return the state, settling an ``approved`` whose action already reported completion."""
        state = self._store.get()
        if state.status == "approved" and self._action_completed is not None and self._action_completed():
            return self._store.reset()
        return state

    def reset(self) -> AuthorizationState:
        """Force the state back to ``idle``."""
        return self._store.reset()

    def with_backchannel_authorization(self, action: ProtectedAction) -> ProtectedAction:
        """Wrap ``action`` so it only runs after the user approves it."""

        async def wrapper(payload: dict[str, Any], config: Mapping[str, Any] | None = None) -> Any:  # noqa: ANN401
            return await self.run(action, payload, config)

        wrapper.__name__ = getattr(action, "__name__", "protected_action")
        wrapper.__doc__ = action.__doc__
        return wrapper

    async def run(
        self,
        action: ProtectedAction,
        payload: dict[str, Any],
        config: Mapping[str, Any] | None = None,
    ) -> Any:  # noqa: ANN401
        """Ask for approval, then run ``action(payload, config)``.

        Raises:
            MissingUserId: No user could be derived from ``config`` or ``payload``.
            AuthorizationDenied: The user refused, the request failed, expired or timed out, or the
                shared state was reset before approval landed.

        """
        user_id = resolve_user_id(payload, config)
        message = binding_message(payload)

        async with self._lock:
            if self._store.get().status != "idle":
                self._store.reset()
            self._version = self._store.set("requested", message).version
            logger.info("Authorization requested for %s: %s", user_id, message)

            try:
                tokens = await self._authorize(user_id, message)
                if tokens is None:
                    raise AuthorizationDenied  # noqa: TRY301
                self._advance("approved", message)
            except asyncio.CancelledError:
                self._settle("denied", CANCELLED_REASON)
                logger.info("Authorization for %s cancelled", user_id)
                raise
            except (AuthorizationError, httpx.HTTPError) as exc:
                reason = exc.detail if isinstance(exc, AuthorizationError) else f"Authorization request failed: {exc}"
                await self._deny(user_id, reason)
                raise AuthorizationDenied(reason) from exc

            logger.info("Authorization approved for %s", user_id)
            await self._publish(user_id, APPROVED_NOTICE)
            try:
                return await action(payload, config)
            finally:
                self._store.reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _authorize(self, user_id: str, message: str) -> ciba.TokenResponse | None:
        async def on_initiated(_request: ciba.AuthRequest) -> None:
            self._advance("pending", message)
            await self._publish(user_id, SENT_NOTICE)

        async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as http:
            return await ciba.authorize(http, self._settings, user_id, message, sleep=self._sleep, on_initiated=on_initiated)

    def _advance(self, status: AuthorizationStatus, message: str) -> None:
        """Move the state this run owns; a reset from elsewhere revokes the run.

        Raises:
            AuthorizationDenied: The state was reset since this run last wrote it.

        """
        try:
            state = self._store.set(status, message, expected_version=self._version)
        except InvalidAuthorizationTransition as exc:
            raise AuthorizationDenied(RESET_REASON) from exc
        self._version = state.version

    def _settle(self, status: AuthorizationStatus, message: str) -> None:
        """Like ``_advance``, but leave an externally reset state alone."""
        try:
            self._advance(status, message)
        except AuthorizationDenied:
            logger.info("Authorization state was reset elsewhere; not recording %s", status)

    async def _deny(self, user_id: str, reason: str) -> None:
        self._settle("denied", reason)
        logger.info("Authorization denied for %s: %s", user_id, reason)
        await self._publish(user_id, f"❌ Authorization denied: {reason}")

    async def _publish(self, user_id: str, text: str) -> None:
        if self._notify is None:
            return
        await self._notify(user_id, status_event(text, auto_remove_ms=self._settings.notice_auto_remove_ms))
