"""Tool registry for agent callbacks."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field

from chat_gateway import services
from chat_gateway.errors import AuthorizationDenied, MissingUserId

ToolHandler = Callable[[dict[str, Any], Mapping[str, Any] | None], Awaitable[Any]]

_TOOL_HANDLERS: dict[str, ToolHandler] = {}
_TOOL_DEFINITIONS: list[ToolDefinition] = []
logger = logging.getLogger("chat_gateway.tools")


class ToolDefinition(BaseModel):
    """Public description of a registered tool."""

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    requires_approval: bool = False


# ---------------------------------------------------------------------------
# Registry API
# ---------------------------------------------------------------------------


def register_tool(
    name: str,
    description: str,
    handler: ToolHandler,
    *,
    input_schema: dict[str, Any] | None = None,
    requires_approval: bool = False,
) -> None:
    """Register a tool and its coroutine handler.

    Handlers flagged ``requires_approval`` only run after the user approves them through the
    backchannel coordinator.
    """
    if name in _TOOL_HANDLERS:
        msg = f"Tool already registered: {name}"
        raise ValueError(msg)
    definition = ToolDefinition(
        name=name,
        description=description,
        input_schema=input_schema or {"type": "object"},
        requires_approval=requires_approval,
    )
    _TOOL_DEFINITIONS.append(definition)
    _TOOL_HANDLERS[name] = _approval_gated(handler) if requires_approval else handler


def list_definitions() -> list[ToolDefinition]:
    """Return all registered tool definitions."""
    return list(_TOOL_DEFINITIONS)


async def run_tool(name: str, arguments: Mapping[str, Any], config: Mapping[str, Any] | None = None) -> object:
    """Execute a registered tool.

    Authorization refusals and a missing user propagate so the caller can report them; other
    failures come back as an error payload.
    """
    handler = _TOOL_HANDLERS.get(name)
    if handler is None:
        label = name or "unknown"
        return {"type": "error", "code": "unknown_tool", "message": f"Unknown tool: {label}"}
    try:
        return await handler(dict(arguments), config)
    except (AuthorizationDenied, MissingUserId):
        raise
    except Exception as exc:
        logger.exception("Tool failed (%s)", name)
        return {"type": "error", "code": "tool_failed", "message": str(exc), "tool": name}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _approval_gated(handler: ToolHandler) -> ToolHandler:
    """Route ``handler`` through the shared coordinator, resolved when the tool runs."""

    async def gated(arguments: dict[str, Any], config: Mapping[str, Any] | None = None) -> Any:  # noqa: ANN401
        coordinator = services.get_coordinator()
        return await coordinator.with_backchannel_authorization(handler)(arguments, config)

    gated.__name__ = getattr(handler, "__name__", "gated")
    return gated
