"""Proxy tools that forward a structured request to a specialist remote agent."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import Any

from chat_gateway import services
from chat_gateway.config import GatewaySettings
from chat_gateway.tools.registry import ToolHandler, register_tool

DEFAULT_USER_ID = "default-user"

AGENT_DESCRIPTIONS = {
    "catalog": "Search and describe products in the catalog.",
    "deals": "Look up promotions and deals that apply to products or carts.",
    "cart": "Inspect or change the user's shopping cart.",
    "payment": "Answer payment and billing questions.",
}

PROXY_SCHEMA = {
    "type": "object",
    "properties": {
        "action": {"type": "string"},
        "threadId": {"type": "string"},
    },
    "required": ["action"],
    "additionalProperties": True,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def caller_user_id(arguments: Mapping[str, Any], config: Mapping[str, Any] | None) -> str:
    """Return the credential user from ``config``, the ``userId`` argument, or a default."""
    credentials = ((config or {}).get("configurable") or {}).get("_credentials") or {}
    user = credentials.get("user") or {}
    sub = user.get("sub") if isinstance(user, dict) else None
    return str(sub or arguments.get("userId") or DEFAULT_USER_ID)


def proxy_conversation_id(agent_id: str, user_id: str, now_ms: int | None = None) -> str:
    """Build a one-off conversation id for a proxied call."""
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    return f"mcp-{agent_id}-{user_id}-{stamp}"


def make_agent_proxy(agent_id: str) -> ToolHandler:
    """Return a handler that forwards its arguments to ``agent_id``."""

    async def proxy(arguments: dict[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
        args = dict(arguments)
        thread_id = args.pop("threadId", None)
        supplied = args.pop("conversationId", None)
        user_id = caller_user_id(args, config)
        args.pop("userId", None)
        message = json.dumps({"action": args.pop("action", None), **args, "userId": user_id})
        conversation_id = thread_id or supplied or proxy_conversation_id(agent_id, user_id)
        return await services.get_gateway().invoke(agent_id, message, user_id, conversation_id)

    proxy.__name__ = f"{agent_id}_proxy"
    return proxy


# ---------------------------------------------------------------------------
# Tool registrations
# ---------------------------------------------------------------------------


for _agent in GatewaySettings.from_env().proxy_agents:
    register_tool(
        _agent,
        AGENT_DESCRIPTIONS.get(_agent, f"Forward a request to the {_agent} agent."),
        make_agent_proxy(_agent),
        input_schema=PROXY_SCHEMA,
    )
