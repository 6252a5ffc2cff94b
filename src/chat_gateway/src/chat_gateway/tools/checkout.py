"""Purchase tools; both require the user's approval on their device before running."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from chat_gateway import services
from chat_gateway.authorization.coordinator import resolve_user_id
from chat_gateway.tools.registry import register_tool


async def checkout(arguments: dict[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Buy ``qty`` of ``product`` through the checkout agent."""
    gateway = services.get_gateway()
    user_id = resolve_user_id(arguments, config)
    message = json.dumps(
        {"action": "checkout", "product": arguments.get("product"), "qty": arguments.get("qty"), "userId": user_id},
    )
    agent_id = gateway.settings.checkout_agent_id
    conversation_id = arguments.get("conversationId") or f"checkout-{user_id}"
    return await gateway.invoke(agent_id, message, user_id, conversation_id)


async def checkout_cart(arguments: dict[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Check out the whole cart through the checkout agent."""
    gateway = services.get_gateway()
    user_id = resolve_user_id(arguments, config)
    message = json.dumps(
        {
            "action": "checkout_cart",
            "cartSummary": arguments.get("cartSummary"),
            "cartData": arguments.get("cartData"),
            "userId": user_id,
        },
    )
    agent_id = gateway.settings.checkout_agent_id
    conversation_id = arguments.get("conversationId") or f"checkout-{user_id}"
    return await gateway.invoke(agent_id, message, user_id, conversation_id)


# ---------------------------------------------------------------------------
# Tool registrations
# ---------------------------------------------------------------------------


register_tool(
    "checkout",
    "Buy a quantity of one product. The user must approve the purchase on their device.",
    checkout,
    input_schema={
        "type": "object",
        "properties": {
            "product": {"type": "string"},
            "qty": {"type": "number"},
        },
        "required": ["product", "qty"],
    },
    requires_approval=True,
)


register_tool(
    "checkout_cart",
    "Check out the user's cart. The user must approve the purchase on their device.",
    checkout_cart,
    input_schema={
        "type": "object",
        "properties": {
            "cartSummary": {"type": ["string", "object"]},
            "cartData": {"type": "object"},
        },
        "required": ["cartSummary"],
    },
    requires_approval=True,
)
