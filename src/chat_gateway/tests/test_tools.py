"""Tests for the agent proxy and checkout tools."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest
from chat_gateway import services
from chat_gateway.config import GatewaySettings
from chat_gateway.errors import MissingUserId
from chat_gateway.tools import agents, registry
from chat_gateway.tools import checkout as checkout_tools


class _DummyGateway:
    def __init__(self) -> None:
        self.settings = GatewaySettings()
        self.calls: list[dict[str, Any]] = []

    async def invoke(self, agent_id: str, message: str, user_id: str, conversation_id: str) -> dict[str, Any]:
        self.calls.append(
            {"agent_id": agent_id, "message": json.loads(message), "user_id": user_id, "conversation_id": conversation_id},
        )
        return {"messages": [{"role": "assistant", "content": "ok"}], "content": "ok"}


@pytest.fixture
def gateway(monkeypatch: pytest.MonkeyPatch) -> _DummyGateway:
    dummy = _DummyGateway()
    monkeypatch.setattr(services, "get_gateway", lambda: dummy)
    return dummy


def test_default_tools_registered() -> None:
    """Importing the tools package registers proxies and purchase tools."""
    definitions = {definition.name: definition for definition in registry.list_definitions()}

    for name in ("catalog", "deals", "cart", "payment"):
        assert name in definitions
        assert definitions[name].requires_approval is False
    assert definitions["checkout"].requires_approval is True
    assert definitions["checkout_cart"].requires_approval is True


def test_caller_user_id_precedence() -> None:
    """The credential subject wins, then the userId argument, then the default."""
    config = {"configurable": {"_credentials": {"user": {"sub": "sub-1"}}}}

    assert agents.caller_user_id({"userId": "u1"}, config) == "sub-1"
    assert agents.caller_user_id({"userId": "u1"}, None) == "u1"
    assert agents.caller_user_id({}, None) == agents.DEFAULT_USER_ID


def test_proxy_conversation_id() -> None:
    """Proxied calls get a one-off conversation id."""
    assert agents.proxy_conversation_id("catalog", "u1", now_ms=99) == "mcp-catalog-u1-99"


@pytest.mark.asyncio
async def test_agent_proxy_forwards_request(gateway: _DummyGateway) -> None:
    """The proxy sends the action and arguments as JSON with the resolved user."""
    # ARRANGE
    proxy = agents.make_agent_proxy("catalog")

    # ACT
    result = await proxy({"action": "search", "query": "shoes", "userId": "u1"})

    # ASSERT
    assert result["content"] == "ok"
    call = gateway.calls[0]
    assert call["agent_id"] == "catalog"
    assert call["message"] == {"action": "search", "query": "shoes", "userId": "u1"}
    assert call["user_id"] == "u1"
    assert call["conversation_id"].startswith("mcp-catalog-u1-")


@pytest.mark.asyncio
async def test_agent_proxy_reuses_thread_id(gateway: _DummyGateway) -> None:
    """A supplied threadId becomes the conversation id and is not forwarded."""
    proxy = agents.make_agent_proxy("deals")

    await proxy({"action": "list", "threadId": "conv_abc"}, {"configurable": {"_credentials": {"user": {"sub": "s1"}}}})

    call = gateway.calls[0]
    assert call["conversation_id"] == "conv_abc"
    assert call["message"] == {"action": "list", "userId": "s1"}


@pytest.mark.asyncio
async def test_checkout_invokes_checkout_agent(gateway: _DummyGateway) -> None:
    """checkout forwards product and quantity to the checkout agent."""
    await checkout_tools.checkout({"product": "shoes", "qty": 2, "userId": "u1"})

    call = gateway.calls[0]
    assert call["agent_id"] == "cart_and_checkout"
    assert call["message"] == {"action": "checkout", "product": "shoes", "qty": 2, "userId": "u1"}
    assert call["conversation_id"] == "checkout-u1"


@pytest.mark.asyncio
async def test_checkout_cart_uses_supplied_conversation(gateway: _DummyGateway) -> None:
    """checkout_cart keeps the caller's conversation."""
    await checkout_tools.checkout_cart(
        {"cartSummary": "2 items", "cartData": {"userId": "cart-user"}, "conversationId": "conv_1"},
    )

    call = gateway.calls[0]
    assert call["user_id"] == "cart-user"
    assert call["conversation_id"] == "conv_1"
    assert call["message"]["action"] == "checkout_cart"
    assert call["message"]["cartSummary"] == "2 items"


@pytest.mark.asyncio
async def test_checkout_without_user_raises(gateway: _DummyGateway) -> None:
    """A purchase without any user id is refused."""
    with pytest.raises(MissingUserId):
        await checkout_tools.checkout({"product": "shoes", "qty": 1})
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_registered_checkout_is_gated(monkeypatch: pytest.MonkeyPatch, gateway: _DummyGateway) -> None:
    """The registered checkout tool runs through the coordinator."""
    seen: list[str] = []

    def wrap(action: Any) -> Any:  # noqa: ANN401
        async def wrapper(payload: dict[str, Any], config: Any = None) -> Any:  # noqa: ANN401
            seen.append("approved")
            return await action(payload, config)

        return wrapper

    monkeypatch.setattr(services, "get_coordinator", lambda: SimpleNamespace(with_backchannel_authorization=wrap))

    result = await registry.run_tool("checkout", {"product": "shoes", "qty": 1, "userId": "u1"})

    assert seen == ["approved"]
    assert result["content"] == "ok"
    assert gateway.calls[0]["agent_id"] == "cart_and_checkout"
