"""Unit tests for the gateway tool registry."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest
from chat_gateway import services
from chat_gateway.errors import AuthorizationDenied, MissingUserId
from chat_gateway.tools import registry


@pytest.fixture
def clean_registry(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    """Reset registry state for isolated tests."""
    monkeypatch.setattr(registry, "_TOOL_HANDLERS", {})
    monkeypatch.setattr(registry, "_TOOL_DEFINITIONS", [])
    return registry._TOOL_HANDLERS


async def _echo(arguments: dict[str, Any], config: Mapping[str, Any] | None = None) -> dict[str, Any]:
    return {"arguments": arguments, "config": config}


class _RecordingCoordinator:
    """Stands in for the backchannel coordinator; approves or denies every call."""

    def __init__(self, *, approve: bool) -> None:
        self.approve = approve
        self.calls: list[dict[str, Any]] = []

    def with_backchannel_authorization(self, action: Any) -> Any:  # noqa: ANN401
        async def wrapper(payload: dict[str, Any], config: Mapping[str, Any] | None = None) -> Any:  # noqa: ANN401
            self.calls.append(payload)
            if not self.approve:
                raise AuthorizationDenied
            return await action(payload, config)

        return wrapper


def test_register_tool_duplicate_raises(clean_registry: dict[str, Any]) -> None:
    """Reject duplicate tool registrations."""
    registry.register_tool("demo", "demo tool", _echo)
    with pytest.raises(ValueError, match="Tool already registered"):
        registry.register_tool("demo", "demo tool", _echo)


def test_list_definitions_returns_copy(clean_registry: dict[str, Any]) -> None:
    """Expose a copy of definitions for callers."""
    registry.register_tool("demo", "demo tool", _echo, requires_approval=True)

    definitions = registry.list_definitions()

    assert len(definitions) == 1
    assert definitions[0].name == "demo"
    assert definitions[0].requires_approval is True
    assert definitions[0].input_schema == {"type": "object"}
    assert definitions is not registry._TOOL_DEFINITIONS


@pytest.mark.asyncio
async def test_run_tool_unknown_returns_error(clean_registry: dict[str, Any]) -> None:
    """Return an error payload when tool is missing."""
    result = await registry.run_tool("missing", {})

    assert isinstance(result, dict)
    assert result["code"] == "unknown_tool"
    assert result["message"] == "Unknown tool: missing"


@pytest.mark.asyncio
async def test_run_tool_passes_arguments_and_config(clean_registry: dict[str, Any]) -> None:
    """Handlers receive a copy of the arguments and the caller config."""
    registry.register_tool("demo", "demo tool", _echo)
    config = {"configurable": {"_credentials": {"user": {"sub": "u1"}}}}

    result = await registry.run_tool("demo", {"value": 3}, config)

    assert result == {"arguments": {"value": 3}, "config": config}


@pytest.mark.asyncio
async def test_run_tool_failure_returns_error(clean_registry: dict[str, Any]) -> None:
    """Unexpected handler failures become an error payload."""

    async def broken(_arguments: dict[str, Any], _config: Mapping[str, Any] | None = None) -> None:
        raise RuntimeError("boom")

    registry.register_tool("broken", "broken tool", broken)

    result = await registry.run_tool("broken", {})

    assert result == {"type": "error", "code": "tool_failed", "message": "boom", "tool": "broken"}


@pytest.mark.asyncio
async def test_run_tool_propagates_missing_user(clean_registry: dict[str, Any]) -> None:
    """Usage errors are raised to the caller."""

    async def needs_user(_arguments: dict[str, Any], _config: Mapping[str, Any] | None = None) -> None:
        raise MissingUserId("User ID required for backchannel authorization")

    registry.register_tool("needs_user", "tool", needs_user)

    with pytest.raises(MissingUserId):
        await registry.run_tool("needs_user", {})


@pytest.mark.asyncio
async def test_approval_gated_tool_runs_after_approval(
    monkeypatch: pytest.MonkeyPatch,
    clean_registry: dict[str, Any],
) -> None:
    """Tools flagged for approval go through the coordinator."""
    # ARRANGE
    coordinator = _RecordingCoordinator(approve=True)
    monkeypatch.setattr(services, "get_coordinator", lambda: coordinator)
    registry.register_tool("buy", "buy tool", _echo, requires_approval=True)

    # ACT
    result = await registry.run_tool("buy", {"product": "shoes", "qty": 1, "userId": "u1"})

    # ASSERT
    assert coordinator.calls == [{"product": "shoes", "qty": 1, "userId": "u1"}]
    assert result["arguments"]["product"] == "shoes"


@pytest.mark.asyncio
async def test_approval_gated_tool_denial_propagates(
    monkeypatch: pytest.MonkeyPatch,
    clean_registry: dict[str, Any],
) -> None:
    """A denial is raised, not folded into an error payload."""
    called: list[Any] = []

    async def buy(arguments: dict[str, Any], _config: Mapping[str, Any] | None = None) -> None:
        called.append(arguments)

    monkeypatch.setattr(services, "get_coordinator", lambda: _RecordingCoordinator(approve=False))
    registry.register_tool("buy", "buy tool", buy, requires_approval=True)

    with pytest.raises(AuthorizationDenied):
        await registry.run_tool("buy", {"userId": "u1"})
    assert called == []


@pytest.mark.asyncio
async def test_ungated_tool_does_not_touch_coordinator(
    monkeypatch: pytest.MonkeyPatch,
    clean_registry: dict[str, Any],
) -> None:
    """Tools without the approval flag never resolve the coordinator."""

    def fail() -> None:
        pytest.fail("coordinator must not be resolved")

    monkeypatch.setattr(services, "get_coordinator", fail)
    registry.register_tool("demo", "demo tool", _echo)

    result = await registry.run_tool("demo", {"a": 1})

    assert result["arguments"] == {"a": 1}
