"""Lazily built, process-wide service instances shared by the routes and tools."""

from __future__ import annotations

from functools import lru_cache

import langgraph_client_impl  # noqa: F401  # ensure the remote client registers itself
from chat_gateway.authorization.coordinator import BackchannelCoordinator
from chat_gateway.authorization.state import AuthorizationStateStore
from chat_gateway.config import ClassifierSettings, GatewaySettings
from chat_gateway.execution import RemoteExecutionGateway
from chat_gateway.notices import NoticeHub
from chat_gateway.reclassifier import StreamReclassifier

__all__ = [
    "get_classifier_settings",
    "get_coordinator",
    "get_gateway",
    "get_notice_hub",
    "get_state_store",
    "new_reclassifier",
    "reset_services",
]


@lru_cache(maxsize=1)
def get_gateway() -> RemoteExecutionGateway:
    """Return the shared execution gateway."""
    return RemoteExecutionGateway(settings=GatewaySettings.from_env())


@lru_cache(maxsize=1)
def get_notice_hub() -> NoticeHub:
    """Return the shared notice hub."""
    return NoticeHub()


@lru_cache(maxsize=1)
def get_state_store() -> AuthorizationStateStore:
    """Return the process-wide authorization state."""
    return AuthorizationStateStore()


@lru_cache(maxsize=1)
def get_coordinator() -> BackchannelCoordinator:
    """Return the shared authorization coordinator.

    Raises:
        RuntimeError: The identity provider credentials are not configured.

    """
    return BackchannelCoordinator(store=get_state_store(), notify=get_notice_hub().publish)


@lru_cache(maxsize=1)
def get_classifier_settings() -> ClassifierSettings:
    """Return the reclassifier heuristics."""
    return ClassifierSettings.from_env()


def new_reclassifier() -> StreamReclassifier:
    """Return a reclassifier for one outbound stream."""
    return StreamReclassifier(get_classifier_settings())


def reset_services() -> None:
    """Forget every cached instance."""
    for factory in (get_gateway, get_notice_hub, get_state_store, get_coordinator, get_classifier_settings):
        factory.cache_clear()
