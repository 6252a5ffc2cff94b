"""Pydantic schemas for listener and agent-callback traffic."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class IncomingMessage(BaseModel):
    """Normalized incoming chat message."""

    provider: str
    channel_id: str
    user_id: str
    content: str
    conversation_id: str | None = None
    agent_id: str | None = None
    message_id: str | None = None
    timestamp: str | None = None


class ChatReply(BaseModel):
    """Reply payload returned to a listener."""

    reply: str
    conversation_id: str
    messages: list[Any] = Field(default_factory=list)


class ClearConversationRequest(BaseModel):
    conversation_id: str | None = None


class ClearConversationReply(BaseModel):
    success: bool = True
    message: str
    cleared: int = 0


class ToolCallRequest(BaseModel):
    """A remote agent's call into a registered tool."""

    arguments: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] | None = None
    conversation_id: str | None = None


class ToolCallReply(BaseModel):
    tool: str
    result: Any = None


class AuthorizationStatusResponse(BaseModel):
    """Snapshot of the shared backchannel authorization state."""

    status: str
    message: str | None = None
    version: int
    updated_at: float
