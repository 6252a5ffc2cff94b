"""FastAPI gateway between chat clients and the remote agent service.

Routes listener messages to remote agents, streams typed events back, exposes the shared
authorization state and hosts the tools remote agents call back into.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from chat_gateway import tools  # noqa: F401  # register tool modules
from chat_gateway.authorization.routes import router as auth_router
from chat_gateway.conversations import new_conversation_id
from chat_gateway.errors import AuthorizationDenied, MissingUserId
from chat_gateway.events import DONE_EVENT, encode_ndjson, encode_sse, error_event, to_wire
from chat_gateway.models import (
    ChatReply,
    ClearConversationReply,
    ClearConversationRequest,
    IncomingMessage,
    ToolCallReply,
    ToolCallRequest,
)
from chat_gateway.services import get_gateway, get_notice_hub, new_reclassifier
from chat_gateway.tools import registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chat_gateway.reclassifier import StreamReclassifier

app = FastAPI(title="Chat Gateway", version="0.1.0")
app.include_router(auth_router)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("chat_gateway")

SSE_MEDIA_TYPE = "text/event-stream"
NDJSON_MEDIA_TYPE = "application/x-ndjson"
CHANNEL_CONVERSATIONS: dict[str, str] = {}
_END = object()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict[str, str]:
    """Return a basic health payload."""
    return {"status": "ok"}


@app.post("/chat", response_model=ChatReply)
async def handle_message(incoming_message: IncomingMessage) -> ChatReply:
    """Run the remote agent for one message and return its reply."""
    gateway = get_gateway()
    conversation_id = _conversation_id(incoming_message)
    agent_id = incoming_message.agent_id or gateway.settings.default_agent_id
    logger.info("User message (%s): %s", conversation_id, incoming_message.content)
    result = await gateway.invoke(agent_id, incoming_message.content, incoming_message.user_id, conversation_id)
    return ChatReply(reply=result["content"], conversation_id=conversation_id, messages=result["messages"])


@app.post("/chat/stream")
async def stream_message(incoming_message: IncomingMessage, request: Request) -> StreamingResponse:
    """Stream typed events for one message as NDJSON, or SSE when the client asks for it."""
    use_sse = SSE_MEDIA_TYPE in request.headers.get("accept", "")
    encode = encode_sse if use_sse else encode_ndjson
    conversation_id = _conversation_id(incoming_message)

    async def body() -> AsyncIterator[str]:
        async for wire in _event_stream(incoming_message, conversation_id):
            yield encode(wire)

    return StreamingResponse(
        body(),
        media_type=SSE_MEDIA_TYPE if use_sse else NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Conversation-Id": conversation_id},
    )


@app.post("/conversations/clear", response_model=ClearConversationReply)
async def clear_conversation(clear_request: ClearConversationRequest) -> ClearConversationReply:
    """Forget one conversation's remote thread, or all of them."""
    conversation_id = clear_request.conversation_id
    cleared = get_gateway().clear(conversation_id)
    _forget_channels(conversation_id)
    message = f"Thread cleared for conversation: {conversation_id}" if conversation_id else "All threads cleared"
    return ClearConversationReply(message=message, cleared=cleared)


@app.delete("/conversations", response_model=ClearConversationReply)
async def clear_all_conversations() -> ClearConversationReply:
    """Forget every remote thread."""
    cleared = get_gateway().clear()
    _forget_channels(None)
    return ClearConversationReply(message="All conversation threads cleared", cleared=cleared)


@app.get("/tools")
async def list_tools() -> list[dict[str, Any]]:
    """List registered tools."""
    return [definition.model_dump() for definition in registry.list_definitions()]


@app.post("/tools/{name}", response_model=ToolCallReply)
async def call_tool(name: str, tool_request: ToolCallRequest) -> ToolCallReply:
    """Run a registered tool on behalf of a remote agent."""
    arguments = dict(tool_request.arguments)
    if tool_request.conversation_id:
        arguments.setdefault("conversationId", tool_request.conversation_id)
    try:
        output = await registry.run_tool(name, arguments, tool_request.config)
    except MissingUserId as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AuthorizationDenied as exc:
        raise HTTPException(status_code=403, detail=exc.detail) from exc
    if isinstance(output, dict) and output.get("code") == "unknown_tool":
        raise HTTPException(status_code=404, detail=output["message"])
    logger.info("Tool result (%s): %s", name, output)
    return ToolCallReply(tool=name, result=output)


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------


async def _event_stream(incoming_message: IncomingMessage, conversation_id: str) -> AsyncIterator[dict[str, Any]]:
    """Merge run events with coordinator notices for the same user, then finish with ``done``."""
    gateway = get_gateway()
    agent_id = incoming_message.agent_id or gateway.settings.default_agent_id
    outbox: asyncio.Queue[Any] = asyncio.Queue()
    reclassifier = new_reclassifier()

    with get_notice_hub().subscription(incoming_message.user_id, outbox):
        producer = asyncio.create_task(
            _produce(outbox, reclassifier, agent_id, incoming_message, conversation_id),
        )
        try:
            while True:
                item = await outbox.get()
                if item is _END:
                    break
                yield to_wire(item)
        finally:
            if not producer.done():
                producer.cancel()
                logger.info("Stream for %s closed early; run cancelled", conversation_id)
    yield dict(DONE_EVENT)


async def _produce(
    outbox: asyncio.Queue[Any],
    reclassifier: StreamReclassifier,
    agent_id: str,
    incoming_message: IncomingMessage,
    conversation_id: str,
) -> None:
    """Push reclassified run events into ``outbox`` and mark the end."""
    try:
        async for event in get_gateway().stream(
            agent_id,
            incoming_message.content,
            incoming_message.user_id,
            conversation_id,
        ):
            for typed in reclassifier.classify(event):
                outbox.put_nowait(typed)
    except Exception as exc:
        logger.exception("Streaming run failed for %s", conversation_id)
        outbox.put_nowait(error_event(str(exc)))
    finally:
        outbox.put_nowait(_END)


# ---------------------------------------------------------------------------
# Conversation helpers
# ---------------------------------------------------------------------------


def _conversation_id(incoming_message: IncomingMessage) -> str:
    """Use the caller's conversation id, else the channel's current one, creating it on first use."""
    if incoming_message.conversation_id:
        return incoming_message.conversation_id
    key = f"{incoming_message.provider}:{incoming_message.channel_id}"
    conversation_id = CHANNEL_CONVERSATIONS.get(key)
    if conversation_id is None:
        conversation_id = new_conversation_id()
        CHANNEL_CONVERSATIONS[key] = conversation_id
    return conversation_id


def _forget_channels(conversation_id: str | None) -> None:
    """Drop channel mappings for a cleared conversation, or all of them."""
    if conversation_id is None:
        CHANNEL_CONVERSATIONS.clear()
        return
    for key in [k for k, v in CHANNEL_CONVERSATIONS.items() if v == conversation_id]:
        del CHANNEL_CONVERSATIONS[key]
