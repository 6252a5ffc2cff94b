"""Discord gateway listener that relays DMs to the chat gateway and renders its event stream."""

import asyncio
import json
import logging
import os
from collections.abc import Callable
from typing import Any

import discord
import requests
from discord import app_commands
from dotenv import load_dotenv

from chat_gateway.conversations import new_conversation_id
from chat_gateway.models import IncomingMessage

load_dotenv()
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("discord_listener")

DISCORD_BOT_TOKEN = os.environ.get("DISCORD_BOT_TOKEN")
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL")
GATEWAY_AGENT_ID = os.environ.get("GATEWAY_AGENT_ID") or None
DISCORD_MAX_LEN = 2000
DEFAULT_TIMEOUT_SECONDS = 300.0
STATUS_TIMEOUT_SECONDS = 5.0
DEFAULT_STATUS_SECONDS = 5.0
ERROR_DELETE_AFTER_SECONDS = 10.0
NDJSON_MEDIA_TYPE = "application/x-ndjson"

if not DISCORD_BOT_TOKEN:
    raise RuntimeError("DISCORD_BOT_TOKEN is required.")  # noqa: TRY003, EM101
if not PUBLIC_BASE_URL:
    raise RuntimeError("PUBLIC_BASE_URL is required.")  # noqa: TRY003, EM101
GATEWAY_BASE_URL = PUBLIC_BASE_URL.rstrip("/")
STREAM_URL = f"{GATEWAY_BASE_URL}/chat/stream"
CLEAR_URL = f"{GATEWAY_BASE_URL}/conversations/clear"
AUTH_STATUS_URL = f"{GATEWAY_BASE_URL}/auth/status"

CHANNEL_CONVERSATIONS: dict[str, str] = {}
_END = object()

intents = discord.Intents.default()
intents.message_content = True
client = discord.Client(intents=intents)
tree = app_commands.CommandTree(client)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunk_text(text: str, max_len: int = DISCORD_MAX_LEN) -> list[str]:
    if not text:
        return []
    chunks = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break
        split_at = text.rfind("\n", 0, max_len)
        if split_at == -1:
            split_at = text.rfind(" ", 0, max_len)
        if split_at == -1:
            split_at = max_len
        chunks.append(text[:split_at].rstrip())
        text = text[split_at:].lstrip()
    return chunks


def _conversation_for(channel_id: str) -> str:
    """Return the channel's current conversation id, starting one on first use."""
    conversation_id = CHANNEL_CONVERSATIONS.get(channel_id)
    if conversation_id is None:
        conversation_id = new_conversation_id()
        CHANNEL_CONVERSATIONS[channel_id] = conversation_id
    return conversation_id


def _status_delete_after(payload: dict[str, Any]) -> float:
    """Seconds a status message stays visible, from ``autoRemoveMs`` when present."""
    auto_remove_ms = payload.get("autoRemoveMs")
    if isinstance(auto_remove_ms, (int, float)) and auto_remove_ms > 0:
        return auto_remove_ms / 1000
    return DEFAULT_STATUS_SECONDS


def _format_auth_status(state: dict[str, Any]) -> str:
    status = state.get("status", "unknown")
    message = state.get("message")
    if message:
        return f"Authorization status: {status} ({message})"
    return f"Authorization status: {status}"


def _stream_from_gateway(
    url: str,
    message: IncomingMessage,
    on_event: Callable[[dict[str, Any]], None],
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> None:
    """Post the message and hand each streamed event to ``on_event`` until ``done``."""
    with requests.post(
        url,
        json=message.model_dump(exclude_none=True),
        headers={"Accept": NDJSON_MEDIA_TYPE},
        stream=True,
        timeout=timeout_seconds,
    ) as response:
        response.raise_for_status()
        for line in response.iter_lines(decode_unicode=True):
            if not line:
                continue
            try:
                event = json.loads(line)
            except ValueError:
                logger.warning("Skipping malformed stream line: %s", line)
                continue
            if not isinstance(event, dict):
                continue
            if event.get("type") == "done":
                break
            on_event(event)


def _clear_conversation(url: str, conversation_id: str, *, timeout_seconds: float = STATUS_TIMEOUT_SECONDS) -> None:
    response = requests.post(url, json={"conversation_id": conversation_id}, timeout=timeout_seconds)
    response.raise_for_status()


def _fetch_auth_status(url: str, *, timeout_seconds: float = STATUS_TIMEOUT_SECONDS) -> dict[str, Any]:
    response = requests.get(url, timeout=timeout_seconds)
    response.raise_for_status()
    return response.json()


async def _render_event(channel: Any, event: dict[str, Any]) -> None:  # noqa: ANN401
    """Post one gateway event to the channel following the ephemeral-status contract."""
    kind = event.get("type")
    payload = event.get("payload")
    payload = payload if isinstance(payload, dict) else {"text": payload}

    if kind == "message":
        for part in _chunk_text(str(payload.get("content") or "")):
            await channel.send(part)
    elif kind == "status":
        text = str(payload.get("text") or "").strip()
        if text:
            await channel.send(text, delete_after=_status_delete_after(payload))
    elif kind == "error":
        text = payload.get("message") or payload.get("text") or "Something went wrong."
        await channel.send(f"⚠️ {text}", delete_after=ERROR_DELETE_AFTER_SECONDS)
    elif kind == "raw":
        for part in _chunk_text(str(payload.get("text") or "")):
            await channel.send(part)
    elif kind == "metadata":
        logger.info("Metadata (%s): %s", payload.get("kind"), payload.get("data"))
    else:
        logger.debug("Ignoring event type %s", kind)


async def _relay(channel: Any, incoming: IncomingMessage) -> None:  # noqa: ANN401
    """Stream the gateway's events for ``incoming`` into ``channel`` as they arrive."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Any] = asyncio.Queue()

    def push(event: dict[str, Any]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event)

    worker = asyncio.ensure_future(asyncio.to_thread(_stream_from_gateway, STREAM_URL, incoming, push))
    worker.add_done_callback(lambda _: queue.put_nowait(_END))
    while True:
        event = await queue.get()
        if event is _END:
            break
        await _render_event(channel, event)
    await worker


# ---------------------------------------------------------------------------
# Slash Commands
# ---------------------------------------------------------------------------


@tree.command(name="status", description="Show the current purchase authorization status.")
async def status_command(interaction: discord.Interaction) -> None:
    """Reply with the shared authorization state.

    Args:
        interaction: Discord interaction payload for the slash command.

    Returns:
        None.

    """
    try:
        state = await asyncio.to_thread(_fetch_auth_status, AUTH_STATUS_URL)
    except requests.RequestException:
        logger.exception("Failed to fetch authorization status")
        await interaction.response.send_message("Could not reach the gateway.", ephemeral=True)
        return
    await interaction.response.send_message(_format_auth_status(state), ephemeral=True)


@tree.command(name="newchat", description="Start a fresh conversation in this channel.")
async def newchat_command(interaction: discord.Interaction) -> None:
    """Rotate the channel's conversation id and drop the old remote thread.

    Args:
        interaction: Discord interaction payload for the slash command.

    Returns:
        None.

    """
    channel_id = str(interaction.channel_id)
    previous = CHANNEL_CONVERSATIONS.get(channel_id)
    CHANNEL_CONVERSATIONS[channel_id] = new_conversation_id()
    if previous:
        try:
            await asyncio.to_thread(_clear_conversation, CLEAR_URL, previous)
        except requests.RequestException:
            logger.exception("Failed to clear conversation %s", previous)
    await interaction.response.send_message("Started a new conversation.", ephemeral=True)


# ---------------------------------------------------------------------------
# Event Handlers
# ---------------------------------------------------------------------------


@client.event
async def on_ready() -> None:
    """Log the bot identity once connected."""
    logger.info("Logged in as %s", client.user)
    try:
        await tree.sync()
    except Exception:
        logger.exception("Failed to sync slash commands")


@client.event
async def on_message(message: discord.Message) -> None:
    """Forward DM messages to the gateway and render the streamed reply.

    Args:
        message: Incoming Discord message event payload.

    Returns:
        None.

    """
    if not isinstance(message.channel, discord.DMChannel):
        return

    if message.author.bot:
        return

    content = (message.content or "").strip()
    if not content:
        return

    channel_id = str(message.channel.id)
    incoming = IncomingMessage(
        provider="discord",
        channel_id=channel_id,
        user_id=str(message.author.id),
        content=content,
        conversation_id=_conversation_for(channel_id),
        agent_id=GATEWAY_AGENT_ID,
        message_id=str(message.id),
    )

    try:
        await _relay(message.channel, incoming)
    except Exception:
        logger.exception("Failed to relay message to gateway")


def main() -> None:
    """Run the Discord gateway client."""
    assert DISCORD_BOT_TOKEN is not None
    client.run(DISCORD_BOT_TOKEN)


if __name__ == "__main__":
    main()
