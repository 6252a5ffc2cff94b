"""Conversation identifiers: ``conv_<base36 millis>_<8 random chars>``."""

from __future__ import annotations

import secrets
import string
import time

__all__ = ["new_conversation_id"]

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def new_conversation_id(now_ms: int | None = None) -> str:
    """Generate a fresh conversation id."""
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(8))
    return f"conv_{_base36(stamp)}_{suffix}"
