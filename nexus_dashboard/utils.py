"""Utility functions for the dashboard."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)

from .models import ChatMessage, ChatMessagePayload


def format_number(num: float) -> str:
    """Compact display form: 1234567 -> '1.2M', 4321 -> '4.3K'."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.1f}K"
    return str(num)


def format_date(date_str: str) -> str:
    """Turn a remote series key like '3/5/23' into 'Mar 5'.

    Keys that do not parse are returned unchanged.
    """
    for fmt in ("%m/%d/%y", "%Y-%m-%d"):
        try:
            date = datetime.strptime(date_str, fmt)
        except ValueError:
            continue
        return f"{date:%b} {date.day}"
    return date_str


def to_chat_message(m: ChatMessage) -> ChatMessagePayload:
    """Convert a log entry to the payload sent to HTTP clients."""
    return {
        "role": m.role,
        "timestamp": m.created_at.isoformat(),
        "content": m.text,
        "streaming": m.streaming,
    }


def to_model_messages(
    history: Iterable[ChatMessage], system_prompt: str
) -> list[ModelMessage]:
    """Build pydantic_ai message history, led by the session's system prompt.

    Streaming, empty or failed assistant entries are skipped.
    """
    messages: list[ModelMessage] = [
        ModelRequest(parts=[SystemPromptPart(content=system_prompt)])
    ]
    for m in history:
        if m.role == "user":
            messages.append(
                ModelRequest(parts=[UserPromptPart(content=m.text, timestamp=m.created_at)])
            )
        elif m.text and not (m.streaming or m.failed):
            messages.append(ModelResponse(parts=[TextPart(m.text)], timestamp=m.created_at))
    return messages
