"""Conversation snippet formatting shared by the planner and answer prompts."""

from typing import Sequence

from ..core.types import ChatMessage


def format_conversation(messages: Sequence[ChatMessage], limit: int) -> str:
    recent = list(messages)[-limit:] if limit > 0 else []
    return "\n".join(f"{message.role.upper()}: {message.content.strip()}" for message in recent)
