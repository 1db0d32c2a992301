"""Prompt builders for planner and answer LLM calls."""

from .answer import build_answer_prompt
from .conversation import format_conversation
from .planner import build_planner_prompt

__all__ = ["build_answer_prompt", "build_planner_prompt", "format_conversation"]
