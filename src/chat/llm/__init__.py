"""LLM client abstraction, moderation and model pricing."""

from .client import Completion, LangChainLLMClient, LLMClient, build_usage_record
from .moderation import ModerationResult, Moderator, OpenAIModerator
from .pricing import estimate_cost_usd, parse_usage, resolve_model_key

__all__ = [
    "Completion",
    "LLMClient",
    "LangChainLLMClient",
    "ModerationResult",
    "Moderator",
    "OpenAIModerator",
    "build_usage_record",
    "estimate_cost_usd",
    "parse_usage",
    "resolve_model_key",
]
