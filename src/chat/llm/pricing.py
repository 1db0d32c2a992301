"""Model pricing table and token usage parsing for cost accounting."""

import re
from typing import Any, Dict, Optional, Tuple

TOKENS_PER_MILLION = 1_000_000
COST_DECIMAL_PLACES = 6

# USD per 1M tokens: (prompt, completion)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-5.1": (1.25, 10.0),
    "gpt-5-mini": (0.25, 2.0),
    "gpt-5-nano": (0.05, 0.4),
    "gpt-4.1": (2.75, 11.0),
    "gpt-4.1-nano": (0.15, 0.6),
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4-turbo": (10.0, 30.0),
    "gpt-4": (30.0, 60.0),
    "gpt-3.5-turbo": (0.5, 1.5),
    "o1": (15.0, 60.0),
    "o1-mini": (3.0, 12.0),
}

MODEL_ALIASES: Dict[str, str] = {
    "gpt-4-turbo-preview": "gpt-4-turbo",
    "gpt-3.5-turbo-0125": "gpt-3.5-turbo",
    "gpt-3.5-turbo-1106": "gpt-3.5-turbo",
    "gpt-4-0613": "gpt-4",
}

_PROMPT_KEYS = ("prompt_tokens", "promptTokens", "input_tokens")
_COMPLETION_KEYS = ("completion_tokens", "completionTokens", "output_tokens")
_SUFFIX_PATTERN = re.compile(r"-(latest|preview)$")
_ISO_DATE_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")


def resolve_model_key(model: Optional[str]) -> Optional[str]:
    if not model:
        return None
    if model in MODEL_ALIASES:
        return MODEL_ALIASES[model]
    normalized = _SUFFIX_PATTERN.sub("", model)
    normalized = _ISO_DATE_SUFFIX.sub("", normalized)
    return MODEL_ALIASES.get(normalized, normalized)


def _coerce_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return int(parsed) if parsed >= 0 else None
    return None


def _pick(record: Dict[str, Any], keys: Tuple[str, ...]) -> int:
    for key in keys:
        parsed = _coerce_count(record.get(key))
        if parsed is not None:
            return parsed
    return 0


def parse_usage(candidate: Any) -> Optional[Tuple[int, int, int]]:
    """Return (prompt, completion, total) token counts, or None when nothing was reported."""
    if not isinstance(candidate, dict):
        return None
    prompt_tokens = _pick(candidate, _PROMPT_KEYS)
    completion_tokens = _pick(candidate, _COMPLETION_KEYS)
    total = prompt_tokens + completion_tokens
    if total <= 0:
        return None
    return prompt_tokens, completion_tokens, total


def estimate_cost_usd(model: Optional[str], prompt_tokens: int, completion_tokens: int) -> Optional[float]:
    key = resolve_model_key(model)
    if key is None or key not in MODEL_PRICING:
        return None
    prompt_price, completion_price = MODEL_PRICING[key]
    cost = (prompt_tokens * prompt_price + completion_tokens * completion_price) / TOKENS_PER_MILLION
    return round(cost, COST_DECIMAL_PLACES)
