"""LLM client abstraction for structured planning and streamed answering."""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from ..core.types import StageName, UsageRecord
from .pricing import estimate_cost_usd, parse_usage


PromptMessages = Sequence[Tuple[str, str]]
UsageCallback = Callable[[UsageRecord], None]


@dataclass
class Completion:
    text: str
    usage: UsageRecord


class LLMClient(Protocol):
    async def complete(
        self,
        *,
        stage: StageName,
        model: str,
        temperature: float,
        messages: PromptMessages,
    ) -> Completion:
        ...

    def stream(
        self,
        *,
        stage: StageName,
        model: str,
        temperature: float,
        messages: PromptMessages,
        on_usage: UsageCallback,
    ) -> AsyncIterator[str]:
        ...


def build_usage_record(stage: StageName, model: str, raw_usage: Any) -> UsageRecord:
    parsed = parse_usage(raw_usage)
    prompt_tokens, completion_tokens, total_tokens = parsed if parsed is not None else (0, 0, 0)
    return UsageRecord(
        stage=stage,
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        cost_usd=estimate_cost_usd(model, prompt_tokens, completion_tokens),
    )


def content_text(content: Any) -> str:
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, dict):
                parts.append(str(item.get("text", "")))
            else:
                parts.append(str(item))
        return "".join(parts)
    return str(content or "")


class LangChainLLMClient:
    """``ChatOpenAI``-backed client; models are created lazily per (model, temperature)."""

    def __init__(self):
        self._models: Dict[Tuple[str, float], Any] = {}

    async def complete(
        self,
        *,
        stage: StageName,
        model: str,
        temperature: float,
        messages: PromptMessages,
    ) -> Completion:
        chat_model = self._get_model(model, temperature)
        response = await chat_model.ainvoke(list(messages))
        text = content_text(getattr(response, "content", "")).strip()
        return Completion(text=text, usage=build_usage_record(stage, model, self._usage_of(response)))

    async def stream(
        self,
        *,
        stage: StageName,
        model: str,
        temperature: float,
        messages: PromptMessages,
        on_usage: UsageCallback,
    ) -> AsyncIterator[str]:
        chat_model = self._get_model(model, temperature)
        usage: Optional[Dict[str, Any]] = None
        async for chunk in chat_model.astream(list(messages)):
            chunk_usage = self._usage_of(chunk)
            if chunk_usage:
                usage = chunk_usage
            text = content_text(getattr(chunk, "content", ""))
            if text:
                yield text
        on_usage(build_usage_record(stage, model, usage))

    def _usage_of(self, message: Any) -> Optional[Dict[str, Any]]:
        usage = getattr(message, "usage_metadata", None)
        if usage:
            return dict(usage)
        metadata = getattr(message, "response_metadata", None) or {}
        token_usage = metadata.get("token_usage") if isinstance(metadata, dict) else None
        return dict(token_usage) if token_usage else None

    def _get_model(self, model: str, temperature: float):
        key = (model, temperature)
        if key in self._models:
            return self._models[key]

        from langchain_openai import ChatOpenAI

        self._models[key] = ChatOpenAI(model=model, temperature=temperature, stream_usage=True)
        return self._models[key]
