"""Content moderation for user input and composed answers."""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol


DEFAULT_MODERATION_MODEL = "omni-moderation-latest"


@dataclass
class ModerationResult:
    flagged: bool
    categories: List[str] = field(default_factory=list)


class Moderator(Protocol):
    async def moderate(self, *, model: str, text: str) -> ModerationResult:
        ...


def flagged_categories(results: Any) -> ModerationResult:
    """Collapse per-input moderation results into one verdict."""
    flagged = False
    categories: List[str] = []
    for result in results or []:
        if not getattr(result, "flagged", False):
            continue
        flagged = True
        raw = getattr(result, "categories", None)
        values = raw.model_dump() if hasattr(raw, "model_dump") else dict(raw or {})
        for name, value in values.items():
            if value and name not in categories:
                categories.append(name)
    return ModerationResult(flagged=flagged, categories=categories)


class OpenAIModerator:
    """Moderation endpoint client; the async OpenAI client is created on first use."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    async def moderate(self, *, model: str, text: str) -> ModerationResult:
        if not text.strip():
            return ModerationResult(flagged=False)
        response = await self._get_client().moderations.create(model=model, input=text)
        return flagged_categories(getattr(response, "results", None))

    def _get_client(self):
        if self._client is not None:
            return self._client

        from openai import AsyncOpenAI

        self._client = AsyncOpenAI()
        return self._client
