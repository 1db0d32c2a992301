"""Answer stage: UI card selection, context assembly and streamed generation."""

import json
from typing import Any, AsyncIterator, Dict, List, Sequence, Tuple

from ..core.config import ChatConfig
from ..core.types import ConversationTurn, RetrievalOutcome, UiHints
from ..llm.client import LLMClient, UsageCallback
from ..prompts import answer as answer_prompts
from ..prompts.conversation import format_conversation


PROJECT_SOURCES = frozenset({"projects", "project"})
EXPERIENCE_SOURCES = frozenset({"resume", "experience", "experiences"})
MAX_CONTEXT_DOCUMENTS = 12


def select_ui_hints(outcomes: Sequence[RetrievalOutcome], *, cards_enabled: bool, max_cards: int) -> UiHints:
    hints = UiHints()
    if not cards_enabled:
        return hints
    for outcome in outcomes:
        if outcome.source in PROJECT_SOURCES:
            target = hints.show_projects
        elif outcome.source in EXPERIENCE_SOURCES:
            target = hints.show_experiences
        else:
            continue
        for document in outcome.documents:
            doc_id = document.get("id")
            if doc_id is None or len(target) >= max_cards:
                continue
            doc_id = str(doc_id)
            if doc_id not in target:
                target.append(doc_id)
    return hints


def build_documents_context(outcomes: Sequence[RetrievalOutcome]) -> List[Dict[str, Any]]:
    documents: List[Dict[str, Any]] = []
    for outcome in outcomes:
        for document in outcome.documents:
            documents.append({"source": outcome.source, **document})
    return documents[:MAX_CONTEXT_DOCUMENTS]


class AnswerComposer:
    def __init__(self, config: ChatConfig, llm_client: LLMClient):
        self.config = config
        self.llm_client = llm_client

    def build_prompt(self, turn: ConversationTurn, outcomes: Sequence[RetrievalOutcome]) -> List[Tuple[str, str]]:
        return answer_prompts.build_answer_prompt(
            conversation=format_conversation(turn.messages, self.config.chat_history_limit),
            documents_json=json.dumps(build_documents_context(outcomes), default=str),
        )

    async def stream(self, prompt: Sequence[Tuple[str, str]], on_usage: UsageCallback) -> AsyncIterator[str]:
        async for delta in self.llm_client.stream(
            stage="answer",
            model=self.config.answer_model,
            temperature=self.config.answer_temperature,
            messages=prompt,
            on_usage=on_usage,
        ):
            yield delta
