"""Planner stage: turns the conversation into a retrieval plan via one structured LLM call."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from langsmith.run_helpers import traceable
from pydantic import BaseModel, ConfigDict, Field

from ..core.config import ChatConfig
from ..core.types import ConversationTurn, PlanQuery, RetrievalPlan, UsageRecord
from ..llm.client import LLMClient, UsageCallback
from ..prompts import planner as planner_prompts
from ..prompts.conversation import format_conversation


class PlannerQueryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str
    text: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    limit: Optional[int] = None


class PlannerOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    queries: List[PlannerQueryModel] = Field(default_factory=list)
    cards_enabled: bool = Field(default=True, alias="cardsEnabled")
    topic: Optional[str] = None
    thoughts: List[str] = Field(default_factory=list)


@dataclass
class PlannerResult:
    plan: RetrievalPlan
    usage: UsageRecord
    prompt: List[Tuple[str, str]]
    raw: str


class ChatPlanner:
    """Builds a RetrievalPlan for the latest user message."""

    def __init__(self, config: ChatConfig, llm_client: LLMClient, sources: Sequence[str]):
        self.config = config
        self.llm_client = llm_client
        self.sources = list(sources)

    @traceable(name="planner.build_plan", run_type="chain")
    async def build_plan(self, turn: ConversationTurn, on_usage: Optional[UsageCallback] = None) -> PlannerResult:
        """Plan retrieval for the latest message.

        ``on_usage`` fires as soon as the LLM call returns, before parsing, so a
        plan that fails to parse still has its cost accounted.
        """
        latest_message = turn.latest_user_text().strip()
        prompt = planner_prompts.build_planner_prompt(
            sources=self.sources,
            conversation=format_conversation(turn.messages[:-1], self.config.chat_history_limit),
            latest_message=latest_message,
        )
        completion = await self.llm_client.complete(
            stage="planner",
            model=self.config.planner_model,
            temperature=self.config.planner_temperature,
            messages=prompt,
        )
        if on_usage is not None:
            on_usage(completion.usage)
        output = PlannerOutput.model_validate(self._parse_json(completion.text))
        queries = [
            PlanQuery(
                source=query.source.strip(),
                text=query.text.strip() or latest_message,
                top_k=query.top_k,
                limit=query.limit,
            )
            for query in output.queries
            if query.source.strip()
        ]
        plan = RetrievalPlan(
            queries=queries,
            cards_enabled=output.cards_enabled,
            topic=(output.topic or "").strip() or None,
            thoughts=[thought for thought in output.thoughts if thought],
        )
        return PlannerResult(plan=plan, usage=completion.usage, prompt=list(prompt), raw=completion.text)

    def _parse_json(self, raw_text: str) -> Dict[str, Any]:
        raw = raw_text.strip()
        if raw.startswith("```"):
            raw = raw.strip("`")
            raw = raw.removeprefix("json").strip()
        if not raw:
            raise RuntimeError("Planner LLM returned an empty response.")
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise RuntimeError("Planner LLM returned a non-object plan.")
        return parsed
