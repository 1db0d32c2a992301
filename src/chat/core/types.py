"""Shared dataclasses and literals for planner, retrieval, answer and budget contracts."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


StageName = Literal["planner", "retrieval", "answer"]
StageStatus = Literal["start", "complete", "error"]
PipelineStateName = Literal[
    "idle",
    "planner_running",
    "retrieval_running",
    "answer_running",
    "error",
    "done",
]
ChatRole = Literal["user", "assistant"]
CostLevel = Literal["ok", "warning", "critical", "exceeded"]


@dataclass
class ChatMessage:
    role: ChatRole
    content: str


@dataclass
class ConversationTurn:
    conversation_id: str
    anchor_id: str
    messages: List[ChatMessage]
    reasoning_enabled: bool = False
    app_id: str = "portfolio"

    def latest_user_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""


@dataclass
class PlanQuery:
    source: str
    text: str
    top_k: Optional[int] = None
    limit: Optional[int] = None

    @property
    def requested_top_k(self) -> Optional[int]:
        if self.top_k is not None:
            return self.top_k
        return self.limit


@dataclass
class RetrievalPlan:
    queries: List[PlanQuery] = field(default_factory=list)
    cards_enabled: bool = True
    topic: Optional[str] = None
    thoughts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queries": [
                {
                    "source": query.source,
                    "text": query.text,
                    "topK": query.requested_top_k,
                }
                for query in self.queries
            ],
            "cardsEnabled": self.cards_enabled,
            "topic": self.topic,
            "thoughts": list(self.thoughts),
        }


@dataclass
class RetrievalOutcome:
    source: str
    query_text: str
    requested_top_k: Optional[int]
    effective_top_k: int
    num_results: int = 0
    documents: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Trace-safe view: counts and query metadata, never the documents."""
        payload: Dict[str, Any] = {
            "source": self.source,
            "queryText": self.query_text,
            "requestedTopK": self.requested_top_k,
            "effectiveTopK": self.effective_top_k,
            "numResults": self.num_results,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class StageRecord:
    stage: StageName
    status: StageStatus
    meta: Dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[float] = None


@dataclass
class UsageRecord:
    stage: StageName
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "costUsd": self.cost_usd,
        }


@dataclass
class RateLimitResult:
    rule: str
    success: bool
    limit: int
    remaining: int
    reset: float


@dataclass
class BudgetDecision:
    success: bool
    reason: Optional[str] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[float] = None
    rules: List[RateLimitResult] = field(default_factory=list)
    cost_exceeded: bool = False


@dataclass
class CostState:
    app_id: str
    month_key: str
    spend_usd: float
    budget_usd: float
    level: CostLevel

    @property
    def percent_used(self) -> float:
        if self.budget_usd <= 0:
            return 0.0
        return (self.spend_usd / self.budget_usd) * 100


@dataclass
class UiHints:
    show_projects: List[str] = field(default_factory=list)
    show_experiences: List[str] = field(default_factory=list)


@dataclass
class TurnResult:
    state: PipelineStateName
    answer: str = ""
    ui: UiHints = field(default_factory=UiHints)
    usage: List[UsageRecord] = field(default_factory=list)
    state_history: List[str] = field(default_factory=list)
    trace: Any = None
    budget: Optional[BudgetDecision] = None
    cost: Optional[CostState] = None

    @property
    def total_cost_usd(self) -> float:
        return round(sum(record.cost_usd or 0.0 for record in self.usage), 6)
