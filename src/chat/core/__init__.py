"""Core pipeline contracts, configuration and the debug log buffer."""

from .config import ChatConfig
from .debug_log import DebugLogBuffer
from .trace_types import ReasoningError, ReasoningTrace, StreamingChunk
from .types import (
    BudgetDecision,
    ChatMessage,
    ConversationTurn,
    PlanQuery,
    RetrievalOutcome,
    RetrievalPlan,
    StageRecord,
    TurnResult,
    UiHints,
    UsageRecord,
)

__all__ = [
    "BudgetDecision",
    "ChatConfig",
    "ChatMessage",
    "ConversationTurn",
    "DebugLogBuffer",
    "PlanQuery",
    "ReasoningError",
    "ReasoningTrace",
    "RetrievalOutcome",
    "RetrievalPlan",
    "StageRecord",
    "StreamingChunk",
    "TurnResult",
    "UiHints",
    "UsageRecord",
]
