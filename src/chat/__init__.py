from .core.config import ChatConfig
from .core.debug_log import DebugLogBuffer
from .core.orchestrator import PipelineOrchestrator, StageFailure
from .core.types import (
    BudgetDecision,
    ChatMessage,
    ConversationTurn,
    PlanQuery,
    RetrievalOutcome,
    RetrievalPlan,
    TurnResult,
    UsageRecord,
)
from .budget.gate import BudgetGate
from .planner.service import ChatPlanner
from .protocol.channel import FrameChannel, ProtocolViolation
from .reasoning.merge import merge_reasoning_traces
from .retrieval.engine import RetrievalEngine

__all__ = [
    "BudgetDecision",
    "BudgetGate",
    "ChatConfig",
    "ChatMessage",
    "ChatPlanner",
    "ConversationTurn",
    "DebugLogBuffer",
    "FrameChannel",
    "PipelineOrchestrator",
    "PlanQuery",
    "ProtocolViolation",
    "RetrievalEngine",
    "RetrievalOutcome",
    "RetrievalPlan",
    "StageFailure",
    "TurnResult",
    "UsageRecord",
    "merge_reasoning_traces",
]
