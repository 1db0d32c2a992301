"""Reasoning trace builders used by pipeline orchestration."""

from typing import Any, Dict, Optional, Sequence

from .trace_types import ReasoningError, ReasoningTrace, StreamingChunk
from .types import BudgetDecision, RetrievalOutcome, RetrievalPlan, UiHints, UsageRecord


BUDGET_STAGE = "budget"
MODERATION_STAGE = "moderation"


def build_plan_trace(
    plan: RetrievalPlan,
    *,
    duration_ms: float,
    usage: UsageRecord,
    debug: Optional[Dict[str, Any]] = None,
) -> ReasoningTrace:
    payload = plan.to_dict()
    payload["durationMs"] = duration_ms
    payload["usage"] = usage.to_dict()
    return ReasoningTrace(plan=payload, debug=debug)


def build_retrieval_trace(
    outcomes: Sequence[RetrievalOutcome],
    *,
    debug: Optional[Dict[str, Any]] = None,
) -> ReasoningTrace:
    return ReasoningTrace(retrieval=[outcome.summary() for outcome in outcomes], debug=debug)


def build_answer_trace(
    *,
    model: str,
    duration_ms: float,
    token_count: int,
    ui: UiHints,
    usage: Optional[UsageRecord],
    debug: Optional[Dict[str, Any]] = None,
) -> ReasoningTrace:
    payload: Dict[str, Any] = {
        "model": model,
        "durationMs": duration_ms,
        "tokenCount": token_count,
        "cards": {"projects": len(ui.show_projects), "experiences": len(ui.show_experiences)},
    }
    if usage is not None:
        payload["usage"] = usage.to_dict()
    return ReasoningTrace(answer=payload, debug=debug)


def build_stream_trace(
    stage: str,
    *,
    seq: int,
    text: Optional[str] = None,
    notes: Optional[str] = None,
    progress: Optional[float] = None,
) -> ReasoningTrace:
    return ReasoningTrace(streaming={stage: StreamingChunk(text=text, notes=notes, progress=progress, seq=seq)})


def build_error_trace(
    stage: Optional[str],
    message: str,
    *,
    code: Optional[str] = None,
    retryable: Optional[bool] = None,
) -> ReasoningTrace:
    return ReasoningTrace(error=ReasoningError(message=message, stage=stage, code=code, retryable=retryable))


def build_budget_error_trace(decision: BudgetDecision) -> ReasoningTrace:
    if decision.cost_exceeded:
        return build_error_trace(
            BUDGET_STAGE,
            "The assistant has reached its monthly usage budget. Please try again later.",
            code="budget_exceeded",
            retryable=False,
        )
    return build_error_trace(
        BUDGET_STAGE,
        f"Rate limit reached ({decision.reason}). Please wait before sending another message.",
        code="rate_limited",
        retryable=True,
    )


def build_moderation_trace(message: str, *, code: str) -> ReasoningTrace:
    return build_error_trace(MODERATION_STAGE, message, code=code, retryable=False)
