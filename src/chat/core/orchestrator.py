"""Pipeline state machine driving planner, retrieval and answer stages for one turn."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from langsmith.run_helpers import traceable

from ..answer.service import AnswerComposer, select_ui_hints
from ..budget.cost_ledger import CostLedgerError
from ..budget.gate import COST_CEILING_REASON, BudgetGate
from ..llm.client import LangChainLLMClient, LLMClient
from ..llm.moderation import Moderator, OpenAIModerator
from ..planner.service import ChatPlanner
from ..protocol.channel import FrameChannel, ProtocolViolation
from ..protocol.frames import DoneFrame, ItemFrame, ReasoningFrame, StageFrame, TokenFrame, UiActionsFrame, UiFrame
from ..reasoning.merge import infer_error_stage, merge_reasoning_traces
from ..retrieval.engine import CorpusSearcher, RetrievalEngine
from ..retrieval.lexical import load_corpus_searchers
from .config import ChatConfig
from .debug_log import BoundDebugLog, DebugLogBuffer
from .trace_types import ReasoningTrace
from .tracing import (
    BUDGET_STAGE,
    MODERATION_STAGE,
    build_answer_trace,
    build_budget_error_trace,
    build_error_trace,
    build_moderation_trace,
    build_plan_trace,
    build_retrieval_trace,
    build_stream_trace,
)
from .types import (
    BudgetDecision,
    ConversationTurn,
    CostState,
    PipelineStateName,
    RetrievalOutcome,
    RetrievalPlan,
    StageName,
    TurnResult,
    UiHints,
    UsageRecord,
)


logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[PipelineStateName, FrozenSet[PipelineStateName]] = {
    "idle": frozenset({"planner_running", "error", "done"}),
    "planner_running": frozenset({"retrieval_running", "answer_running", "error"}),
    "retrieval_running": frozenset({"answer_running", "error"}),
    "answer_running": frozenset({"done", "error"}),
    "error": frozenset({"done"}),
    "done": frozenset(),
}

_FAILURE_MESSAGES: Dict[str, str] = {
    "planner": "I hit a planning issue. Please try again.",
    "retrieval": "I couldn't search my notes just now. Please try again.",
    "answer": "I ran into a problem while writing the answer. Please try again.",
    MODERATION_STAGE: "I couldn't check that message just now. Please try again.",
}
_DEFAULT_FAILURE_MESSAGE = "Something went wrong while answering. Please try again."


class StageFailure(RuntimeError):
    def __init__(
        self,
        stage: Optional[str],
        message: str,
        *,
        code: str = "stage_failed",
        retryable: bool = True,
        public_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.code = code
        self.retryable = retryable
        self.public_message = public_message


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@dataclass
class RunContext:
    turn: ConversationTurn
    channel: FrameChannel
    log: BoundDebugLog
    state: PipelineStateName = "idle"
    state_history: List[str] = field(default_factory=lambda: ["idle"])
    trace: Optional[ReasoningTrace] = None
    usage: List[UsageRecord] = field(default_factory=list)
    plan: Optional[RetrievalPlan] = None
    outcomes: List[RetrievalOutcome] = field(default_factory=list)
    ui: UiHints = field(default_factory=UiHints)
    answer: str = ""
    token_count: int = 0
    stream_seq: Dict[str, int] = field(default_factory=dict)

    @property
    def item_id(self) -> str:
        return self.turn.anchor_id


class PipelineOrchestrator:
    """State-machine orchestrator that runs one turn and writes its frames to a channel.

    idle -> planner_running -> [retrieval_running] -> answer_running -> done,
    with error reachable from any running state and always followed by done.
    """

    def __init__(
        self,
        config: ChatConfig,
        *,
        budget_gate: BudgetGate,
        retrieval_engine: RetrievalEngine,
        llm_client: LLMClient,
        debug_log: DebugLogBuffer,
        planner: Optional[ChatPlanner] = None,
        composer: Optional[AnswerComposer] = None,
        moderator: Optional[Moderator] = None,
    ):
        self.config = config
        self.budget_gate = budget_gate
        self.retrieval_engine = retrieval_engine
        self.debug_log = debug_log
        self.planner = planner or ChatPlanner(config, llm_client, retrieval_engine.sources)
        self.composer = composer or AnswerComposer(config, llm_client)
        self.moderator = moderator if moderator is not None else OpenAIModerator()
        self.include_debug = not config.is_production

    @classmethod
    def from_config(
        cls,
        config: ChatConfig,
        *,
        debug_log: DebugLogBuffer,
        llm_client: Optional[LLMClient] = None,
        searchers: Optional[Mapping[str, CorpusSearcher]] = None,
        budget_gate: Optional[BudgetGate] = None,
        moderator: Optional[Moderator] = None,
    ) -> "PipelineOrchestrator":
        if searchers is None:
            searchers = load_corpus_searchers(config.corpus_dir, config.sources)
        return cls(
            config,
            budget_gate=budget_gate or BudgetGate.from_config(config),
            retrieval_engine=RetrievalEngine.from_config(config, searchers),
            llm_client=llm_client or LangChainLLMClient(),
            debug_log=debug_log,
            moderator=moderator,
        )

    @traceable(name="pipeline.run", run_type="chain")
    async def run(self, turn: ConversationTurn, channel: FrameChannel, *, client_key: str) -> TurnResult:
        ctx = RunContext(
            turn=turn,
            channel=channel,
            log=self.debug_log.bind(correlation_id=turn.anchor_id, conversation_id=turn.conversation_id),
        )
        started = time.perf_counter()
        budget: Optional[BudgetDecision] = None
        cost: Optional[CostState] = None
        ctx.log.log("turn.start", {"messages": len(turn.messages), "reasoningEnabled": turn.reasoning_enabled})
        channel.emit(ItemFrame(item_id=ctx.item_id, anchor_id=turn.anchor_id, kind="assistant"))

        try:
            budget = await self.budget_gate.check_budget(client_key, turn.app_id)
            if not budget.success:
                ctx.log.log("budget.rejected", {"reason": budget.reason, "reset": budget.reset})
                self._emit_reasoning(ctx, BUDGET_STAGE, build_budget_error_trace(budget), force=True)
            elif await self._input_allowed(ctx):
                await self._run_pipeline(ctx)
        except ProtocolViolation:
            raise
        except StageFailure as exc:
            self._fail(ctx, exc)
        except Exception as exc:
            logger.exception("Unexpected pipeline failure for anchor_id=%s", turn.anchor_id)
            stage = infer_error_stage(ctx.trace if ctx.trace is not None else ReasoningTrace())
            self._fail(ctx, StageFailure(stage, str(exc) or type(exc).__name__))
        finally:
            cost = await self._record_usage(ctx)

        if cost is not None and cost.level == "exceeded":
            self._budget_exhausted(ctx, cost)

        self._transition(ctx, "done")
        total_ms = _elapsed_ms(started)
        channel.emit(DoneFrame(anchor_id=turn.anchor_id, total_duration_ms=total_ms))
        ctx.log.log("turn.done", {"state_history": ctx.state_history, "totalDurationMs": total_ms})
        return TurnResult(
            state=ctx.state,
            answer=ctx.answer,
            ui=ctx.ui,
            usage=list(ctx.usage),
            state_history=list(ctx.state_history),
            trace=ctx.trace,
            budget=budget,
            cost=cost,
        )

    async def _input_allowed(self, ctx: RunContext) -> bool:
        if not self.config.input_moderation_enabled:
            return True
        text = ctx.turn.latest_user_text().strip()
        if not text:
            return True
        try:
            verdict = await self.moderator.moderate(model=self.config.moderation_model, text=text)
        except Exception as exc:
            raise StageFailure(
                MODERATION_STAGE,
                f"input moderation failed: {exc}",
                code="moderation_unavailable",
            ) from exc
        if not verdict.flagged:
            return True
        logger.info("Input moderation blocked anchor_id=%s categories=%s", ctx.turn.anchor_id, verdict.categories)
        ctx.log.log("moderation.blocked", {"target": "input", "categories": verdict.categories})
        self._emit_reasoning(
            ctx,
            MODERATION_STAGE,
            build_moderation_trace(self.config.moderation_refusal_message, code="input_moderated"),
            force=True,
        )
        return False

    async def _run_pipeline(self, ctx: RunContext) -> None:
        self._transition(ctx, "planner_running")
        result, duration_ms = await self._run_stage(
            ctx,
            "planner",
            self.planner.build_plan(ctx.turn, on_usage=ctx.usage.append),
            self.config.planner_timeout_seconds,
        )
        ctx.plan = result.plan
        self._complete_stage(
            ctx,
            "planner",
            duration_ms,
            {"topic": result.plan.topic, "queryCount": len(result.plan.queries)},
        )
        self._emit_reasoning(
            ctx,
            "planner",
            build_plan_trace(
                result.plan,
                duration_ms=duration_ms,
                usage=result.usage,
                debug=self._debug({"plannerPrompt": _prompt_dict(result.prompt), "plannerRawResponse": result.raw}),
            ),
        )

        if ctx.plan.queries:
            self._transition(ctx, "retrieval_running")
            outcomes, duration_ms = await self._run_stage(
                ctx,
                "retrieval",
                self.retrieval_engine.retrieve(ctx.plan, on_outcome=lambda index, outcome: self._note_outcome(ctx, outcome)),
                self.config.retrieval_timeout_seconds,
            )
            ctx.outcomes = outcomes
            self._complete_stage(
                ctx,
                "retrieval",
                duration_ms,
                {
                    "docsFound": sum(outcome.num_results for outcome in outcomes),
                    "sources": sorted({outcome.source for outcome in outcomes}),
                },
            )
            self._emit_reasoning(
                ctx,
                "retrieval",
                build_retrieval_trace(
                    outcomes,
                    debug=self._debug({"retrievalDocs": [outcome.documents for outcome in outcomes]}),
                ),
            )

        self._transition(ctx, "answer_running")
        _, duration_ms = await self._run_stage(
            ctx,
            "answer",
            self._compose_answer(ctx),
            self.config.answer_timeout_seconds,
        )
        self._complete_stage(ctx, "answer", duration_ms, {"tokenCount": ctx.token_count})

    async def _compose_answer(self, ctx: RunContext) -> None:
        started = time.perf_counter()
        cards_enabled = ctx.plan.cards_enabled if ctx.plan is not None else True
        ctx.ui = select_ui_hints(ctx.outcomes, cards_enabled=cards_enabled, max_cards=self.config.max_display_cards)
        ctx.channel.emit(UiFrame(item_id=ctx.item_id, ui=ctx.ui))

        prompt = self.composer.build_prompt(ctx.turn, ctx.outcomes)
        answer_usage: List[UsageRecord] = []

        def on_usage(usage: UsageRecord) -> None:
            ctx.usage.append(usage)
            answer_usage.append(usage)

        # Tokens are held back until the whole answer passes output moderation.
        buffered = self.config.output_moderation_enabled
        parts: List[str] = []
        async for delta in self.composer.stream(prompt, on_usage):
            parts.append(delta)
            ctx.token_count += 1
            if not buffered:
                self._emit_token(ctx, delta)
        answer = "".join(parts)
        if not answer.strip():
            raise RuntimeError("Answer model returned an empty response.")
        if buffered:
            await self._check_output(ctx, answer)
            for delta in parts:
                self._emit_token(ctx, delta)
        ctx.answer = answer

        self._emit_reasoning(
            ctx,
            "answer",
            build_answer_trace(
                model=self.config.answer_model,
                duration_ms=_elapsed_ms(started),
                token_count=ctx.token_count,
                ui=ctx.ui,
                usage=answer_usage[-1] if answer_usage else None,
                debug=self._debug({"answerPrompt": _prompt_dict(prompt), "answerRawResponse": ctx.answer}),
            ),
        )
        ctx.channel.emit(UiActionsFrame(item_id=ctx.item_id, actions=[]))

    def _emit_token(self, ctx: RunContext, delta: str) -> None:
        ctx.channel.emit(TokenFrame(item_id=ctx.item_id, delta=delta))
        if ctx.turn.reasoning_enabled:
            self._emit_stream(ctx, "answer", text=delta)

    async def _check_output(self, ctx: RunContext, answer: str) -> None:
        try:
            verdict = await self.moderator.moderate(model=self.config.moderation_model, text=answer)
        except Exception as exc:
            raise StageFailure("answer", f"output moderation failed: {exc}", code="moderation_unavailable") from exc
        if verdict.flagged:
            logger.info("Output moderation blocked anchor_id=%s categories=%s", ctx.turn.anchor_id, verdict.categories)
            ctx.log.log("moderation.blocked", {"target": "output", "categories": verdict.categories})
            raise StageFailure(
                "answer",
                "answer blocked by output moderation",
                code="output_moderated",
                retryable=False,
                public_message=self.config.moderation_refusal_message,
            )

    async def _run_stage(
        self,
        ctx: RunContext,
        stage: StageName,
        work: Awaitable[Any],
        timeout: float,
    ) -> Tuple[Any, float]:
        ctx.channel.emit(StageFrame(item_id=ctx.item_id, stage=stage, status="start"))
        ctx.log.log(f"{stage}.start")
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(work, timeout)
        except ProtocolViolation:
            raise
        except StageFailure as failure:
            self._stage_error(ctx, stage, started, failure)
            raise
        except TimeoutError as exc:
            failure = StageFailure(stage, f"{stage} stage timed out after {timeout}s", code="llm_timeout")
            self._stage_error(ctx, stage, started, failure)
            raise failure from exc
        except Exception as exc:
            failure = StageFailure(stage, str(exc) or type(exc).__name__)
            self._stage_error(ctx, stage, started, failure)
            raise failure from exc
        return result, _elapsed_ms(started)

    def _complete_stage(self, ctx: RunContext, stage: StageName, duration_ms: float, meta: Dict[str, Any]) -> None:
        ctx.channel.emit(
            StageFrame(item_id=ctx.item_id, stage=stage, status="complete", meta=meta, duration_ms=duration_ms)
        )
        ctx.log.log(f"{stage}.complete", {"durationMs": duration_ms, **meta})

    def _stage_error(self, ctx: RunContext, stage: StageName, started: float, failure: StageFailure) -> None:
        duration_ms = _elapsed_ms(started)
        logger.warning("Stage %s failed after %.1fms: %s", stage, duration_ms, failure)
        ctx.channel.emit(StageFrame(item_id=ctx.item_id, stage=stage, status="error", duration_ms=duration_ms))

    def _note_outcome(self, ctx: RunContext, outcome: RetrievalOutcome) -> None:
        if outcome.error:
            note = f"{outcome.source}: failed ({outcome.error})"
        else:
            note = f"{outcome.source}: {outcome.num_results} result(s) for {outcome.query_text!r}"
        total = len(ctx.plan.queries) if ctx.plan is not None else 0
        completed = ctx.stream_seq.get("retrieval", 0) + 1
        self._emit_stream(
            ctx,
            "retrieval",
            text=note + "\n",
            notes=note,
            progress=round(completed / total, 3) if total else None,
        )

    def _emit_stream(self, ctx: RunContext, stage: str, **chunk: Any) -> None:
        seq = ctx.stream_seq.get(stage, 0) + 1
        ctx.stream_seq[stage] = seq
        self._emit_reasoning(ctx, stage, build_stream_trace(stage, seq=seq, **chunk))

    def _emit_reasoning(self, ctx: RunContext, stage: str, trace: ReasoningTrace, *, force: bool = False) -> None:
        ctx.trace = merge_reasoning_traces(ctx.trace, trace)
        if ctx.turn.reasoning_enabled or force:
            ctx.channel.emit(ReasoningFrame(item_id=ctx.item_id, stage=stage, trace=trace))

    def _fail(self, ctx: RunContext, failure: StageFailure) -> None:
        self._transition(ctx, "error")
        ctx.log.log(
            f"{failure.stage or 'pipeline'}.error",
            {"message": str(failure), "code": failure.code, "retryable": failure.retryable},
        )
        trace = build_error_trace(
            failure.stage,
            failure.public_message or _FAILURE_MESSAGES.get(failure.stage or "", _DEFAULT_FAILURE_MESSAGE),
            code=failure.code,
            retryable=failure.retryable,
        )
        trace.debug = self._debug({"errorDetail": str(failure)})
        self._emit_reasoning(ctx, failure.stage or "pipeline", trace, force=True)

    def _transition(self, ctx: RunContext, target: PipelineStateName) -> None:
        if target not in _TRANSITIONS[ctx.state]:
            raise ProtocolViolation(f"illegal pipeline transition {ctx.state} -> {target}")
        ctx.log.log("pipeline.transition", {"from": ctx.state, "to": target})
        ctx.state = target
        ctx.state_history.append(target)

    async def _record_usage(self, ctx: RunContext) -> Optional[CostState]:
        state: Optional[CostState] = None
        for usage in ctx.usage:
            try:
                recorded = await self.budget_gate.record_usage(ctx.turn.app_id, usage)
            except CostLedgerError as exc:
                logger.warning("Failed to record %s usage for app_id=%s: %s", usage.stage, ctx.turn.app_id, exc)
                continue
            if recorded is not None:
                state = recorded
        if ctx.usage:
            ctx.log.log("usage.recorded", {"usage": [usage.to_dict() for usage in ctx.usage]})
        return state

    def _budget_exhausted(self, ctx: RunContext, cost: CostState) -> None:
        """This turn's spend crossed the monthly budget; later turns are refused up front."""
        ctx.log.log("budget.exhausted", {"spendUsd": cost.spend_usd, "budgetUsd": cost.budget_usd})
        if ctx.state != "error":
            self._transition(ctx, "error")
        decision = BudgetDecision(success=False, reason=COST_CEILING_REASON, cost_exceeded=True)
        self._emit_reasoning(ctx, BUDGET_STAGE, build_budget_error_trace(decision), force=True)

    def _debug(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return payload if self.include_debug else None


def _prompt_dict(prompt) -> Dict[str, str]:
    return {role: text for role, text in prompt}
