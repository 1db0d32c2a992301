"""Service adapter that maps API requests onto streamed pipeline turns."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Mapping

from dotenv import load_dotenv

from src.chat.core.config import ChatConfig
from src.chat.core.debug_log import DebugLogBuffer
from src.chat.core.orchestrator import PipelineOrchestrator
from src.chat.core.types import ChatMessage, ConversationTurn
from src.chat.protocol.channel import FrameChannel
from src.chat.protocol.frames import encode_sse
from src.chat.protocol.strategies import TurnStrategy, build_turn_strategy

from .schemas import ChatRequest, HealthResponse


logger = logging.getLogger(__name__)


class InvalidChatRequest(ValueError):
    pass


class ChatAPIService:
    """Thin service to keep FastAPI handlers small and testable."""

    def __init__(
        self,
        config: ChatConfig | None = None,
        *,
        strategy: TurnStrategy | None = None,
        debug_log: DebugLogBuffer | None = None,
    ):
        load_dotenv()
        self.config = config or ChatConfig.from_env()
        self.debug_log = debug_log if debug_log is not None else DebugLogBuffer.from_config(self.config)
        self.rate_limiter_backend = "unknown"
        if strategy is None:
            orchestrator = PipelineOrchestrator.from_config(self.config, debug_log=self.debug_log)
            self.rate_limiter_backend = orchestrator.budget_gate.rate_limiter.backend
            strategy = build_turn_strategy(self.config, orchestrator)
        self.strategy = strategy

    def health(self) -> HealthResponse:
        return HealthResponse(
            status="ok",
            environment=self.config.app_env,
            rate_limiter=self.rate_limiter_backend,
            cost_budget_enabled=self.config.cost_budget_usd > 0,
            fixtures_enabled=self.config.fixtures_enabled,
        )

    def build_turn(self, payload: ChatRequest) -> ConversationTurn:
        conversation_id = (payload.conversation_id or "").strip()
        anchor_id = (payload.response_anchor_id or "").strip()
        if not conversation_id:
            raise InvalidChatRequest("Missing conversationId.")
        if not anchor_id:
            raise InvalidChatRequest("Missing responseAnchorId.")
        if not payload.messages:
            raise InvalidChatRequest("At least one message is required.")
        if payload.messages[-1].role != "user" or not payload.messages[-1].content.strip():
            raise InvalidChatRequest("The last message must be a non-empty user message.")
        return ConversationTurn(
            conversation_id=conversation_id,
            anchor_id=anchor_id,
            messages=[ChatMessage(role=message.role, content=message.content) for message in payload.messages],
            reasoning_enabled=payload.reasoning_enabled,
            app_id=self.config.app_id,
        )

    async def stream_turn(
        self,
        turn: ConversationTurn,
        *,
        client_key: str,
        headers: Mapping[str, str],
    ) -> AsyncIterator[str]:
        channel = FrameChannel(turn.anchor_id)
        runner = self.strategy.select(headers)
        task = asyncio.create_task(runner.run(turn, channel, client_key=client_key))

        def _on_done(finished: asyncio.Task) -> None:
            channel.close()
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(
                    "Turn task failed for anchor_id=%s",
                    turn.anchor_id,
                    exc_info=finished.exception(),
                )

        task.add_done_callback(_on_done)
        try:
            async for frame in channel:
                yield encode_sse(frame)
        finally:
            if channel.done and not task.done():
                # The turn is complete; let the runner finish its bookkeeping.
                await asyncio.wait({task})
            elif not task.done():
                channel.close()
                task.cancel()
                self.debug_log.log(
                    "turn.cancelled",
                    {"framesEmitted": channel.emitted},
                    correlation_id=turn.anchor_id,
                    conversation_id=turn.conversation_id,
                )

    def debug_entries(self, limit: int | None = None) -> list[dict]:
        return self.debug_log.entries(limit)
