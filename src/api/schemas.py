"""Request/response models for the FastAPI layer."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(default=None, alias="conversationId")
    response_anchor_id: str | None = Field(default=None, alias="responseAnchorId")
    messages: list[ChatMessageIn] = Field(default_factory=list)
    reasoning_enabled: bool = Field(default=False, alias="reasoningEnabled")


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    environment: str
    rate_limiter: str
    cost_budget_enabled: bool
    fixtures_enabled: bool


class DebugLogsResponse(BaseModel):
    count: int
    entries: list[dict[str, Any]]
