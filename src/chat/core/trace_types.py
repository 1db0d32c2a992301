"""Reasoning trace shapes shared by the orchestrator, frames and the reconciler."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ReasoningError:
    message: str
    stage: Optional[str] = None
    code: Optional[str] = None
    retryable: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.stage is not None:
            payload["stage"] = self.stage
        if self.code is not None:
            payload["code"] = self.code
        if self.retryable is not None:
            payload["retryable"] = self.retryable
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReasoningError":
        return cls(
            message=str(data.get("message", "")),
            stage=data.get("stage"),
            code=data.get("code"),
            retryable=data.get("retryable"),
        )


@dataclass
class StreamingChunk:
    text: Optional[str] = None
    notes: Optional[str] = None
    progress: Optional[float] = None
    seq: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"text": self.text, "notes": self.notes, "progress": self.progress, "seq": self.seq}
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StreamingChunk":
        return cls(
            text=data.get("text"),
            notes=data.get("notes"),
            progress=data.get("progress"),
            seq=data.get("seq"),
        )


@dataclass
class ReasoningTrace:
    """Partial-tolerant snapshot of one turn; every field may be absent."""

    plan: Optional[Dict[str, Any]] = None
    retrieval: Optional[List[Dict[str, Any]]] = None
    answer: Optional[Dict[str, Any]] = None
    error: Optional[ReasoningError] = None
    debug: Optional[Dict[str, Any]] = None
    streaming: Optional[Dict[str, StreamingChunk]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.plan is not None:
            payload["plan"] = self.plan
        if self.retrieval is not None:
            payload["retrieval"] = self.retrieval
        if self.answer is not None:
            payload["answer"] = self.answer
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.debug is not None:
            payload["debug"] = self.debug
        if self.streaming is not None:
            payload["streaming"] = {stage: chunk.to_dict() for stage, chunk in self.streaming.items()}
        return payload

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReasoningTrace":
        data = data or {}
        error = data.get("error")
        streaming = data.get("streaming")
        return cls(
            plan=data.get("plan"),
            retrieval=data.get("retrieval"),
            answer=data.get("answer"),
            error=ReasoningError.from_dict(error) if isinstance(error, dict) else None,
            debug=data.get("debug"),
            streaming=(
                {stage: StreamingChunk.from_dict(chunk or {}) for stage, chunk in streaming.items()}
                if isinstance(streaming, dict)
                else None
            ),
        )
