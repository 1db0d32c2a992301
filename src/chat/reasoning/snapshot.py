"""Fold a frame stream into a displayable turn snapshot."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..core.trace_types import ReasoningError, ReasoningTrace
from ..core.types import StageRecord, UiHints
from ..protocol.frames import (
    DoneFrame,
    Frame,
    ItemFrame,
    ReasoningFrame,
    StageFrame,
    TokenFrame,
    UiActionsFrame,
    UiFrame,
)
from .merge import merge_reasoning_traces


@dataclass
class TurnSnapshot:
    item_id: Optional[str] = None
    anchor_id: Optional[str] = None
    text: str = ""
    ui: UiHints = field(default_factory=UiHints)
    actions: List[Dict[str, Any]] = field(default_factory=list)
    stages: Dict[str, StageRecord] = field(default_factory=dict)
    trace: Optional[ReasoningTrace] = None
    done: bool = False
    frame_count: int = 0

    @property
    def error(self) -> Optional[ReasoningError]:
        return self.trace.error if self.trace is not None else None

    @property
    def succeeded(self) -> bool:
        return self.done and self.error is None and bool(self.text)

    def apply(self, frame: Frame) -> "TurnSnapshot":
        self.frame_count += 1
        match frame:
            case ItemFrame():
                self.item_id = frame.item_id
                self.anchor_id = frame.anchor_id
            case StageFrame():
                self.stages[frame.stage] = StageRecord(
                    stage=frame.stage,
                    status=frame.status,
                    meta=dict(frame.meta or {}),
                    duration_ms=frame.duration_ms,
                )
            case TokenFrame():
                self.text += frame.delta
            case UiFrame():
                self.ui = frame.ui
            case ReasoningFrame():
                self.trace = merge_reasoning_traces(self.trace, frame.trace)
            case UiActionsFrame():
                self.actions = list(frame.actions)
            case DoneFrame():
                self.done = True
        return self


def fold_reasoning(frames: Iterable[Frame], existing: Optional[ReasoningTrace] = None) -> Optional[ReasoningTrace]:
    trace = existing
    for frame in frames:
        if isinstance(frame, ReasoningFrame):
            trace = merge_reasoning_traces(trace, frame.trace)
    return trace


def snapshot_from_frames(frames: Iterable[Frame]) -> TurnSnapshot:
    snapshot = TurnSnapshot()
    for frame in frames:
        snapshot.apply(frame)
    return snapshot
