"""Typed wire frames and their SSE encoding."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional, Union, assert_never

from ..core.trace_types import ReasoningTrace
from ..core.types import UiHints


FrameType = Literal["item", "stage", "token", "ui", "reasoning", "ui_actions", "done"]


@dataclass(frozen=True)
class ItemFrame:
    item_id: str
    anchor_id: str
    kind: str = "assistant"


@dataclass(frozen=True)
class StageFrame:
    item_id: str
    stage: str
    status: str
    meta: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None


@dataclass(frozen=True)
class TokenFrame:
    item_id: str
    delta: str


@dataclass(frozen=True)
class UiFrame:
    item_id: str
    ui: UiHints = field(default_factory=UiHints)


@dataclass(frozen=True)
class ReasoningFrame:
    item_id: str
    stage: str
    trace: ReasoningTrace = field(default_factory=ReasoningTrace)


@dataclass(frozen=True)
class UiActionsFrame:
    item_id: str
    actions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class DoneFrame:
    anchor_id: Optional[str] = None
    total_duration_ms: Optional[float] = None


Frame = Union[ItemFrame, StageFrame, TokenFrame, UiFrame, ReasoningFrame, UiActionsFrame, DoneFrame]


_FRAME_TYPES: Dict[type, FrameType] = {
    ItemFrame: "item",
    StageFrame: "stage",
    TokenFrame: "token",
    UiFrame: "ui",
    ReasoningFrame: "reasoning",
    UiActionsFrame: "ui_actions",
    DoneFrame: "done",
}


def frame_type(frame: Frame) -> FrameType:
    return _FRAME_TYPES[type(frame)]


def frame_to_dict(frame: Frame) -> Dict[str, Any]:
    match frame:
        case ItemFrame(item_id=item_id, anchor_id=anchor_id, kind=kind):
            return {"type": "item", "itemId": item_id, "anchorId": anchor_id, "kind": kind}
        case StageFrame():
            payload: Dict[str, Any] = {
                "type": "stage",
                "itemId": frame.item_id,
                "stage": frame.stage,
                "status": frame.status,
            }
            if frame.meta is not None:
                payload["meta"] = frame.meta
            if frame.duration_ms is not None:
                payload["durationMs"] = frame.duration_ms
            return payload
        case TokenFrame(item_id=item_id, delta=delta):
            return {"type": "token", "itemId": item_id, "delta": delta}
        case UiFrame(item_id=item_id, ui=ui):
            return {
                "type": "ui",
                "itemId": item_id,
                "ui": {"showProjects": list(ui.show_projects), "showExperiences": list(ui.show_experiences)},
            }
        case ReasoningFrame(item_id=item_id, stage=stage, trace=trace):
            return {"type": "reasoning", "itemId": item_id, "stage": stage, "trace": trace.to_dict()}
        case UiActionsFrame(item_id=item_id, actions=actions):
            return {"type": "ui_actions", "itemId": item_id, "actions": list(actions)}
        case DoneFrame(anchor_id=anchor_id, total_duration_ms=total_duration_ms):
            payload = {"type": "done"}
            if anchor_id is not None:
                payload["anchorId"] = anchor_id
            if total_duration_ms is not None:
                payload["totalDurationMs"] = total_duration_ms
            return payload
        case _:
            assert_never(frame)


def frame_from_dict(data: Dict[str, Any]) -> Frame:
    kind = data.get("type")
    match kind:
        case "item":
            return ItemFrame(item_id=data["itemId"], anchor_id=data.get("anchorId", data["itemId"]), kind=data.get("kind", "assistant"))
        case "stage":
            return StageFrame(
                item_id=data["itemId"],
                stage=data["stage"],
                status=data["status"],
                meta=data.get("meta"),
                duration_ms=data.get("durationMs"),
            )
        case "token":
            return TokenFrame(item_id=data["itemId"], delta=str(data.get("delta", "")))
        case "ui":
            ui = data.get("ui") or {}
            return UiFrame(
                item_id=data["itemId"],
                ui=UiHints(
                    show_projects=list(ui.get("showProjects") or []),
                    show_experiences=list(ui.get("showExperiences") or []),
                ),
            )
        case "reasoning":
            return ReasoningFrame(
                item_id=data["itemId"],
                stage=data.get("stage", ""),
                trace=ReasoningTrace.from_dict(data.get("trace")),
            )
        case "ui_actions":
            return UiActionsFrame(item_id=data["itemId"], actions=list(data.get("actions") or []))
        case "done":
            return DoneFrame(anchor_id=data.get("anchorId"), total_duration_ms=data.get("totalDurationMs"))
        case _:
            raise ValueError(f"Unknown frame type: {kind!r}")


def encode_sse(frame: Frame) -> str:
    payload = frame_to_dict(frame)
    return f"event: {payload['type']}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"


def iter_sse_frames(lines: Iterable[str]) -> Iterator[Frame]:
    """Parse an SSE line stream (as produced by ``encode_sse``) back into frames."""
    data_lines: List[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if data_lines:
                yield frame_from_dict(json.loads("\n".join(data_lines)))
                data_lines = []
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if data_lines:
        yield frame_from_dict(json.loads("\n".join(data_lines)))
