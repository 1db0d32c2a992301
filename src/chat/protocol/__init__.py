"""Frame protocol: typed frames, the per-turn channel and turn strategies."""

from .channel import FrameChannel, ProtocolViolation
from .frames import (
    DoneFrame,
    Frame,
    ItemFrame,
    ReasoningFrame,
    StageFrame,
    TokenFrame,
    UiActionsFrame,
    UiFrame,
    encode_sse,
    frame_from_dict,
    frame_to_dict,
    frame_type,
    iter_sse_frames,
)
from .strategies import (
    FixtureGatedStrategy,
    FixtureTurnRunner,
    LiveTurnStrategy,
    build_turn_strategy,
    fixture_frames,
)

__all__ = [
    "DoneFrame",
    "FixtureGatedStrategy",
    "FixtureTurnRunner",
    "Frame",
    "FrameChannel",
    "ItemFrame",
    "LiveTurnStrategy",
    "ProtocolViolation",
    "ReasoningFrame",
    "StageFrame",
    "TokenFrame",
    "UiActionsFrame",
    "UiFrame",
    "build_turn_strategy",
    "encode_sse",
    "fixture_frames",
    "frame_from_dict",
    "frame_to_dict",
    "frame_type",
    "iter_sse_frames",
]
