"""Turn strategies: live pipeline execution or deterministic fixture replay.

The strategy is chosen once at startup from configuration. Fixture replay is
only reachable when fixtures are explicitly enabled outside production.
"""

from typing import Any, List, Mapping, Optional, Protocol

from ..core.config import ChatConfig
from ..core.trace_types import ReasoningTrace
from ..core.types import ConversationTurn, UiHints
from .channel import FrameChannel
from .frames import (
    DoneFrame,
    Frame,
    ItemFrame,
    ReasoningFrame,
    StageFrame,
    TokenFrame,
    UiActionsFrame,
    UiFrame,
)


FIXTURE_ANSWER_TOKENS = (
    "This is a ",
    "deterministic ",
    "fixture answer ",
    "for end-to-end tests.",
)
FIXTURE_PROJECT_IDS = ("fixture-project",)


class TurnRunner(Protocol):
    async def run(self, turn: ConversationTurn, channel: FrameChannel, *, client_key: str) -> Any:
        ...


class TurnStrategy(Protocol):
    name: str

    def select(self, headers: Mapping[str, str]) -> TurnRunner:
        ...


def fixture_frames(turn: ConversationTurn) -> List[Frame]:
    item_id = turn.anchor_id
    plan = {
        "queries": [{"source": "projects", "text": "fixture", "topK": 3}],
        "cardsEnabled": True,
        "topic": "fixture",
        "thoughts": [],
    }
    frames: List[Frame] = [
        ItemFrame(item_id=item_id, anchor_id=turn.anchor_id, kind="assistant"),
        StageFrame(item_id=item_id, stage="planner", status="start"),
        StageFrame(item_id=item_id, stage="planner", status="complete", meta={"topic": "fixture", "queryCount": 1}, duration_ms=0),
        ReasoningFrame(item_id=item_id, stage="planner", trace=ReasoningTrace(plan=plan)),
        StageFrame(item_id=item_id, stage="answer", status="start"),
        UiFrame(item_id=item_id, ui=UiHints(show_projects=list(FIXTURE_PROJECT_IDS))),
    ]
    frames.extend(TokenFrame(item_id=item_id, delta=delta) for delta in FIXTURE_ANSWER_TOKENS)
    frames.extend(
        [
            UiActionsFrame(item_id=item_id, actions=[]),
            StageFrame(
                item_id=item_id,
                stage="answer",
                status="complete",
                meta={"tokenCount": len(FIXTURE_ANSWER_TOKENS)},
                duration_ms=0,
            ),
            DoneFrame(anchor_id=turn.anchor_id, total_duration_ms=0),
        ]
    )
    return frames


class FixtureTurnRunner:
    """Replays ``fixture_frames`` without touching any live collaborator."""

    async def run(self, turn: ConversationTurn, channel: FrameChannel, *, client_key: str) -> None:
        for frame in fixture_frames(turn):
            channel.emit(frame)


class LiveTurnStrategy:
    name = "live"

    def __init__(self, runner: TurnRunner):
        self.runner = runner

    def select(self, headers: Mapping[str, str]) -> TurnRunner:
        return self.runner


class FixtureGatedStrategy:
    """Routes a request to fixture replay when it carries the test-mode header."""

    name = "fixture-gated"

    def __init__(self, live: TurnRunner, fixture: TurnRunner, *, header: str, value: str):
        self.live = live
        self.fixture = fixture
        self.header = header.lower()
        self.value = value

    def select(self, headers: Mapping[str, str]) -> TurnRunner:
        lowered = {str(key).lower(): value for key, value in headers.items()}
        if lowered.get(self.header) == self.value:
            return self.fixture
        return self.live


def build_turn_strategy(config: ChatConfig, live: TurnRunner, fixture: Optional[TurnRunner] = None) -> TurnStrategy:
    if not config.fixtures_enabled:
        return LiveTurnStrategy(live)
    return FixtureGatedStrategy(
        live,
        fixture or FixtureTurnRunner(),
        header=config.test_mode_header,
        value=config.test_mode_value,
    )
