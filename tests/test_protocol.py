import unittest

from src.chat.core.config import ChatConfig
from src.chat.core.trace_types import ReasoningError, ReasoningTrace
from src.chat.core.types import ChatMessage, ConversationTurn, UiHints
from src.chat.protocol.channel import FrameChannel, ProtocolViolation
from src.chat.protocol.frames import (
    DoneFrame,
    ItemFrame,
    ReasoningFrame,
    StageFrame,
    TokenFrame,
    UiFrame,
    encode_sse,
    frame_from_dict,
    frame_to_dict,
    iter_sse_frames,
)
from src.chat.protocol.strategies import (
    FIXTURE_ANSWER_TOKENS,
    FixtureGatedStrategy,
    FixtureTurnRunner,
    LiveTurnStrategy,
    build_turn_strategy,
    fixture_frames,
)


def make_turn(anchor_id: str = "anchor-1") -> ConversationTurn:
    return ConversationTurn(
        conversation_id="conv-1",
        anchor_id=anchor_id,
        messages=[ChatMessage(role="user", content="hi")],
    )


class LiveRunner:
    async def run(self, turn, channel, *, client_key):
        channel.emit(DoneFrame(anchor_id=turn.anchor_id))


class FrameEncodingTests(unittest.TestCase):
    def test_stage_frame_uses_camel_case_keys(self):
        payload = frame_to_dict(
            StageFrame(item_id="a1", stage="retrieval", status="complete", meta={"docsFound": 3}, duration_ms=12.5)
        )
        self.assertEqual(
            payload,
            {
                "type": "stage",
                "itemId": "a1",
                "stage": "retrieval",
                "status": "complete",
                "meta": {"docsFound": 3},
                "durationMs": 12.5,
            },
        )

    def test_stage_start_omits_optional_fields(self):
        payload = frame_to_dict(StageFrame(item_id="a1", stage="planner", status="start"))
        self.assertNotIn("meta", payload)
        self.assertNotIn("durationMs", payload)

    def test_ui_frame_payload(self):
        payload = frame_to_dict(UiFrame(item_id="a1", ui=UiHints(show_projects=["p1"], show_experiences=[])))
        self.assertEqual(payload["ui"], {"showProjects": ["p1"], "showExperiences": []})

    def test_reasoning_trace_omits_unset_fields(self):
        frame = ReasoningFrame(
            item_id="a1",
            stage="planner",
            trace=ReasoningTrace(error=ReasoningError(message="nope", stage="planner", code="stage_failed")),
        )
        payload = frame_to_dict(frame)
        self.assertNotIn("plan", payload["trace"])
        self.assertEqual(payload["trace"]["error"]["stage"], "planner")
        self.assertEqual(frame_from_dict(payload), frame)

    def test_encode_sse_format(self):
        encoded = encode_sse(TokenFrame(item_id="a1", delta="Hi"))
        self.assertEqual(encoded, 'event: token\ndata: {"type":"token","itemId":"a1","delta":"Hi"}\n\n')

    def test_iter_sse_frames_parses_a_stream(self):
        frames = [
            ItemFrame(item_id="a1", anchor_id="a1"),
            TokenFrame(item_id="a1", delta="Hello"),
            DoneFrame(anchor_id="a1", total_duration_ms=4.2),
        ]
        body = "".join(encode_sse(frame) for frame in frames)
        self.assertEqual(list(iter_sse_frames(body.splitlines())), frames)

    def test_unknown_frame_type_raises(self):
        with self.assertRaises(ValueError):
            frame_from_dict({"type": "mystery", "itemId": "a1"})


class FrameChannelTests(unittest.IsolatedAsyncioTestCase):
    async def test_frames_are_delivered_in_order_until_done(self):
        channel = FrameChannel("a1")
        channel.emit(ItemFrame(item_id="a1", anchor_id="a1"))
        channel.emit(StageFrame(item_id="a1", stage="planner", status="start"))
        channel.emit(StageFrame(item_id="a1", stage="planner", status="complete"))
        channel.emit(DoneFrame(anchor_id="a1"))

        received = [frame async for frame in channel]
        self.assertEqual(len(received), 4)
        self.assertIsInstance(received[-1], DoneFrame)
        self.assertTrue(channel.done)
        self.assertEqual(channel.emitted, 4)

    def test_duplicate_stage_start_is_rejected(self):
        channel = FrameChannel("a1")
        channel.emit(StageFrame(item_id="a1", stage="planner", status="start"))
        with self.assertRaises(ProtocolViolation):
            channel.emit(StageFrame(item_id="a1", stage="planner", status="start"))

    def test_terminal_status_requires_start(self):
        channel = FrameChannel("a1")
        with self.assertRaises(ProtocolViolation):
            channel.emit(StageFrame(item_id="a1", stage="answer", status="complete"))

    def test_second_terminal_status_is_rejected(self):
        channel = FrameChannel("a1")
        channel.emit(StageFrame(item_id="a1", stage="answer", status="start"))
        channel.emit(StageFrame(item_id="a1", stage="answer", status="error"))
        with self.assertRaises(ProtocolViolation):
            channel.emit(StageFrame(item_id="a1", stage="answer", status="complete"))

    def test_frames_after_done_are_rejected(self):
        channel = FrameChannel("a1")
        channel.emit(DoneFrame(anchor_id="a1"))
        with self.assertRaises(ProtocolViolation):
            channel.emit(TokenFrame(item_id="a1", delta="late"))
        with self.assertRaises(ProtocolViolation):
            channel.emit(DoneFrame(anchor_id="a1"))

    async def test_close_drops_later_frames_and_ends_iteration(self):
        channel = FrameChannel("a1")
        channel.emit(ItemFrame(item_id="a1", anchor_id="a1"))
        channel.close()
        self.assertFalse(channel.emit(TokenFrame(item_id="a1", delta="dropped")))

        received = [frame async for frame in channel]
        self.assertEqual(received, [ItemFrame(item_id="a1", anchor_id="a1")])
        self.assertEqual(channel.emitted, 1)


class FixtureStrategyTests(unittest.IsolatedAsyncioTestCase):
    def test_fixture_frames_follow_the_turn_contract(self):
        frames = fixture_frames(make_turn("fx-1"))
        self.assertIsInstance(frames[0], ItemFrame)
        self.assertIsInstance(frames[-1], DoneFrame)
        self.assertEqual(sum(isinstance(frame, DoneFrame) for frame in frames), 1)
        tokens = "".join(frame.delta for frame in frames if isinstance(frame, TokenFrame))
        self.assertEqual(tokens, "".join(FIXTURE_ANSWER_TOKENS))

    async def test_fixture_runner_replays_through_a_channel(self):
        channel = FrameChannel("fx-1")
        await FixtureTurnRunner().run(make_turn("fx-1"), channel, client_key="127.0.0.1")
        received = [frame async for frame in channel]
        self.assertEqual(received, fixture_frames(make_turn("fx-1")))

    def test_disabled_fixtures_select_live_runner(self):
        live = LiveRunner()
        strategy = build_turn_strategy(ChatConfig(app_env="development", test_fixtures_enabled=False), live)
        self.assertIsInstance(strategy, LiveTurnStrategy)
        self.assertIs(strategy.select({"x-portfolio-test-mode": "e2e"}), live)

    def test_gated_strategy_routes_on_header(self):
        live = LiveRunner()
        strategy = build_turn_strategy(ChatConfig(app_env="development", test_fixtures_enabled=True), live)
        self.assertIsInstance(strategy, FixtureGatedStrategy)
        self.assertIsInstance(strategy.select({"X-Portfolio-Test-Mode": "e2e"}), FixtureTurnRunner)
        self.assertIs(strategy.select({"x-portfolio-test-mode": "other"}), live)
        self.assertIs(strategy.select({}), live)

    def test_production_never_enables_fixtures(self):
        live = LiveRunner()
        config = ChatConfig(app_env="production", test_fixtures_enabled=True)
        self.assertFalse(config.fixtures_enabled)
        strategy = build_turn_strategy(config, live)
        self.assertIs(strategy.select({"x-portfolio-test-mode": "e2e"}), live)


if __name__ == "__main__":
    unittest.main()
