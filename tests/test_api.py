import json
import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from src.api.__main__ import main as serve_main
from src.api.app import create_app
from src.api.schemas import HealthResponse
from src.api.security import normalize_client_address
from src.api.service import ChatAPIService
from src.chat.budget.gate import BudgetGate
from src.chat.budget.rate_limit import InMemoryCounterStore, SlidingWindowRateLimiter, default_rules
from src.chat.core.config import ChatConfig
from src.chat.core.debug_log import DebugLogBuffer
from src.chat.core.orchestrator import PipelineOrchestrator
from src.chat.llm.client import Completion, build_usage_record
from src.chat.llm.moderation import ModerationResult
from src.chat.protocol.frames import DoneFrame, ItemFrame, StageFrame, TokenFrame, iter_sse_frames
from src.chat.protocol.strategies import FIXTURE_ANSWER_TOKENS, LiveTurnStrategy, build_turn_strategy


def setUpModule():
    os.environ["LANGCHAIN_TRACING_V2"] = "false"


class FakeService:
    def __init__(self):
        self.health_calls = 0
        self.config = ChatConfig(app_env="test")

    def health(self):
        self.health_calls += 1
        return HealthResponse(
            status="ok",
            environment="test",
            rate_limiter="memory",
            cost_budget_enabled=False,
            fixtures_enabled=False,
        )


class RecordingRunner:
    def __init__(self):
        self.calls = []

    async def run(self, turn, channel, *, client_key):
        self.calls.append((turn, client_key))
        channel.emit(ItemFrame(item_id=turn.anchor_id, anchor_id=turn.anchor_id))
        channel.emit(DoneFrame(anchor_id=turn.anchor_id))


class FakeLLMClient:
    async def complete(self, *, stage, model, temperature, messages):
        plan = {"queries": [{"source": "projects", "text": "streaming", "topK": 1}], "cardsEnabled": True}
        return Completion(
            text=json.dumps(plan),
            usage=build_usage_record(stage, model, {"prompt_tokens": 50, "completion_tokens": 10}),
        )

    async def stream(self, *, stage, model, temperature, messages, on_usage):
        for token in ("Streaming ", "chat."):
            yield token
        on_usage(build_usage_record(stage, model, {"prompt_tokens": 80, "completion_tokens": 2}))


class StaticSearcher:
    async def search(self, query, top_k):
        return [{"id": "portfolio-chat"}][:top_k]


class FlaggingModerator:
    async def moderate(self, *, model, text):
        return ModerationResult(flagged=True, categories=["violence"])


def chat_payload(**overrides):
    payload = {
        "conversationId": "conv-1",
        "responseAnchorId": "anchor-1",
        "messages": [{"role": "user", "content": "What have you built with streaming?"}],
        "reasoningEnabled": False,
    }
    payload.update(overrides)
    return payload


def parse_frames(response):
    return list(iter_sse_frames(response.text.splitlines()))


def live_service(config: ChatConfig, moderator=None) -> ChatAPIService:
    debug_log = DebugLogBuffer(level=2)
    orchestrator = PipelineOrchestrator.from_config(
        config,
        debug_log=debug_log,
        llm_client=FakeLLMClient(),
        searchers={"projects": StaticSearcher()},
        budget_gate=BudgetGate(
            SlidingWindowRateLimiter(default_rules(config), InMemoryCounterStore(), production=config.is_production)
        ),
        moderator=moderator,
    )
    return ChatAPIService(config, strategy=LiveTurnStrategy(orchestrator), debug_log=debug_log)


class APITests(unittest.TestCase):
    def test_app_factory_accepts_injected_fake_service(self):
        fake_service = FakeService()
        app = create_app(service=fake_service)
        self.assertIs(app.state.chat_service, fake_service)

    def test_health_uses_service(self):
        fake_service = FakeService()
        client = TestClient(create_app(service=fake_service))
        response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["rate_limiter"], "memory")
        self.assertEqual(fake_service.health_calls, 1)

    def test_chat_streams_pipeline_frames(self):
        client = TestClient(create_app(service=live_service(ChatConfig(app_env="test"))))
        response = client.post("/chat", json=chat_payload())

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.headers["cache-control"], "no-cache, no-transform")
        frames = parse_frames(response)
        self.assertIsInstance(frames[0], ItemFrame)
        self.assertIsInstance(frames[-1], DoneFrame)
        self.assertEqual(sum(isinstance(frame, DoneFrame) for frame in frames), 1)
        self.assertEqual(frames[-1].anchor_id, "anchor-1")
        self.assertEqual("".join(frame.delta for frame in frames if isinstance(frame, TokenFrame)), "Streaming chat.")
        self.assertIn(
            ("retrieval", "complete"),
            [(frame.stage, frame.status) for frame in frames if isinstance(frame, StageFrame)],
        )

    def test_chat_rejects_missing_conversation_id(self):
        client = TestClient(create_app(service=live_service(ChatConfig(app_env="test"))))
        response = client.post("/chat", json=chat_payload(conversationId=None))
        self.assertEqual(response.status_code, 400)
        self.assertIn("conversationId", response.json()["detail"])

    def test_chat_rejects_trailing_assistant_message(self):
        client = TestClient(create_app(service=live_service(ChatConfig(app_env="test"))))
        payload = chat_payload(
            messages=[
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
            ]
        )
        response = client.post("/chat", json=payload)
        self.assertEqual(response.status_code, 400)

    def test_chat_rejects_unknown_role(self):
        client = TestClient(create_app(service=live_service(ChatConfig(app_env="test"))))
        response = client.post("/chat", json=chat_payload(messages=[{"role": "system", "content": "x"}]))
        self.assertEqual(response.status_code, 422)

    def test_rate_limited_turn_still_ends_with_done(self):
        config = ChatConfig(app_env="test", rate_limit_per_minute=1)
        client = TestClient(create_app(service=live_service(config)))
        client.post("/chat", json=chat_payload(responseAnchorId="a-1"))
        frames = parse_frames(client.post("/chat", json=chat_payload(responseAnchorId="a-2")))
        self.assertEqual([type(frame).__name__ for frame in frames], ["ItemFrame", "ReasoningFrame", "DoneFrame"])
        self.assertEqual(frames[1].trace.error.stage, "budget")

    def test_moderated_input_ends_with_error_then_done(self):
        config = ChatConfig(app_env="test", input_moderation_enabled=True)
        client = TestClient(create_app(service=live_service(config, moderator=FlaggingModerator())))
        frames = parse_frames(client.post("/chat", json=chat_payload()))
        self.assertEqual([type(frame).__name__ for frame in frames], ["ItemFrame", "ReasoningFrame", "DoneFrame"])
        self.assertEqual(frames[1].trace.error.code, "input_moderated")
        self.assertFalse(frames[1].trace.error.retryable)

    def test_fixture_header_selects_fixture_replay(self):
        config = ChatConfig(app_env="development", test_fixtures_enabled=True)
        live = RecordingRunner()
        service = ChatAPIService(config, strategy=build_turn_strategy(config, live))
        client = TestClient(create_app(service=service))

        fixture_response = client.post("/chat", json=chat_payload(), headers={"X-Portfolio-Test-Mode": "e2e"})
        tokens = [frame.delta for frame in parse_frames(fixture_response) if isinstance(frame, TokenFrame)]
        self.assertEqual(tokens, list(FIXTURE_ANSWER_TOKENS))
        self.assertEqual(live.calls, [])

        live_response = client.post("/chat", json=chat_payload())
        self.assertEqual(len(parse_frames(live_response)), 2)
        self.assertEqual(len(live.calls), 1)
        self.assertEqual(live.calls[0][1], "testclient")

    def test_fixture_header_is_ignored_in_production(self):
        config = ChatConfig(app_env="production", test_fixtures_enabled=True)
        live = RecordingRunner()
        service = ChatAPIService(config, strategy=build_turn_strategy(config, live))
        client = TestClient(create_app(service=service))
        client.post("/chat", json=chat_payload(), headers={"x-portfolio-test-mode": "e2e"})
        self.assertEqual(len(live.calls), 1)
        self.assertFalse(client.get("/health").json()["fixtures_enabled"])

    def test_debug_logs_available_outside_production(self):
        service = live_service(ChatConfig(app_env="test"))
        client = TestClient(create_app(service=service))
        client.post("/chat", json=chat_payload())
        response = client.get("/debug/logs", params={"limit": 5})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["count"], 5)
        self.assertIn("turn.done", [entry["event"] for entry in body["entries"]])

    def test_debug_logs_hidden_in_production(self):
        client = TestClient(create_app(service=live_service(ChatConfig(app_env="production"))))
        self.assertEqual(client.get("/debug/logs").status_code, 404)

    def test_empty_injected_debug_log_is_kept(self):
        config = ChatConfig(app_env="test")
        debug_log = DebugLogBuffer(level=2)
        self.assertEqual(len(debug_log), 0)
        service = ChatAPIService(config, strategy=build_turn_strategy(config, RecordingRunner()), debug_log=debug_log)
        self.assertIs(service.debug_log, debug_log)


class ServeEntryPointTests(unittest.TestCase):
    def test_serve_runs_uvicorn_with_cli_options(self):
        with patch("src.api.__main__.uvicorn.run") as run:
            self.assertEqual(serve_main(["--host", "0.0.0.0", "--port", "9001"]), 0)
        run.assert_called_once_with("src.api.app:app", host="0.0.0.0", port=9001, reload=False, log_level="info")


class ClientIdentityTests(unittest.TestCase):
    def test_ipv4_mapped_addresses_share_a_key(self):
        self.assertEqual(normalize_client_address("::ffff:10.1.2.3"), "10.1.2.3")
        self.assertEqual(normalize_client_address(" 10.1.2.3 "), "10.1.2.3")

    def test_ipv6_is_normalized(self):
        self.assertEqual(normalize_client_address("2001:DB8::0001"), "2001:db8::1")

    def test_missing_address_has_no_key(self):
        self.assertIsNone(normalize_client_address(None))
        self.assertIsNone(normalize_client_address("  "))


if __name__ == "__main__":
    unittest.main()
