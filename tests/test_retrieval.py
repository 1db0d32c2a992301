import asyncio
import json
import os
import tempfile
import unittest

from src.chat.core.types import PlanQuery, RetrievalPlan
from src.chat.retrieval.engine import UNKNOWN_SOURCE, RetrievalEngine
from src.chat.retrieval.lexical import BM25Weights, LexicalCorpusSearcher, load_corpus_searchers


def setUpModule():
    os.environ["LANGCHAIN_TRACING_V2"] = "false"


class RecordingSearcher:
    def __init__(self, documents=None, delay: float = 0.0):
        self.documents = documents or [{"id": f"doc-{i}"} for i in range(20)]
        self.delay = delay
        self.calls = []

    async def search(self, query, top_k):
        self.calls.append((query, top_k))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.documents[:top_k]


class ExplodingSearcher:
    async def search(self, query, top_k):
        raise ConnectionError("index offline")


class HandshakeSearcher:
    """Completes only once its partner has started, so it deadlocks if run sequentially."""

    def __init__(self, own: asyncio.Event, partner: asyncio.Event):
        self.own = own
        self.partner = partner

    async def search(self, query, top_k):
        self.own.set()
        await self.partner.wait()
        return [{"id": query}]


class RetrievalEngineTests(unittest.IsolatedAsyncioTestCase):
    def test_clamp_top_k(self):
        engine = RetrievalEngine({}, default_top_k=8, max_top_k=10)
        self.assertEqual(engine.clamp_top_k(None), 8)
        self.assertEqual(engine.clamp_top_k(25), 10)
        self.assertEqual(engine.clamp_top_k(0), 1)
        self.assertEqual(engine.clamp_top_k(-3), 1)
        self.assertEqual(engine.clamp_top_k(4), 4)

    async def test_requested_top_k_is_clamped_and_recorded(self):
        searcher = RecordingSearcher()
        engine = RetrievalEngine({"projects": searcher})
        plan = RetrievalPlan(queries=[PlanQuery(source="projects", text="llm", top_k=25)])

        [outcome] = await engine.retrieve(plan)
        self.assertEqual(outcome.requested_top_k, 25)
        self.assertEqual(outcome.effective_top_k, 10)
        self.assertEqual(outcome.num_results, 10)
        self.assertEqual(searcher.calls, [("llm", 10)])

    async def test_limit_is_used_when_top_k_missing(self):
        searcher = RecordingSearcher()
        engine = RetrievalEngine({"projects": searcher})
        plan = RetrievalPlan(
            queries=[
                PlanQuery(source="projects", text="a", limit=3),
                PlanQuery(source="projects", text="b"),
            ]
        )
        first, second = await engine.retrieve(plan)
        self.assertEqual(first.effective_top_k, 3)
        self.assertEqual(second.requested_top_k, None)
        self.assertEqual(second.effective_top_k, 8)

    async def test_outcomes_keep_plan_order_despite_completion_order(self):
        engine = RetrievalEngine(
            {
                "slow": RecordingSearcher([{"id": "slow"}], delay=0.05),
                "fast": RecordingSearcher([{"id": "fast"}]),
            }
        )
        completed = []
        plan = RetrievalPlan(
            queries=[
                PlanQuery(source="slow", text="first"),
                PlanQuery(source="fast", text="second"),
            ]
        )
        outcomes = await engine.retrieve(plan, on_outcome=lambda index, outcome: completed.append(index))
        self.assertEqual([outcome.source for outcome in outcomes], ["slow", "fast"])
        self.assertEqual(completed, [1, 0])

    async def test_queries_run_concurrently(self):
        a_started, b_started = asyncio.Event(), asyncio.Event()
        engine = RetrievalEngine(
            {
                "a": HandshakeSearcher(a_started, b_started),
                "b": HandshakeSearcher(b_started, a_started),
            }
        )
        plan = RetrievalPlan(queries=[PlanQuery(source="a", text="x"), PlanQuery(source="b", text="y")])
        outcomes = await asyncio.wait_for(engine.retrieve(plan), timeout=1.0)
        self.assertEqual([outcome.documents for outcome in outcomes], [[{"id": "x"}], [{"id": "y"}]])

    async def test_unknown_source_is_a_per_query_error(self):
        engine = RetrievalEngine({"projects": RecordingSearcher()})
        plan = RetrievalPlan(
            queries=[
                PlanQuery(source="blog", text="posts", top_k=2),
                PlanQuery(source="projects", text="llm", top_k=2),
            ]
        )
        with self.assertLogs("src.chat.retrieval.engine", level="WARNING"):
            missing, found = await engine.retrieve(plan)
        self.assertEqual(missing.error, UNKNOWN_SOURCE)
        self.assertEqual(missing.num_results, 0)
        self.assertIsNone(found.error)
        self.assertEqual(found.num_results, 2)

    async def test_searcher_failure_is_isolated(self):
        engine = RetrievalEngine({"resume": ExplodingSearcher(), "projects": RecordingSearcher()})
        plan = RetrievalPlan(
            queries=[
                PlanQuery(source="resume", text="jobs"),
                PlanQuery(source="projects", text="llm", top_k=1),
            ]
        )
        with self.assertLogs("src.chat.retrieval.engine", level="WARNING"):
            failed, ok = await engine.retrieve(plan)
        self.assertEqual(failed.error, "index offline")
        self.assertEqual(ok.documents, [{"id": "doc-0"}])

    async def test_empty_plan_returns_no_outcomes(self):
        engine = RetrievalEngine({"projects": RecordingSearcher()})
        self.assertEqual(await engine.retrieve(RetrievalPlan()), [])

    async def test_outcome_summary_omits_documents(self):
        engine = RetrievalEngine({"projects": RecordingSearcher()})
        plan = RetrievalPlan(queries=[PlanQuery(source="projects", text="x", top_k=2)])
        [outcome] = await engine.retrieve(plan)
        summary = outcome.summary()
        self.assertNotIn("documents", summary)
        self.assertNotIn("error", summary)
        self.assertEqual(summary["numResults"], 2)
        self.assertEqual(summary["effectiveTopK"], 2)


class LexicalSearchTests(unittest.IsolatedAsyncioTestCase):
    DOCUMENTS = [
        {"id": "chat", "name": "Portfolio chat", "summary": "Streaming LLM answers over server-sent events"},
        {"id": "budget", "name": "Budget RAG", "summary": "Hybrid retrieval over government budget PDFs"},
        {"id": "trips", "name": "Trip planner", "summary": "Itinerary generation with maps"},
    ]

    def test_weights_learn_vocabulary(self):
        weights = BM25Weights()
        weights.fit(["alpha beta", "beta gamma"])
        self.assertEqual(set(weights.idf), {"alpha", "beta", "gamma"})
        self.assertGreater(weights.idf["alpha"], weights.idf["beta"])
        self.assertEqual(weights.query_weights("unknown words"), {})

    async def test_best_match_ranks_first(self):
        searcher = LexicalCorpusSearcher(self.DOCUMENTS)
        results = await searcher.search("budget retrieval", top_k=2)
        self.assertEqual(results[0]["id"], "budget")
        self.assertIn("_score", results[0])
        self.assertNotIn("_score", self.DOCUMENTS[1])

    async def test_no_overlap_returns_nothing(self):
        searcher = LexicalCorpusSearcher(self.DOCUMENTS)
        self.assertEqual(await searcher.search("kubernetes", top_k=5), [])

    async def test_load_corpus_searchers_skips_missing_sources(self):
        with tempfile.TemporaryDirectory() as tmp:
            with open(os.path.join(tmp, "projects.json"), "w", encoding="utf-8") as f:
                json.dump(self.DOCUMENTS, f)
            with self.assertLogs("src.chat.retrieval.lexical", level="WARNING"):
                searchers = load_corpus_searchers(tmp, ["projects", "resume"])
        self.assertEqual(list(searchers), ["projects"])
        results = await searchers["projects"].search("trip maps", top_k=1)
        self.assertEqual(results[0]["id"], "trips")

    def test_corpus_file_must_be_a_list(self):
        with tempfile.TemporaryDirectory() as tmp:
            with open(os.path.join(tmp, "projects.json"), "w", encoding="utf-8") as f:
                json.dump({"id": "not-a-list"}, f)
            with self.assertRaises(ValueError):
                load_corpus_searchers(tmp, ["projects"])

    def test_bundled_corpus_loads(self):
        searchers = load_corpus_searchers(
            os.path.join(os.path.dirname(__file__), "..", "data", "corpus"),
            ["projects", "resume"],
        )
        self.assertEqual(sorted(searchers), ["projects", "resume"])


if __name__ == "__main__":
    unittest.main()
