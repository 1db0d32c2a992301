"""Retrieval engine dispatching planner queries to per-source searchers.

Pipeline:
- clamp each query's requested topK into [1, max]
- dispatch all queries concurrently
- record per-query failures on the outcome instead of raising
- return outcomes in plan order
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from langsmith.run_helpers import traceable

from ..core.config import ChatConfig
from ..core.types import PlanQuery, RetrievalOutcome, RetrievalPlan


logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "unknown_source"


class CorpusSearcher(Protocol):
    async def search(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        ...


OutcomeCallback = Callable[[int, RetrievalOutcome], None]


class RetrievalEngine:
    def __init__(
        self,
        searchers: Mapping[str, CorpusSearcher],
        *,
        default_top_k: int = 8,
        max_top_k: int = 10,
    ):
        self.searchers = dict(searchers)
        self.default_top_k = default_top_k
        self.max_top_k = max_top_k

    @classmethod
    def from_config(cls, config: ChatConfig, searchers: Mapping[str, CorpusSearcher]) -> "RetrievalEngine":
        return cls(
            searchers,
            default_top_k=config.retrieval_default_top_k,
            max_top_k=config.retrieval_max_top_k,
        )

    @property
    def sources(self) -> List[str]:
        return sorted(self.searchers)

    def clamp_top_k(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.default_top_k
        return max(1, min(int(requested), self.max_top_k))

    @traceable(name="retrieval.retrieve", run_type="retriever")
    async def retrieve(
        self,
        plan: RetrievalPlan,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> List[RetrievalOutcome]:
        tasks = [self._run_query(index, query, on_outcome) for index, query in enumerate(plan.queries)]
        return list(await asyncio.gather(*tasks))

    async def _run_query(
        self,
        index: int,
        query: PlanQuery,
        on_outcome: Optional[OutcomeCallback],
    ) -> RetrievalOutcome:
        effective_top_k = self.clamp_top_k(query.requested_top_k)
        outcome = RetrievalOutcome(
            source=query.source,
            query_text=query.text,
            requested_top_k=query.requested_top_k,
            effective_top_k=effective_top_k,
        )
        searcher = self.searchers.get(query.source)
        if searcher is None:
            outcome.error = UNKNOWN_SOURCE
            logger.warning("Retrieval query targets unknown source=%s", query.source)
        else:
            try:
                documents = await searcher.search(query.text, effective_top_k)
            except Exception as exc:
                logger.warning("Retrieval query failed for source=%s: %s", query.source, exc)
                outcome.error = str(exc) or type(exc).__name__
            else:
                outcome.documents = list(documents)[:effective_top_k]
                outcome.num_results = len(outcome.documents)

        if on_outcome is not None:
            on_outcome(index, outcome)
        return outcome
