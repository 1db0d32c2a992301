"""Budget gate combining the monthly cost ceiling with per-client rate limits."""

import logging
from typing import Optional

from ..core.config import ChatConfig
from ..core.types import BudgetDecision, CostState, UsageRecord
from .cost_ledger import CostLedgerClients, get_cost_ledger_clients, record_usage, should_throttle
from .rate_limit import SlidingWindowRateLimiter


logger = logging.getLogger(__name__)

COST_CEILING_REASON = "cost-ceiling"


class BudgetGate:
    """Both checks are mandatory: the cost ceiling, then the rate-limit windows.

    The cost check runs first because it only reads, so a request rejected
    for cost consumes no rate-limit tokens.
    """

    def __init__(self, rate_limiter: SlidingWindowRateLimiter, cost_clients: Optional[CostLedgerClients] = None):
        self.rate_limiter = rate_limiter
        self.cost_clients = cost_clients

    @classmethod
    def from_config(cls, config: ChatConfig) -> "BudgetGate":
        return cls(
            rate_limiter=SlidingWindowRateLimiter.from_config(config),
            cost_clients=get_cost_ledger_clients(config),
        )

    async def check_budget(self, client_key: str, app_id: str) -> BudgetDecision:
        if await should_throttle(self.cost_clients, app_id):
            logger.warning("Budget gate rejected app_id=%s: monthly cost ceiling reached", app_id)
            return BudgetDecision(success=False, reason=COST_CEILING_REASON, cost_exceeded=True)

        decision = await self.rate_limiter.limit(client_key)
        if not decision.success:
            logger.info("Budget gate rejected client=%s: %s", client_key, decision.reason)
        return decision

    async def record_usage(self, app_id: str, usage: UsageRecord) -> Optional[CostState]:
        return await record_usage(self.cost_clients, app_id, usage)
