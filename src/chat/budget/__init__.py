"""Budget gate: per-client rate limits and the monthly cost ceiling."""

from .cost_ledger import (
    CostLedgerClients,
    InMemoryCostLedger,
    RedisCostLedger,
    get_cost_ledger_clients,
    record_usage,
    should_throttle,
)
from .gate import BudgetGate
from .rate_limit import (
    InMemoryCounterStore,
    RateLimiterUnavailable,
    RedisCounterStore,
    SlidingWindowRateLimiter,
    SlidingWindowRule,
)

__all__ = [
    "BudgetGate",
    "CostLedgerClients",
    "InMemoryCostLedger",
    "InMemoryCounterStore",
    "RateLimiterUnavailable",
    "RedisCostLedger",
    "RedisCounterStore",
    "SlidingWindowRateLimiter",
    "SlidingWindowRule",
    "get_cost_ledger_clients",
    "record_usage",
    "should_throttle",
]
