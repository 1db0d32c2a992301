"""Monthly runtime cost ledger with in-memory and Redis backends."""

import asyncio
import calendar
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Dict, Optional, Protocol

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from ..core.config import ChatConfig
from ..core.types import CostLevel, CostState, UsageRecord


logger = logging.getLogger(__name__)

TTL_GRACE_DAYS = 35
WARNING_THRESHOLD = 80
CRITICAL_THRESHOLD = 95
_LEVELS: tuple[CostLevel, ...] = ("ok", "warning", "critical", "exceeded")


class CostLedgerError(RuntimeError):
    pass


class CostLedger(Protocol):
    backend: str

    async def read(self, key: str) -> float:
        ...

    async def add(self, key: str, amount: float, expire_at: int) -> float:
        ...


class InMemoryCostLedger:
    backend = "memory"

    def __init__(self):
        self._totals: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def read(self, key: str) -> float:
        return self._totals.get(key, 0.0)

    async def add(self, key: str, amount: float, expire_at: int) -> float:
        async with self._lock:
            self._totals[key] = self._totals.get(key, 0.0) + amount
            return self._totals[key]


_INCREMENT_SCRIPT = """
local key = KEYS[1]
local delta = tonumber(ARGV[1])
local expire_at = tonumber(ARGV[2])
local total = redis.call("INCRBYFLOAT", key, delta)
if expire_at > 0 then
  redis.call("EXPIREAT", key, expire_at)
end
return total
"""


class RedisCostLedger:
    """Shared ledger; increments go through one Lua script so concurrent turns never race."""

    backend = "redis"

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis_asyncio.Redis] = None):
        if client is None:
            client = redis_asyncio.Redis.from_url(redis_url, decode_responses=True)
        self._client = client
        self._increment = self._client.register_script(_INCREMENT_SCRIPT)

    async def read(self, key: str) -> float:
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise CostLedgerError(f"cost ledger read failed: {exc}") from exc
        if raw is None:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            return 0.0

    async def add(self, key: str, amount: float, expire_at: int) -> float:
        try:
            total = await self._increment(keys=[key], args=[amount, expire_at])
        except (RedisError, OSError) as exc:
            raise CostLedgerError(f"cost ledger increment failed: {exc}") from exc
        return float(total)


@dataclass
class CostLedgerClients:
    ledger: CostLedger
    budget_usd: float
    env: str
    prefix: str = "chat:cost:"

    def key_for(self, app_id: str, month: str) -> str:
        return f"{self.prefix}{self.env}:{app_id}:{month}"


def month_key(now: datetime) -> str:
    return f"{now.year:04d}-{now.month:02d}"


def ttl_epoch(now: datetime) -> int:
    last_day = calendar.monthrange(now.year, now.month)[1]
    month_end = datetime(now.year, now.month, last_day, 23, 59, 59, tzinfo=UTC)
    return int((month_end + timedelta(days=TTL_GRACE_DAYS)).timestamp())


def evaluate_cost_state(app_id: str, month: str, spend_usd: float, budget_usd: float) -> CostState:
    percent = (spend_usd / budget_usd) * 100 if budget_usd > 0 else 0.0
    level: CostLevel = "ok"
    if budget_usd > 0 and spend_usd >= budget_usd:
        level = "exceeded"
    elif percent >= CRITICAL_THRESHOLD:
        level = "critical"
    elif percent >= WARNING_THRESHOLD:
        level = "warning"
    return CostState(app_id=app_id, month_key=month, spend_usd=spend_usd, budget_usd=budget_usd, level=level)


def get_cost_ledger_clients(config: ChatConfig, ledger: Optional[CostLedger] = None) -> Optional[CostLedgerClients]:
    if config.cost_budget_usd <= 0:
        return None
    if ledger is None:
        if config.cost_ledger_redis_url:
            ledger = RedisCostLedger(config.cost_ledger_redis_url)
        else:
            ledger = InMemoryCostLedger()
    return CostLedgerClients(
        ledger=ledger,
        budget_usd=config.cost_budget_usd,
        env=config.app_env.strip().lower(),
        prefix=config.cost_ledger_prefix,
    )


async def get_cost_state(clients: CostLedgerClients, app_id: str, now: Optional[datetime] = None) -> CostState:
    now = now or datetime.now(UTC)
    month = month_key(now)
    spend = await clients.ledger.read(clients.key_for(app_id, month))
    return evaluate_cost_state(app_id, month, spend, clients.budget_usd)


async def should_throttle(clients: Optional[CostLedgerClients], app_id: str, now: Optional[datetime] = None) -> bool:
    if clients is None:
        return False
    try:
        state = await get_cost_state(clients, app_id, now)
    except CostLedgerError as exc:
        logger.warning("Cost ledger unavailable, not throttling app_id=%s: %s", app_id, exc)
        return False
    if state.level in ("critical", "exceeded"):
        logger.warning(
            "Runtime cost %s for app_id=%s: spend=%.4f budget=%.2f",
            state.level,
            app_id,
            state.spend_usd,
            state.budget_usd,
        )
    return state.level == "exceeded"


async def record_usage(
    clients: Optional[CostLedgerClients],
    app_id: str,
    usage: UsageRecord,
    now: Optional[datetime] = None,
) -> Optional[CostState]:
    if clients is None or not usage.cost_usd or usage.cost_usd <= 0:
        return None
    now = now or datetime.now(UTC)
    month = month_key(now)
    total = await clients.ledger.add(clients.key_for(app_id, month), usage.cost_usd, ttl_epoch(now))
    previous = evaluate_cost_state(app_id, month, total - usage.cost_usd, clients.budget_usd)
    state = evaluate_cost_state(app_id, month, total, clients.budget_usd)
    if _LEVELS.index(state.level) > _LEVELS.index(previous.level) and state.level in ("critical", "exceeded"):
        logger.warning(
            "Runtime cost level rose to %s for app_id=%s (%.1f%% of budget)",
            state.level,
            app_id,
            state.percent_used,
        )
    return state
