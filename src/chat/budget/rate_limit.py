"""Multi-window sliding rate limiter with in-memory and Redis counter stores."""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from ..core.config import ChatConfig
from ..core.types import BudgetDecision, RateLimitResult


logger = logging.getLogger(__name__)

REPRESENTATIVE_RULE = "per-hour"


class RateLimiterUnavailable(RuntimeError):
    pass


@dataclass(frozen=True)
class SlidingWindowRule:
    name: str
    limit: int
    window_seconds: int


def default_rules(config: ChatConfig) -> tuple[SlidingWindowRule, ...]:
    return (
        SlidingWindowRule("per-minute", config.rate_limit_per_minute, 60),
        SlidingWindowRule("per-hour", config.rate_limit_per_hour, 3600),
        SlidingWindowRule("per-day", config.rate_limit_per_day, 86400),
    )


class CounterStore(Protocol):
    backend: str

    async def connect(self) -> None:
        ...

    async def acquire(self, key: str, rules: Sequence[SlidingWindowRule], now: float) -> List[RateLimitResult]:
        """Evaluate rules in order and consume one slot from each only if all pass."""
        ...


class InMemoryCounterStore:
    """Single-process sliding windows; the lock makes check-then-consume atomic.

    Clients whose windows have all expired are swept at most once per
    ``sweep_interval_seconds`` so idle peers do not accumulate.
    """

    backend = "memory"

    def __init__(self, sweep_interval_seconds: float = 60.0):
        self._windows: Dict[str, Dict[str, Deque[float]]] = {}
        self._lock = asyncio.Lock()
        self.sweep_interval_seconds = sweep_interval_seconds
        self._last_sweep: Optional[float] = None

    async def connect(self) -> None:
        return None

    async def acquire(self, key: str, rules: Sequence[SlidingWindowRule], now: float) -> List[RateLimitResult]:
        async with self._lock:
            self._maybe_sweep(rules, now)
            windows = self._windows.setdefault(key, {})
            results: List[RateLimitResult] = []
            passing: List[tuple[SlidingWindowRule, Deque[float]]] = []
            for rule in rules:
                window = windows.setdefault(rule.name, deque())
                _trim(window, now - rule.window_seconds)
                if len(window) >= rule.limit:
                    results.append(
                        RateLimitResult(
                            rule=rule.name,
                            success=False,
                            limit=rule.limit,
                            remaining=0,
                            reset=window[0] + rule.window_seconds,
                        )
                    )
                    self._discard_empty(key)
                    return results
                passing.append((rule, window))

            for rule, window in passing:
                window.append(now)
                results.append(
                    RateLimitResult(
                        rule=rule.name,
                        success=True,
                        limit=rule.limit,
                        remaining=max(0, rule.limit - len(window)),
                        reset=window[0] + rule.window_seconds,
                    )
                )
            self._discard_empty(key)
            return results

    def _maybe_sweep(self, rules: Sequence[SlidingWindowRule], now: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        self._last_sweep = now
        spans = {rule.name: rule.window_seconds for rule in rules}
        for key in list(self._windows):
            windows = self._windows[key]
            for name, window in list(windows.items()):
                if name in spans:
                    _trim(window, now - spans[name])
            self._discard_empty(key)

    def _discard_empty(self, key: str) -> None:
        windows = self._windows.get(key)
        if windows is None:
            return
        for name in [name for name, window in windows.items() if not window]:
            del windows[name]
        if not windows:
            del self._windows[key]


def _trim(window: Deque[float], cutoff: float) -> None:
    while window and window[0] <= cutoff:
        window.popleft()


_SLIDING_WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local member = ARGV[2]
local results = {}
for i = 1, #KEYS do
  local limit = tonumber(ARGV[1 + i * 2])
  local window = tonumber(ARGV[2 + i * 2])
  redis.call("ZREMRANGEBYSCORE", KEYS[i], "-inf", now - window)
  local count = redis.call("ZCARD", KEYS[i])
  local oldest = redis.call("ZRANGE", KEYS[i], 0, 0, "WITHSCORES")
  local oldest_score = now
  if #oldest > 0 then
    oldest_score = tonumber(oldest[2])
  end
  if count >= limit then
    table.insert(results, {0, count, oldest_score})
    return results
  end
  table.insert(results, {1, count, oldest_score})
end
for i = 1, #KEYS do
  redis.call("ZADD", KEYS[i], now, member)
  redis.call("PEXPIRE", KEYS[i], tonumber(ARGV[2 + i * 2]))
end
return results
"""


class RedisCounterStore:
    """Sorted-set sliding windows evaluated atomically by one Lua script."""

    backend = "redis"

    def __init__(
        self,
        redis_url: str,
        prefix: str = "ratelimit:chat:",
        client: Optional[redis_asyncio.Redis] = None,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._client = client
        self._script = None

    async def connect(self) -> None:
        client = self._client
        owned = client is None
        if owned:
            client = redis_asyncio.Redis.from_url(self._redis_url, decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            if owned:
                await client.aclose()
            raise RateLimiterUnavailable(f"redis ping failed: {exc}") from exc
        self._client = client
        self._script = client.register_script(_SLIDING_WINDOW_SCRIPT)

    async def acquire(self, key: str, rules: Sequence[SlidingWindowRule], now: float) -> List[RateLimitResult]:
        if self._script is None:
            raise RateLimiterUnavailable("redis store is not connected")
        now_ms = int(now * 1000)
        args: List[object] = [now_ms, f"{now_ms}-{uuid.uuid4().hex}"]
        for rule in rules:
            args.extend([rule.limit, rule.window_seconds * 1000])
        try:
            raw = await self._script(keys=[f"{self._prefix}{key}:{rule.name}" for rule in rules], args=args)
        except (RedisError, OSError) as exc:
            raise RateLimiterUnavailable(f"redis sliding window failed: {exc}") from exc

        results: List[RateLimitResult] = []
        for rule, (success, count, oldest_ms) in zip(rules, raw):
            passed = bool(int(success))
            used = int(count) + (1 if passed else 0)
            results.append(
                RateLimitResult(
                    rule=rule.name,
                    success=passed,
                    limit=rule.limit,
                    remaining=max(0, rule.limit - used) if passed else 0,
                    reset=int(oldest_ms) / 1000 + rule.window_seconds,
                )
            )
        return results


class SlidingWindowRateLimiter:
    """Ordered multi-window limiter with lazy store init and degraded-mode policy.

    Store initialization is retried at most once per ``init_backoff_seconds``.
    While the store is unavailable, requests are allowed outside production
    and rejected in production.
    """

    def __init__(
        self,
        rules: Sequence[SlidingWindowRule],
        store: CounterStore,
        *,
        production: bool,
        init_backoff_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.rules = tuple(rules)
        self.store = store
        self.production = production
        self.init_backoff_seconds = init_backoff_seconds
        self._clock = clock
        self._ready = False
        self._last_init_failure: Optional[float] = None

    @classmethod
    def from_config(cls, config: ChatConfig, store: Optional[CounterStore] = None) -> "SlidingWindowRateLimiter":
        if store is None:
            if config.rate_limit_redis_url:
                store = RedisCounterStore(config.rate_limit_redis_url, prefix=config.rate_limit_prefix)
            else:
                store = InMemoryCounterStore()
        return cls(
            default_rules(config),
            store,
            production=config.is_production,
            init_backoff_seconds=config.rate_limit_init_backoff_seconds,
        )

    @property
    def backend(self) -> str:
        return self.store.backend

    async def limit(self, client_key: str) -> BudgetDecision:
        if not await self._ensure_ready():
            return self._degraded("store initialization pending backoff")
        try:
            results = await self.store.acquire(client_key, self.rules, self._clock())
        except RateLimiterUnavailable as exc:
            return self._degraded(str(exc))
        return self._decision(results)

    async def _ensure_ready(self) -> bool:
        if self._ready:
            return True
        now = self._clock()
        if self._last_init_failure is not None and now - self._last_init_failure < self.init_backoff_seconds:
            return False
        try:
            await self.store.connect()
        except RateLimiterUnavailable as exc:
            self._last_init_failure = now
            logger.warning("Rate limiter store init failed (backend=%s): %s", self.backend, exc)
            return False
        self._ready = True
        self._last_init_failure = None
        return True

    def _degraded(self, detail: str) -> BudgetDecision:
        if self.production:
            logger.warning("Rate limiter unavailable, rejecting request: %s", detail)
            return BudgetDecision(success=False, reason="rate-limiter-unavailable")
        logger.warning("Rate limiter unavailable, allowing request outside production: %s", detail)
        return BudgetDecision(success=True)

    def _decision(self, results: List[RateLimitResult]) -> BudgetDecision:
        for result in results:
            if not result.success:
                return BudgetDecision(
                    success=False,
                    reason=result.rule,
                    limit=result.limit,
                    remaining=result.remaining,
                    reset=result.reset,
                    rules=results,
                )
        if not results:
            return BudgetDecision(success=True)
        representative = next((result for result in results if result.rule == REPRESENTATIVE_RULE), results[-1])
        return BudgetDecision(
            success=True,
            limit=representative.limit,
            remaining=representative.remaining,
            reset=representative.reset,
            rules=results,
        )
