"""
Fixed-window rate limiter for the Gateway service.
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config import GatewayConfig
from shared.errors import RateLimitError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_gateway.app.domain.client_info import get_client_ip


@dataclass(frozen=True)
class RateLimitPolicy:
    """Request ceiling per client within one fixed window."""

    name: str
    window_seconds: int
    max_requests: int

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "RateLimitPolicy":
        profile = PROFILES[config.effective_rate_limit_profile]
        return cls(
            name=profile.name,
            window_seconds=config.rate_limit_window_seconds or profile.window_seconds,
            max_requests=config.rate_limit_max_requests or profile.max_requests,
        )


PROFILES: Dict[str, RateLimitPolicy] = {
    # internal and test deployments
    "permissive": RateLimitPolicy(name="permissive", window_seconds=60, max_requests=1000),
    # public-facing deployments
    "strict": RateLimitPolicy(name="strict", window_seconds=60, max_requests=100),
}


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    current_count: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)


class RateLimitStoreError(Exception):
    """The backing store could not answer."""


class RateLimitStore(ABC):
    """Per-client request counters grouped into fixed windows."""

    @abstractmethod
    async def hit(self, key: str, window_seconds: int) -> Tuple[int, float]:
        """Count one request for ``key``; return (count in window, seconds until reset)."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget the current window for ``key``."""

    async def close(self) -> None:
        """Release store resources."""


@dataclass
class _Window:
    count: int
    started_at: float


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store.

    ``hit`` reads and updates a window without awaiting, so concurrent
    requests on one event loop never interleave inside it.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._last_prune = clock()

    async def hit(self, key: str, window_seconds: int) -> Tuple[int, float]:
        now = self._clock()
        self._prune(now, window_seconds)

        window = self._windows.get(key)
        if window is None or now - window.started_at >= window_seconds:
            window = _Window(count=0, started_at=now)
            self._windows[key] = window

        window.count += 1
        return window.count, max(0.0, window.started_at + window_seconds - now)

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)

    def _prune(self, now: float, window_seconds: int) -> None:
        if now - self._last_prune < window_seconds:
            return
        expired = [key for key, window in self._windows.items() if now - window.started_at >= window_seconds]
        for key in expired:
            del self._windows[key]
        self._last_prune = now


class RedisRateLimitStore(RateLimitStore):
    """Store shared by several gateway processes through Redis INCR."""

    def __init__(self, redis_url: str, key_prefix: str = "rate_limit"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def _make_key(self, key: str) -> str:
        """Generate rate limit key."""
        return f"{self.key_prefix}:{key}"

    async def hit(self, key: str, window_seconds: int) -> Tuple[int, float]:
        redis_key = self._make_key(key)
        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.incr(redis_key)
                pipeline.ttl(redis_key)
                count, ttl = await pipeline.execute()

            # first hit of a window, or a key left without expiry
            if ttl is None or ttl < 0:
                await redis_client.expire(redis_key, window_seconds)
                ttl = window_seconds
        except (RedisError, OSError) as exc:
            raise RateLimitStoreError(str(exc)) from exc

        return int(count), float(ttl)

    async def reset(self, key: str) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(self._make_key(key))
        except (RedisError, OSError) as exc:
            raise RateLimitStoreError(str(exc)) from exc

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class FixedWindowRateLimiter:
    """Caps requests per client key inside fixed windows."""

    def __init__(self, policy: RateLimitPolicy, store: RateLimitStore):
        self.policy = policy
        self.store = store
        self.logger = get_logger("gateway.rate_limiter")

    async def check(self, client_id: str) -> RateLimitDecision:
        """Count the request and decide whether it may proceed."""
        try:
            count, reset_in = await self.store.hit(client_id, self.policy.window_seconds)
        except RateLimitStoreError as e:
            # fail open
            self.logger.error("Rate limit check error", error=str(e))
            return RateLimitDecision(
                allowed=True,
                limit=self.policy.max_requests,
                current_count=0,
                reset_in_seconds=self.policy.window_seconds,
            )

        return RateLimitDecision(
            allowed=count <= self.policy.max_requests,
            limit=self.policy.max_requests,
            current_count=count,
            reset_in_seconds=math.ceil(reset_in),
        )


def build_rate_limit_store(config: GatewayConfig) -> RateLimitStore:
    """Create the store selected by configuration."""
    if config.rate_limit_backend == "redis":
        return RedisRateLimitStore(config.redis_url)
    return InMemoryRateLimitStore()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Short-circuits requests over the per-client ceiling with a 429."""

    def __init__(
        self,
        app,
        rate_limiter: FixedWindowRateLimiter,
        metrics: MetricsCollector,
        trust_forwarded_for: bool = False,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.trust_forwarded_for = trust_forwarded_for
        self.logger = get_logger("gateway.rate_limit_middleware")

    async def dispatch(self, request: Request, call_next):
        client_id = get_client_ip(request, self.trust_forwarded_for)
        decision = await self.rate_limiter.check(client_id)

        if decision.allowed:
            response = await call_next(request)
        else:
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                path=request.url.path,
                current_count=decision.current_count,
                limit=decision.limit,
            )
            self.metrics.record_rate_limit_hit(self.rate_limiter.policy.name)
            response = JSONResponse(
                status_code=RateLimitError.status_code,
                content=RateLimitError().to_response().to_content(),
                headers={"Retry-After": str(decision.reset_in_seconds)},
            )

        self._set_rate_limit_headers(response, decision)
        return response

    def _set_rate_limit_headers(self, response, decision: RateLimitDecision) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers["RateLimit-Limit"] = str(decision.limit)
        response.headers["RateLimit-Remaining"] = str(decision.remaining)
        response.headers["RateLimit-Reset"] = str(decision.reset_in_seconds)
