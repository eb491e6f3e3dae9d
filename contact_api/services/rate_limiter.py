# contact_api/services/rate_limiter.py
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from starlette.requests import Request

from contact_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int


class RateLimiter(Protocol):
    max_requests: int
    window_seconds: int

    async def hit(self, key: str) -> RateLimitDecision:
        ...


def client_ip(request: Request) -> str:
    """Best-effort client address: first X-Forwarded-For hop, X-Real-IP, then the peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


class InMemoryRateLimiter:
    """Fixed-window counter per key, local to one process.

    A window opens on the first hit for a key and lasts ``window_seconds``;
    the counter resets when a hit arrives after the window closed. Entries
    that expired more than one window ago are swept opportunistically, at
    most once per ``sweep_interval`` seconds.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: int = 60,
        sweep_interval: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.sweep_interval:
            return
        cutoff = now - self.window_seconds
        stale = [key for key, (_, reset_at) in self._entries.items() if reset_at < cutoff]
        for key in stale:
            del self._entries[key]
        self._last_sweep = now
        if stale:
            logger.debug("rate_limit.swept", removed=len(stale), remaining=len(self._entries))

    async def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        self._sweep(now)

        count, reset_at = self._entries.get(key, (0, 0.0))
        if now >= reset_at:
            count, reset_at = 0, now + self.window_seconds

        if count >= self.max_requests:
            return RateLimitDecision(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, math.ceil(reset_at - now)),
            )

        count += 1
        self._entries[key] = (count, reset_at)
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - count,
            reset_at=reset_at,
            retry_after=0,
        )

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


class RedisRateLimiter:
    """Fixed-window counter shared by every instance through redis.

    Fails open: when redis is unreachable the request is allowed and the
    error is logged.
    """

    def __init__(
        self,
        client: redis.Redis,
        max_requests: int = 10,
        window_seconds: int = 60,
        prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._clock = clock

    async def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        window = int(now // self.window_seconds)
        reset_at = float((window + 1) * self.window_seconds)
        redis_key = f"{self.prefix}:{key}:{window}"

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, self.window_seconds)
                results = await pipe.execute()
            current_count = int(results[0])
        except Exception as e:
            logger.error("rate_limit.backend_error", error=str(e), key=key[:50])
            return RateLimitDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests,
                reset_at=now + self.window_seconds,
                retry_after=0,
            )

        allowed = current_count <= self.max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - current_count),
            reset_at=reset_at,
            retry_after=0 if allowed else max(1, math.ceil(reset_at - now)),
        )
