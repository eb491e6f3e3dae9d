# contact_api/services/redis.py
"""Shared Redis connection for rate-limit counters.

Only used when RATE_LIMIT_BACKEND=redis, so several API workers see the same
per-IP windows. The in-memory limiter needs none of this.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff

from contact_api.core.config import Settings
from contact_api.core.exceptions import ServiceUnavailableError
from contact_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

_pool: Optional[ConnectionPool] = None
_client: Optional[redis.Redis] = None


async def init_redis_pool(settings: Settings) -> redis.Redis:
    """Connect once per process and return the shared client."""
    global _pool, _client

    if _client is not None:
        return _client

    pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry=Retry(backoff=ExponentialBackoff(base=1, cap=10), retries=3),
        retry_on_error=[redis.ConnectionError, redis.TimeoutError],
        health_check_interval=30,
        decode_responses=True,
    )
    client = redis.Redis(connection_pool=pool)

    try:
        await client.ping()
    except redis.RedisError as e:
        logger.error("redis.connection_failed", error=str(e))
        await pool.disconnect()
        raise ServiceUnavailableError(
            message="Rate limit store unavailable",
            details={"error": str(e)},
        ) from e

    _pool, _client = pool, client
    logger.info("redis.connected", max_connections=settings.redis_max_connections)
    return client


def get_redis_client() -> Optional[redis.Redis]:
    return _client


async def close_redis_pool() -> None:
    global _pool, _client

    if _client is not None:
        await _client.aclose()
    if _pool is not None:
        await _pool.disconnect()
    _pool, _client = None, None
    logger.info("redis.closed")


async def health_check() -> Dict[str, Any]:
    client = _client
    if client is None:
        return {"status": "not_configured"}

    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.warning("redis.health_check_failed", error=str(e))
        return {"status": "unhealthy", "error": "ping failed"}

    return {
        "status": "healthy",
        "response_time_ms": round((loop.time() - started) * 1000, 2),
    }
