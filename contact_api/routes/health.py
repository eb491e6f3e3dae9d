# contact_api/routes/health.py
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import psutil
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from contact_api.core.logging import get_structlog_logger
from contact_api.core.services import ServiceContainer, get_services
from contact_api.services import redis as redis_service

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])

SERVICE_NAME = "alltech_contact_api"


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, Any]]
    dependencies: List[str]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def check_rate_limit_backend(services: ServiceContainer) -> Dict[str, Any]:
    if services.settings.rate_limit_backend == "memory":
        return {"status": "healthy", "backend": "memory"}
    result = await redis_service.health_check()
    return {"backend": "redis", **result}


def check_email(services: ServiceContainer) -> Dict[str, Any]:
    return {
        "status": "healthy" if services.settings.email_configured else "unhealthy",
        "provider": services.email.provider.name,
    }


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(services: ServiceContainer = Depends(get_services)):
    """Service health: database, rate-limit backend, email and process uptime."""
    start_time = time.perf_counter()
    settings = services.settings

    db_result, rate_limit_result = await asyncio.gather(
        services.database.health_check(),
        check_rate_limit_backend(services),
    )
    all_checks = {
        "database": db_result,
        "rate_limit": rate_limit_result,
        "email": check_email(services),
    }

    overall_status = "healthy"
    for name, result in all_checks.items():
        if result.get("status") != "healthy":
            overall_status = "degraded"
            if name == "database":
                overall_status = "unhealthy"
                break

    process = psutil.Process()
    uptime_seconds = time.time() - process.create_time()

    dependencies = [services.database.backend_name]
    if settings.rate_limit_backend == "redis":
        dependencies.append("redis")
    if settings.email_provider == "sendgrid":
        dependencies.append("sendgrid")
    if settings.sentry_dsn:
        dependencies.append("sentry")

    response = HealthCheckResponse(
        status=overall_status,
        service=SERVICE_NAME,
        environment=settings.environment,
        version=settings.service_version,
        timestamp=_now(),
        uptime=uptime_seconds,
        checks=all_checks,
        dependencies=dependencies,
    )

    log = logger.info if overall_status == "healthy" else logger.warning
    log(
        "health.check",
        status=overall_status,
        response_time_ms=(time.perf_counter() - start_time) * 1000,
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_status != "unhealthy" else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(),
    )


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe():
    """Simple liveness probe for containers."""
    return {
        "status": "alive",
        "timestamp": _now(),
    }


@router.get("/health/ready")
async def readiness_probe(services: ServiceContainer = Depends(get_services)):
    """Readiness probe that checks critical dependencies."""
    checks = {"database": "healthy" if await services.database.test_connection() else "unhealthy"}
    if services.settings.rate_limit_backend == "redis":
        checks["redis"] = (await redis_service.health_check()).get("status", "unknown")

    is_ready = all(value == "healthy" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if is_ready else "not_ready",
            "timestamp": _now(),
            "checks": checks,
        },
    )
