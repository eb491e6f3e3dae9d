# contact_api/main.py
from __future__ import annotations

import secrets
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from contact_api.core.config import Settings
from contact_api.core.config import settings as default_settings
from contact_api.core.exceptions import BaseAPIException, ServiceUnavailableError
from contact_api.core.logging import configure_structlog, get_structlog_logger
from contact_api.core.services import ServiceContainer
from contact_api.middleware.logging import LoggingMiddleware
from contact_api.middleware.rate_limiter import GlobalRateLimitMiddleware
from contact_api.middleware.request_id import RequestIdMiddleware
from contact_api.middleware.security_headers import SecurityHeadersMiddleware
from contact_api.middleware.threat import ThreatDetectionMiddleware
from contact_api.routes import contact_router, csrf_router, health_router
from contact_api.services import redis as redis_service
from contact_api.services.rate_limiter import RedisRateLimiter

# Configure logging before creating app
configure_structlog()
logger = get_structlog_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Erro interno do servidor. Tente novamente mais tarde."
INVALID_REQUEST_MESSAGE = "Dados inválidos. Verifique os campos e tente novamente."


async def _use_redis_rate_limits(services: ServiceContainer) -> None:
    """Swap both in-memory limiters for redis-backed ones shared across instances."""
    settings = services.settings
    try:
        client = await redis_service.init_redis_pool(settings)
    except ServiceUnavailableError:
        if settings.is_production:
            raise
        logger.warning("rate_limit.redis_unavailable", fallback="memory")
        return

    services.contact_rate_limiter = RedisRateLimiter(
        client,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_period,
        prefix="ratelimit:contact",
    )
    services.global_rate_limiter = RedisRateLimiter(
        client,
        max_requests=settings.global_rate_limit_requests,
        window_seconds=settings.global_rate_limit_period,
        prefix="ratelimit:global",
    )
    logger.info("rate_limit.backend", backend="redis")


def _init_sentry(settings: Settings) -> None:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.service_version,
        integrations=[
            AsyncioIntegration(),
            FastApiIntegration(),
            StarletteIntegration(),
        ],
        traces_sample_rate=1.0 if settings.is_development else 0.1,
        send_default_pii=False,
    )
    logger.info("sentry.initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    services: ServiceContainer = app.state.services
    settings = services.settings

    # Startup
    logger.info("application.starting", environment=settings.environment)

    services.database.init()

    if settings.rate_limit_backend == "redis":
        await _use_redis_rate_limits(services)

    if settings.sentry_dsn:
        _init_sentry(settings)

    logger.info("application.started")
    yield

    # Shutdown
    logger.info("application.shutting_down")

    await services.security_events.drain()

    if redis_service.get_redis_client() is not None:
        await redis_service.close_redis_pool()
        logger.info("redis.connection_closed")

    await services.database.dispose()
    logger.info("database.connection_closed")

    logger.info("application.shutdown_complete")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions."""
        logger.warning(
            "api.exception",
            status_code=exc.status_code,
            exception=type(exc).__name__,
            code=exc.code,
            path=request.url.path,
            method=request.method,
            details=exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request-shape errors FastAPI detects before a route runs."""
        logger.warning(
            "validation.error",
            path=request.url.path,
            method=request.method,
            errors=[
                {"loc": error.get("loc", []), "type": error.get("type", "value_error")}
                for error in exc.errors()
            ],
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": INVALID_REQUEST_MESSAGE},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        error_id = f"err_{secrets.token_hex(6)}"

        logger.error(
            "unhandled.exception",
            error_id=error_id,
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": INTERNAL_ERROR_MESSAGE},
            headers={"X-Error-ID": error_id},
        )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Build the application around one :class:`ServiceContainer`."""
    settings = settings or (services.settings if services else default_settings)
    services = services or ServiceContainer.build(settings)

    show_docs = settings.is_development
    app = FastAPI(
        title="AllTech Contact API",
        version=settings.service_version,
        description="Lead capture backend for the AllTech Digital contact form",
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
        lifespan=lifespan,
    )
    app.state.services = services

    # Last added runs first: request id, logging, headers, threats, global limit.
    app.add_middleware(GlobalRateLimitMiddleware)
    app.add_middleware(ThreatDetectionMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, api_prefix=settings.api_prefix)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router, prefix=settings.api_prefix)
    app.include_router(contact_router, prefix=settings.api_prefix)
    app.include_router(csrf_router, prefix=settings.api_prefix)

    if not settings.is_testing:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint with API information."""
        return {
            "name": app.title,
            "version": app.version,
            "environment": settings.environment,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs" if show_docs else None,
        }

    logger.info("application.configured", environment=settings.environment)
    return app


app = create_app()
