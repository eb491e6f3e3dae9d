# contact_api/middleware/rate_limiter.py
from __future__ import annotations

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from contact_api.core.logging import get_structlog_logger
from contact_api.services.rate_limiter import client_ip

logger = get_structlog_logger(__name__)

RATE_LIMITED_MESSAGE = "Muitas requisições. Tente novamente em alguns momentos."


class GlobalRateLimitMiddleware(BaseHTTPMiddleware):
    """General traffic window for every non-exempt path.

    The contact endpoint has its own, much tighter window inside the
    security chain; this one only stops floods.
    """

    def __init__(self, app, exempt_paths=None):
        super().__init__(app)
        self.exempt_paths = exempt_paths or [
            "/api/health",
            "/api/health/live",
            "/api/health/ready",
            "/metrics",
            "/docs",
            "/redoc",
            "/openapi.json",
        ]

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths or request.method == "OPTIONS":
            return await call_next(request)

        limiter = request.app.state.services.global_rate_limiter
        client_id = client_ip(request)
        decision = await limiter.hit(f"global:{client_id}")

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                scope="global",
                client_id=client_id[:50],
                path=request.url.path,
                method=request.method,
                retry_after=decision.retry_after,
            )
            return PlainTextResponse(
                RATE_LIMITED_MESSAGE,
                status_code=429,
                headers={
                    "Retry-After": str(decision.retry_after),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(decision.reset_at)),
                    "X-Content-Type-Options": "nosniff",
                },
            )

        response = await call_next(request)
        response.headers.setdefault("X-RateLimit-Limit", str(decision.limit))
        response.headers.setdefault("X-RateLimit-Remaining", str(decision.remaining))
        response.headers.setdefault("X-RateLimit-Reset", str(int(decision.reset_at)))
        return response
