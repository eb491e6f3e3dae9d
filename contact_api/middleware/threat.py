# contact_api/middleware/threat.py
from __future__ import annotations

from urllib.parse import unquote_plus

from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from contact_api.core.logging import get_structlog_logger
from contact_api.services.rate_limiter import client_ip
from contact_api.services.security_events import SecurityEventCategory, SecurityEventLevel
from contact_api.services.threats import assess_request

logger = get_structlog_logger(__name__)

BLOCKED_MESSAGE = "Acesso negado por política de segurança"


class ThreatDetectionMiddleware(BaseHTTPMiddleware):
    """Blocks requests whose URL and user agent together score as an attack."""

    async def dispatch(self, request: Request, call_next):
        assessment = assess_request(
            unquote_plus(str(request.url)),
            request.headers.get("user-agent", ""),
        )

        if not assessment.should_block:
            return await call_next(request)

        logger.warning(
            "threat.blocked",
            threats=assessment.threats,
            risk_score=assessment.risk_score,
            path=request.url.path,
            client_ip=client_ip(request),
        )
        services = getattr(request.app.state, "services", None)
        if services is not None:
            await services.security_events.log(
                SecurityEventCategory.SUSPICIOUS_ACTIVITY,
                "REQUEST_BLOCKED",
                "Requisição bloqueada por análise de ameaças",
                SecurityEventLevel.CRITICAL,
                request,
                {"threats": assessment.threats, "request_risk_score": assessment.risk_score},
            )

        return PlainTextResponse(
            BLOCKED_MESSAGE,
            status_code=403,
            headers={"X-Content-Type-Options": "nosniff"},
        )
