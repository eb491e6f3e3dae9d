# contact_api/middleware/security.py
"""Request guard for the contact endpoint.

Checks run in a fixed order and the first failure ends the request:
origin allow-list, header sanity, rate limit, payload threat scan and,
for state-changing methods, the CSRF double-submit check. Rejections are
reported to the security event logger in full and to the client as a
generic message.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import Depends, Request

from contact_api.core.exceptions import (
    CSRFValidationError,
    RateLimitError,
    SecurityRejection,
)
from contact_api.core.logging import get_structlog_logger
from contact_api.core.services import ServiceContainer, get_services
from contact_api.services.csrf import CSRFOutcome
from contact_api.services.rate_limiter import client_ip
from contact_api.services.threats import (
    OVERSIZED,
    SQL_INJECTION,
    XSS,
    is_disallowed_bot,
    scan_payload,
)

logger = get_structlog_logger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
MIN_USER_AGENT_LENGTH = 10

ORIGIN_REJECTED_MESSAGE = "Origem não autorizada"
INVALID_REQUEST_MESSAGE = "Requisição inválida"
INVALID_JSON_MESSAGE = "JSON inválido"
BLOCKED_CONTENT_MESSAGE = "Conteúdo bloqueado por segurança"


class ContactSecurityChain:
    def __init__(self, services: ServiceContainer) -> None:
        self.services = services
        self.settings = services.settings
        self.events = services.security_events

    async def guard(self, request: Request) -> Optional[Dict[str, Any]]:
        """Run every check; returns the decoded JSON body for methods that carry one."""
        await self.check_origin(request)
        await self.check_headers(request)
        await self.check_rate_limit(request)

        body = None
        if request.method in MUTATING_METHODS:
            body = await self.scan_body(request)
            await self.check_csrf(request)
        return body

    async def check_origin(self, request: Request) -> None:
        origin = request.headers.get("origin")
        if origin is None or origin in self.settings.origins():
            return
        await self.events.cors_violation(request, origin=origin)
        raise SecurityRejection(ORIGIN_REJECTED_MESSAGE, status_code=403)

    async def check_headers(self, request: Request) -> None:
        issues = []

        if request.method in MUTATING_METHODS:
            content_type = request.headers.get("content-type", "")
            if "application/json" not in content_type.lower():
                issues.append("content_type_not_json")

        user_agent = request.headers.get("user-agent", "")
        if len(user_agent) < MIN_USER_AGENT_LENGTH:
            issues.append("user_agent_missing_or_short")
        elif is_disallowed_bot(user_agent):
            issues.append("bot_user_agent")

        if issues:
            await self.events.invalid_input(request, issues=issues)
            raise SecurityRejection(INVALID_REQUEST_MESSAGE)

    async def check_rate_limit(self, request: Request) -> None:
        limiter = self.services.contact_rate_limiter
        decision = await limiter.hit(f"contact:{client_ip(request)}")
        request.state.rate_limit = decision
        if decision.allowed:
            return
        await self.events.rate_limit_exceeded(
            request,
            limit=decision.limit,
            window_seconds=limiter.window_seconds,
            retry_after=decision.retry_after,
        )
        raise RateLimitError(
            retry_after=decision.retry_after,
            headers={
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(decision.reset_at)),
            },
        )

    async def scan_body(self, request: Request) -> Dict[str, Any]:
        raw = await request.body()
        try:
            body = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
            await self.events.invalid_input(request, issues=["invalid_json"])
            raise SecurityRejection(INVALID_JSON_MESSAGE)

        matches = scan_payload(body)
        if not matches:
            return body

        reasons = [{"kind": m.kind, "field": m.field, "pattern": m.pattern} for m in matches]
        kinds = {m.kind for m in matches}
        if SQL_INJECTION in kinds:
            await self.events.sql_injection_attempt(request, reasons=reasons)
        if XSS in kinds:
            await self.events.xss_attempt(request, reasons=reasons)
        if OVERSIZED in kinds:
            await self.events.suspicious_activity(request, reasons=reasons, size=len(raw))
        raise SecurityRejection(BLOCKED_CONTENT_MESSAGE)

    async def check_csrf(self, request: Request) -> None:
        check = self.services.csrf.validate_request(request)
        if check.valid:
            return
        await self.events.csrf_violation(request, outcome=check.outcome.value, reason=check.reason)
        raise CSRFValidationError(expired=check.outcome is CSRFOutcome.EXPIRED)


async def contact_security(
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> Optional[Dict[str, Any]]:
    """FastAPI dependency wrapping :class:`ContactSecurityChain`."""
    return await ContactSecurityChain(services).guard(request)


def allowed_origin_headers(request: Request, services: ServiceContainer) -> Dict[str, str]:
    """CORS response headers for an allowed ``Origin``; empty otherwise."""
    origin = request.headers.get("origin")
    if not origin or origin not in services.settings.origins():
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Vary": "Origin",
    }
