# contact_api/services/security_events.py
"""Structured security event logging with risk scoring and alerting.

Every rejection made by the security chain is reported here. Events are
written through structlog under the ``security`` logger, scored from 1 to 10
and, when the score reaches the alert threshold, pushed to the alert webhook
(and to the SIEM webhook in production) in the background so the request
never waits on it.
"""
from __future__ import annotations

import asyncio
import socket
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, Optional, Set, Tuple

from starlette.requests import Request

from contact_api.core.config import Settings
from contact_api.core.logging import get_structlog_logger
from contact_api.services.outbound import post_json
from contact_api.services.rate_limiter import client_ip

logger = get_structlog_logger("security")


class SecurityEventLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SecurityEventCategory(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    INPUT_VALIDATION = "input_validation"
    CSRF_PROTECTION = "csrf_protection"
    RATE_LIMITING = "rate_limiting"
    CORS_VIOLATION = "cors_violation"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"
    XSS_ATTEMPT = "xss_attempt"
    DATA_ACCESS = "data_access"
    SYSTEM_ERROR = "system_error"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


_CATEGORY_BASE_SCORE = {
    SecurityEventCategory.SQL_INJECTION_ATTEMPT: 9,
    SecurityEventCategory.XSS_ATTEMPT: 9,
    SecurityEventCategory.AUTHENTICATION: 7,
    SecurityEventCategory.AUTHORIZATION: 7,
    SecurityEventCategory.CSRF_PROTECTION: 6,
    SecurityEventCategory.CORS_VIOLATION: 6,
    SecurityEventCategory.RATE_LIMITING: 4,
    SecurityEventCategory.INPUT_VALIDATION: 3,
}

_LEVEL_ADJUSTMENT = {
    SecurityEventLevel.CRITICAL: 3,
    SecurityEventLevel.ERROR: 1,
    SecurityEventLevel.WARNING: 0,
    SecurityEventLevel.INFO: -1,
}

# Only these request headers are copied into an event.
_RELEVANT_HEADERS = (
    "content-type",
    "content-length",
    "x-requested-with",
    "accept",
    "accept-language",
    "cache-control",
)

SERVICE_NAME = "alltech-contact-api"


def calculate_risk_score(category: SecurityEventCategory, level: SecurityEventLevel) -> int:
    score = _CATEGORY_BASE_SCORE.get(category, 2) + _LEVEL_ADJUSTMENT[level]
    return min(10, max(1, score))


@dataclass
class SecurityEvent:
    category: SecurityEventCategory
    level: SecurityEventLevel
    event: str
    message: str
    risk_score: int
    action_required: bool
    client_ip: str = "unknown"
    user_agent: str = "unknown"
    origin: Optional[str] = None
    referer: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"sec_{uuid.uuid4().hex[:16]}")
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["level"] = self.level.value
        return data


class LogRateLimiter:
    """Caps identical events per (ip, category, event) to keep floods out of the logs."""

    def __init__(
        self,
        max_per_window: int = 100,
        window_seconds: int = 60,
        sweep_interval: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._counts: Dict[str, Tuple[int, float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._counts)

    def should_log(self, key: str) -> bool:
        now = self._clock()
        if now - self._last_sweep >= self.sweep_interval:
            self.cleanup()
        count, reset_at = self._counts.get(key, (0, 0.0))
        if key not in self._counts or reset_at < now:
            self._counts[key] = (1, now + self.window_seconds)
            return True
        if count >= self.max_per_window:
            return False
        self._counts[key] = (count + 1, reset_at)
        return True

    def cleanup(self) -> int:
        now = self._clock()
        expired = [key for key, (_, reset_at) in self._counts.items() if reset_at < now]
        for key in expired:
            del self._counts[key]
        self._last_sweep = now
        return len(expired)


class SecurityEventLogger:
    def __init__(
        self,
        settings: Settings,
        rate_limiter: Optional[LogRateLimiter] = None,
    ) -> None:
        self.settings = settings
        self.alert_threshold = settings.security_alert_risk_threshold
        self.rate_limiter = rate_limiter or LogRateLimiter()
        self._pending: Set[asyncio.Task] = set()

    async def log(
        self,
        category: SecurityEventCategory,
        event: str,
        message: str,
        level: SecurityEventLevel = SecurityEventLevel.WARNING,
        request: Optional[Request] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[SecurityEvent]:
        """Record a security event. Returns None when the event was rate limited."""
        security_event = self._build_event(category, event, message, level, request, context or {})

        key = f"{security_event.client_ip}:{category.value}:{event}"
        if not self.rate_limiter.should_log(key):
            return None

        fields = security_event.to_dict()
        for reserved in ("event", "level", "timestamp"):
            fields.pop(reserved)
        fields["event_id"] = fields.pop("id")
        log_method = getattr(logger, level.value)
        log_method(f"security.{event.lower()}", **fields)

        if self.settings.is_production and self.settings.siem_webhook_url:
            self._schedule(self._send_to_siem(security_event))

        if security_event.action_required:
            self._schedule(self._trigger_alert(security_event))

        return security_event

    def _build_event(
        self,
        category: SecurityEventCategory,
        event: str,
        message: str,
        level: SecurityEventLevel,
        request: Optional[Request],
        context: Dict[str, Any],
    ) -> SecurityEvent:
        risk_score = calculate_risk_score(category, level)
        security_event = SecurityEvent(
            category=category,
            level=level,
            event=event,
            message=message,
            risk_score=risk_score,
            action_required=risk_score >= self.alert_threshold,
            context=context,
        )
        if request is not None:
            security_event.client_ip = client_ip(request)
            security_event.user_agent = request.headers.get("user-agent", "unknown")
            security_event.origin = request.headers.get("origin")
            security_event.referer = request.headers.get("referer")
            security_event.method = request.method
            security_event.path = request.url.path
            security_event.headers = {
                name: request.headers[name] for name in _RELEVANT_HEADERS if name in request.headers
            }
        return security_event

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight webhook deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _send_to_siem(self, security_event: SecurityEvent) -> None:
        payload = security_event.to_dict()
        payload.update(
            {
                "@timestamp": security_event.timestamp,
                "@version": "1",
                "host": socket.gethostname(),
                "service": SERVICE_NAME,
                "environment": self.settings.environment,
            }
        )
        ok, status, error = await post_json(
            self.settings.siem_webhook_url,
            payload,
            headers={"Authorization": f"Bearer {self.settings.siem_token or ''}"},
            timeout=self.settings.webhook_timeout_seconds,
        )
        if not ok:
            logger.error("security.siem_delivery_failed", status=status, error=error)

    async def _trigger_alert(self, security_event: SecurityEvent) -> None:
        if not self.settings.security_alert_webhook:
            logger.critical(
                "security.alert",
                event_id=security_event.id,
                risk_score=security_event.risk_score,
                security_event=security_event.event,
            )
            return

        ok, status, error = await post_json(
            self.settings.security_alert_webhook,
            {
                "alert_type": "security_incident",
                "severity": security_event.level.value,
                "risk_score": security_event.risk_score,
                "event": security_event.event,
                "message": security_event.message,
                "client_ip": security_event.client_ip,
                "timestamp": security_event.timestamp,
            },
            timeout=self.settings.webhook_timeout_seconds,
        )
        if not ok:
            logger.error("security.alert_delivery_failed", status=status, error=error)

    # Convenience wrappers used by the security chain.

    async def csrf_violation(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.CSRF_PROTECTION,
            "CSRF_TOKEN_INVALID",
            "Tentativa de bypass de proteção CSRF detectada",
            SecurityEventLevel.ERROR,
            request,
            context,
        )

    async def rate_limit_exceeded(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.RATE_LIMITING,
            "RATE_LIMIT_EXCEEDED",
            "Limite de requisições excedido",
            SecurityEventLevel.WARNING,
            request,
            context,
        )

    async def cors_violation(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.CORS_VIOLATION,
            "ORIGIN_NOT_ALLOWED",
            "Origem não autorizada",
            SecurityEventLevel.WARNING,
            request,
            context,
        )

    async def suspicious_activity(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.SUSPICIOUS_ACTIVITY,
            "SUSPICIOUS_BEHAVIOR",
            "Atividade suspeita detectada",
            SecurityEventLevel.ERROR,
            request,
            context,
        )

    async def sql_injection_attempt(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.SQL_INJECTION_ATTEMPT,
            "SQL_INJECTION_DETECTED",
            "Tentativa de SQL Injection detectada",
            SecurityEventLevel.CRITICAL,
            request,
            context,
        )

    async def xss_attempt(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.XSS_ATTEMPT,
            "XSS_PAYLOAD_DETECTED",
            "Tentativa de XSS detectada",
            SecurityEventLevel.CRITICAL,
            request,
            context,
        )

    async def invalid_input(self, request: Request, **context: Any) -> Optional[SecurityEvent]:
        return await self.log(
            SecurityEventCategory.INPUT_VALIDATION,
            "INVALID_REQUEST",
            "Requisição rejeitada na validação de cabeçalhos ou corpo",
            SecurityEventLevel.WARNING,
            request,
            context,
        )
