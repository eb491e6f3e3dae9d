# contact_api/core/services.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from contact_api.core.config import Settings
from contact_api.db.session import Database
from contact_api.services.csrf import CSRFService
from contact_api.services.email import EmailDispatcher, EmailProvider, build_email_provider
from contact_api.services.lead_repository import LeadRepository
from contact_api.services.rate_limiter import InMemoryRateLimiter, RateLimiter
from contact_api.services.security_events import SecurityEventLogger


@dataclass
class ServiceContainer:
    """Everything a request needs, built once per application."""

    settings: Settings
    database: Database
    csrf: CSRFService
    contact_rate_limiter: RateLimiter
    global_rate_limiter: RateLimiter
    security_events: SecurityEventLogger
    email: EmailDispatcher
    leads: LeadRepository

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        database: Optional[Database] = None,
        email_provider: Optional[EmailProvider] = None,
    ) -> "ServiceContainer":
        database = database or Database.from_settings(settings)
        return cls(
            settings=settings,
            database=database,
            csrf=CSRFService(
                secret=settings.csrf_secret,
                ttl_seconds=settings.csrf_token_ttl_seconds,
                secure_cookies=settings.is_production,
            ),
            contact_rate_limiter=InMemoryRateLimiter(
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_period,
                sweep_interval=settings.rate_limit_sweep_interval,
            ),
            global_rate_limiter=InMemoryRateLimiter(
                max_requests=settings.global_rate_limit_requests,
                window_seconds=settings.global_rate_limit_period,
                sweep_interval=settings.rate_limit_sweep_interval,
            ),
            security_events=SecurityEventLogger(settings),
            email=EmailDispatcher(email_provider or build_email_provider(settings), settings),
            leads=LeadRepository(database),
        )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
