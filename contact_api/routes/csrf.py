# contact_api/routes/csrf.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from contact_api.core.logging import get_structlog_logger
from contact_api.core.services import ServiceContainer, get_services
from contact_api.middleware.security import allowed_origin_headers
from contact_api.schemas.contact import CSRFTokenResponse

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["csrf"])


@router.get("/csrf")
async def issue_csrf_token(request: Request, services: ServiceContainer = Depends(get_services)):
    """Issue a CSRF token; the matching proof travels in httpOnly cookies."""
    token = services.csrf.issue()

    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Cache-Control": "no-store, no-cache, must-revalidate",
    }
    headers.update(allowed_origin_headers(request, services))

    response = JSONResponse(
        content=CSRFTokenResponse(csrf_token=token.token).model_dump(by_alias=True),
        headers=headers,
    )
    services.csrf.attach_cookies(response, token)

    logger.debug("csrf.issued", expires_ms=token.expires_ms)
    return response
