# contact_api/routes/contact.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from contact_api.core.exceptions import FormValidationError
from contact_api.core.logging import get_structlog_logger, redact_email
from contact_api.core.services import ServiceContainer, get_services
from contact_api.middleware.security import allowed_origin_headers, contact_security
from contact_api.schemas.contact import ContactResponse, SalesRepresentativeOut
from contact_api.services.validation import validate_contact_form

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["contact"])

NO_STORE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
}


@router.post("/contact")
async def submit_contact(
    request: Request,
    background_tasks: BackgroundTasks,
    body: Optional[Dict[str, Any]] = Depends(contact_security),
    services: ServiceContainer = Depends(get_services),
):
    """Store a contact-form submission as a lead and notify both sides by email."""
    outcome = validate_contact_form(body)
    if not outcome.is_valid:
        logger.info("contact.validation_failed", error_count=len(outcome.errors))
        raise FormValidationError(outcome.errors)

    submission = outcome.submission
    result = await services.leads.create_lead(submission)

    # Runs after the response is sent; the lead is already committed.
    background_tasks.add_task(
        services.email.dispatch_lead_notifications,
        submission,
        result.sales_rep,
        result.lead_id,
    )

    logger.info(
        "contact.processed",
        lead_id=result.lead_id,
        email=redact_email(submission.email),
        has_company=bool(submission.company),
    )

    payload = ContactResponse(
        sales_representative=SalesRepresentativeOut(**result.sales_rep.to_public()),
    )
    headers = dict(NO_STORE_HEADERS)
    headers.update(allowed_origin_headers(request, services))

    decision = getattr(request.state, "rate_limit", None)
    if decision is not None:
        headers["X-RateLimit-Limit"] = str(decision.limit)
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
        headers["X-RateLimit-Reset"] = str(int(decision.reset_at))

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=payload.model_dump(by_alias=True),
        headers=headers,
    )


@router.get("/contact")
async def contact_health(services: ServiceContainer = Depends(get_services)):
    """Lightweight health check for the contact pipeline."""
    try:
        healthy = await services.database.test_connection()
    except Exception as e:
        logger.error("contact.health_check_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "critical", "message": "Falha crítica no sistema"},
        )

    if not healthy:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "message": "Problemas de conectividade"},
        )

    return {
        "status": "healthy",
        "message": "Sistema funcionando",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": services.settings.service_version,
    }


@router.options("/contact")
async def contact_preflight(request: Request):
    return Response(
        status_code=status.HTTP_200_OK,
        headers={
            "Access-Control-Allow-Origin": request.headers.get("origin") or "*",
            "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, X-CSRF-Token",
            "Access-Control-Max-Age": "86400",
        },
    )
