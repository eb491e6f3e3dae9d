# contact_api/middleware/request_id.py
from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from contact_api.core.logging import set_request_id

# Incoming ids are echoed back in a header; keep them short and printable.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to generate and set request IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = self._get_or_create_request_id(request)

        set_request_id(request_id)
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        return response

    def _get_or_create_request_id(self, request: Request) -> str:
        """Extract request ID from headers or generate new one."""
        for header in ("X-Request-ID", "X-Correlation-ID"):
            candidate = request.headers.get(header)
            if candidate and _SAFE_REQUEST_ID.match(candidate):
                return candidate

        # W3C Trace Context: 00-<32 hex trace id>-...
        traceparent = request.headers.get("traceparent")
        if traceparent and traceparent.startswith("00-") and len(traceparent) >= 35:
            return traceparent[3:35]

        return str(uuid.uuid4())
