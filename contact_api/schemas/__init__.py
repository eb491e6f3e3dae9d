# contact_api/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from contact_api.schemas.contact import (
    ContactResponse,
    ContactSubmission,
    CSRFTokenResponse,
    SalesRepresentativeOut,
)

__all__ = [
    "ContactResponse",
    "ContactSubmission",
    "CSRFTokenResponse",
    "SalesRepresentativeOut",
]
