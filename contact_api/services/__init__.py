# contact_api/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

# Import key service functions and classes for convenient access
from contact_api.services.csrf import CSRFOutcome, CSRFService
from contact_api.services.lead_repository import LeadCreationResult, LeadRepository, SalesRep
from contact_api.services.validation import (
    ValidationOutcome,
    format_cnpj,
    format_phone,
    validate_contact_form,
)

__all__ = [
    # CSRF
    "CSRFOutcome",
    "CSRFService",
    # Leads
    "LeadCreationResult",
    "LeadRepository",
    "SalesRep",
    # Validation
    "ValidationOutcome",
    "format_cnpj",
    "format_phone",
    "validate_contact_form",
]
