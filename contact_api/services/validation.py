"""Contact form validation.

``validate_contact_form`` is the single entry point used by the contact route.
It runs the field rules declared on :class:`ContactSubmission`, then the
cross-field rules and the content-safety scan, and reports every violation in
one pass so the visitor can fix the whole form at once.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from contact_api.schemas.contact import (
    VALID_SERVICES,
    VALID_STATES,
    ContactSubmission,
    is_valid_cnpj,
)
from contact_api.services.threats import contains_markup

SUSPICIOUS_CONTENT_MESSAGE = "Conteúdo suspeito detectado. Revise os campos e tente novamente."
INVALID_PAYLOAD_MESSAGE = "Formato de dados inválido"

# Free-text fields scanned for injected markup.
SCANNED_FIELDS = ("name", "company", "message", "city")

_FIELD_ALIASES = {
    "service_of_interest": "serviceOfInterest",
    "number_of_employees": "numberOfEmployees",
}


@dataclass
class ValidationOutcome:
    submission: Optional[ContactSubmission] = None
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.submission is not None and not self.errors


def _raw_text(data: Mapping[str, Any], name: str) -> str:
    value = data.get(name)
    if value is None:
        value = data.get(_FIELD_ALIASES.get(name, name))
    return value.strip() if isinstance(value, str) else ""


def _cross_field_errors(data: Mapping[str, Any]) -> List[str]:
    errors = []
    if _raw_text(data, "cnpj") and not _raw_text(data, "company"):
        errors.append("Nome da empresa é obrigatório quando CNPJ é fornecido")
    if _raw_text(data, "state") and not _raw_text(data, "city"):
        errors.append("Cidade é obrigatória quando estado é fornecido")
    return errors


def _has_suspicious_content(data: Mapping[str, Any]) -> bool:
    return any(contains_markup(_raw_text(data, name)) for name in SCANNED_FIELDS)


def validate_contact_form(data: Any) -> ValidationOutcome:
    """Validate and normalise a raw contact-form payload.

    Returns an outcome carrying either the normalised submission or the list
    of Portuguese error messages, never both. The content-safety error is
    deliberately generic and never repeats the offending input.
    """
    if not isinstance(data, Mapping):
        return ValidationOutcome(errors=[INVALID_PAYLOAD_MESSAGE])

    errors: List[str] = []
    submission: Optional[ContactSubmission] = None

    try:
        submission = ContactSubmission.model_validate(dict(data))
    except ValidationError as exc:
        for error in exc.errors():
            errors.append(error["msg"])

    errors.extend(_cross_field_errors(data))

    if _has_suspicious_content(data):
        errors.append(SUSPICIOUS_CONTENT_MESSAGE)

    if errors:
        # Preserve order, drop repeats.
        return ValidationOutcome(errors=list(dict.fromkeys(errors)))

    return ValidationOutcome(submission=submission)


def format_cnpj(value: str) -> str:
    """Progressive CNPJ mask: ``11222333`` -> ``11.222.333``."""
    digits = re.sub(r"\D", "", value or "")
    if len(digits) > 14:
        return value
    if len(digits) <= 2:
        return digits
    if len(digits) <= 5:
        return f"{digits[:2]}.{digits[2:]}"
    if len(digits) <= 8:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:]}"
    if len(digits) <= 12:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:]}"
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def format_phone(value: str) -> str:
    """Brazilian phone mask, complete or partial: ``12992367544`` -> ``(12) 99236-7544``."""
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 11:
        return f"({digits[:2]}) {digits[2:7]}-{digits[7:]}"
    if len(digits) == 10:
        return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"
    if len(digits) < 2 or len(digits) > 11:
        return value
    if len(digits) == 2:
        return f"({digits}"
    if len(digits) <= 6:
        return f"({digits[:2]}) {digits[2:]}"
    return f"({digits[:2]}) {digits[2:6]}-{digits[6:]}"


_EMPLOYEE_PROFILES: Dict[str, str] = {
    "1-10": "Micro empresa",
    "11-50": "Pequena empresa",
    "51-100": "Média empresa",
    "101-500": "Grande empresa",
    "500+": "Enterprise",
}


def lead_profile(company: Optional[str], number_of_employees: Optional[str]) -> str:
    if not company:
        return "Pessoa Física"
    if not number_of_employees:
        return "Empresa"
    return _EMPLOYEE_PROFILES.get(number_of_employees, number_of_employees)


__all__ = [
    "INVALID_PAYLOAD_MESSAGE",
    "SUSPICIOUS_CONTENT_MESSAGE",
    "VALID_SERVICES",
    "VALID_STATES",
    "ValidationOutcome",
    "format_cnpj",
    "format_phone",
    "is_valid_cnpj",
    "lead_profile",
    "validate_contact_form",
]
