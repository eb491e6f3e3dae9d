# contact_api/schemas/contact.py
from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

VALID_SERVICES = (
    "Migração para Microsoft 365",
    "Treinamentos Microsoft",
    "Consultoria em Cloud",
    "Automação de Processos",
    "Diagnóstico Gratuito",
    "Outros",
)

VALID_STATES = (
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
    "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
)

_NAME_PATTERN = re.compile(r"^[a-zA-Z\u00C0-\u017F\s]+$")
_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_PHONE_PATTERN = re.compile(r"^\(\d{2}\)\s\d{4,5}-\d{4}$")
_CNPJ_PATTERN = re.compile(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$")

# Sequences that pass the check-digit arithmetic or are common placeholders.
_CNPJ_BLOCKLIST = frozenset(["12345678901234"] + [str(d) * 14 for d in range(10)])


def _cnpj_check_digit(digits: str, weight: int) -> int:
    total = 0
    for digit in digits:
        total += int(digit) * weight
        weight = 9 if weight == 2 else weight - 1
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(value: Optional[str]) -> bool:
    """Modulo-11 check of a formatted or bare CNPJ."""
    if not value:
        return False
    digits = re.sub(r"\D", "", value)
    if len(digits) != 14 or len(set(digits)) == 1 or digits in _CNPJ_BLOCKLIST:
        return False
    if _cnpj_check_digit(digits[:12], 5) != int(digits[12]):
        return False
    return _cnpj_check_digit(digits[:13], 6) == int(digits[13])


def _fail(error_type: str, message: str) -> PydanticCustomError:
    return PydanticCustomError(error_type, message)


class ContactSubmission(BaseModel):
    """A contact-form submission after normalisation.

    Field-level rules raise with the Portuguese message shown to the visitor.
    Cross-field and content-safety rules live in
    :func:`contact_api.services.validation.validate_contact_form`.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        validate_default=True,
    )

    name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    cnpj: str = ""
    number_of_employees: str = ""
    state: str = ""
    city: str = ""
    service_of_interest: str = ""
    message: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        raise _fail("text_type", "Formato de dados inválido")

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if not value:
            raise _fail("name_required", "Nome é obrigatório")
        if len(value) < 2:
            raise _fail("name_too_short", "Nome deve ter pelo menos 2 caracteres")
        if len(value) > 100:
            raise _fail("name_too_long", "Nome muito longo")
        if not _NAME_PATTERN.match(value):
            raise _fail("name_charset", "Nome deve conter apenas letras, espaços e acentos")
        tokens = value.split()
        if len(tokens) < 2:
            raise _fail("name_incomplete", "Digite nome e sobrenome completos")
        return " ".join(tokens)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        if not value:
            raise _fail("email_required", "Email é obrigatório")
        if len(value) > 254:
            raise _fail("email_too_long", "Email muito longo")
        normalized = value.lower()
        if (
            not _EMAIL_PATTERN.match(normalized)
            or ".." in normalized
            or ".@" in normalized
            or "@." in normalized
            or normalized.startswith(".")
            or normalized.endswith(".")
        ):
            raise _fail("email_format", "Formato de email inválido")
        return normalized

    @field_validator("service_of_interest")
    @classmethod
    def validate_service(cls, value: str) -> str:
        if not value:
            raise _fail("service_required", "Serviço de interesse é obrigatório")
        if value not in VALID_SERVICES:
            raise _fail("service_choice", "Por favor, selecione um serviço de interesse")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        if value and not _PHONE_PATTERN.match(value):
            raise _fail("phone_format", "Formato de telefone inválido. Use: (11) 99999-9999")
        return value

    @field_validator("company")
    @classmethod
    def validate_company(cls, value: str) -> str:
        if value and not 2 <= len(value) <= 100:
            raise _fail("company_length", "Nome da empresa deve ter entre 2 e 100 caracteres")
        return value

    @field_validator("cnpj")
    @classmethod
    def validate_cnpj(cls, value: str) -> str:
        if value and not (_CNPJ_PATTERN.match(value) and is_valid_cnpj(value)):
            raise _fail(
                "cnpj_invalid",
                "CNPJ inválido. Verifique os dígitos ou deixe em branco se não tiver empresa",
            )
        return value

    @field_validator("number_of_employees")
    @classmethod
    def validate_employees(cls, value: str) -> str:
        if len(value) > 50:
            raise _fail("employees_length", "Número de funcionários inválido")
        return value

    @field_validator("state")
    @classmethod
    def validate_state(cls, value: str) -> str:
        value = value.upper()
        if value and value not in VALID_STATES:
            raise _fail("state_choice", "Estado inválido")
        return value

    @field_validator("city")
    @classmethod
    def validate_city(cls, value: str) -> str:
        if value and not 2 <= len(value) <= 50:
            raise _fail("city_length", "Nome da cidade deve ter entre 2 e 50 caracteres")
        return value

    @field_validator("message")
    @classmethod
    def validate_message(cls, value: str) -> str:
        if not value:
            raise _fail("message_required", "Mensagem é obrigatória")
        if len(value) < 10:
            raise _fail("message_too_short", "Mensagem deve ter pelo menos 10 caracteres")
        if len(value) > 1000:
            raise _fail("message_too_long", "Mensagem muito longa (máximo 1000 caracteres)")
        return value

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name else ""


class SalesRepresentativeOut(BaseModel):
    name: str
    email: str
    region: str


class ContactResponse(BaseModel):
    success: bool = True
    message: str = "Formulário enviado com sucesso! Entraremos em contato em breve."
    sales_representative: SalesRepresentativeOut = Field(alias="salesRepresentative")

    model_config = ConfigDict(populate_by_name=True)


class CSRFTokenResponse(BaseModel):
    success: bool = True
    csrf_token: str = Field(alias="csrfToken")

    model_config = ConfigDict(populate_by_name=True)
