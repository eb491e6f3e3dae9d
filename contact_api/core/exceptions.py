# contact_api/core/exceptions.py
from __future__ import annotations

from typing import Any, Dict, List, Optional


class BaseAPIException(Exception):
    """Base exception for all API errors.

    ``message`` is always safe to show to the client; internal detail goes
    into ``details`` and is only ever logged.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.code:
            body["error"] = self.code
        return body


class FormValidationError(BaseAPIException):
    """Contact form failed one or more validation rules."""
    def __init__(
        self,
        errors: List[str],
        message: str = "Dados inválidos. Verifique os campos e tente novamente.",
        **kwargs,
    ):
        super().__init__(message, status_code=400, **kwargs)
        self.errors = errors

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["errors"] = self.errors
        return body


class SecurityRejection(BaseAPIException):
    """Request rejected by a security policy. The message never says which rule matched."""
    def __init__(self, message: str = "Requisição inválida", status_code: int = 400, **kwargs):
        super().__init__(message, status_code=status_code, **kwargs)


class CSRFValidationError(SecurityRejection):
    """CSRF token missing, tampered with, or expired."""
    FAILED = "CSRF_VALIDATION_FAILED"
    EXPIRED = "CSRF_TOKEN_EXPIRED"

    def __init__(self, expired: bool = False, **kwargs):
        if expired:
            message = "Token de segurança expirado. Recarregue a página."
            code = self.EXPIRED
        else:
            message = "Falha na validação de segurança. Recarregue a página e tente novamente."
            code = self.FAILED
        super().__init__(message, status_code=403, code=code, **kwargs)


class RateLimitError(BaseAPIException):
    """Rate limit exceeded."""
    def __init__(
        self,
        message: str = "Muitas tentativas. Tente novamente em alguns minutos.",
        retry_after: int = 60,
        **kwargs,
    ):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after
        self.headers.setdefault("Retry-After", str(retry_after))

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["retryAfter"] = self.retry_after
        return body


class DatabaseError(BaseAPIException):
    """Database error."""
    def __init__(
        self,
        message: str = "Não foi possível salvar sua solicitação. Tente novamente mais tarde.",
        **kwargs,
    ):
        super().__init__(message, status_code=500, **kwargs)


class ServiceUnavailableError(BaseAPIException):
    """Service unavailable."""
    def __init__(self, message: str = "Serviço temporariamente indisponível", **kwargs):
        super().__init__(message, status_code=503, **kwargs)


class EmailDeliveryError(Exception):
    """Email provider refused or could not be reached. Never surfaced to clients."""
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
