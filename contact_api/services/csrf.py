# contact_api/services/csrf.py
"""Stateless double-submit CSRF tokens.

The browser receives the raw token in the JSON body and the HMAC of
``token + expires`` in an httpOnly cookie. A later request proves possession
by echoing the token in ``X-CSRF-Token``; validity is recomputed from the
token, the cookie pair and the server secret, so nothing is stored.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from starlette.requests import Request
from starlette.responses import Response

from contact_api.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

CSRF_HEADER = "X-CSRF-Token"
CSRF_HASH_COOKIE = "__csrf_hash"
CSRF_EXPIRES_COOKIE = "__csrf_expires"
TOKEN_BYTES = 32


class CSRFOutcome(str, Enum):
    VALID = "valid"
    MISSING = "missing"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class CSRFToken:
    token: str
    hash: str
    expires_ms: int


@dataclass(frozen=True)
class CSRFCheck:
    outcome: CSRFOutcome
    reason: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.outcome is CSRFOutcome.VALID


class CSRFService:
    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 3600,
        secure_cookies: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("CSRF secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self.secure_cookies = secure_cookies
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _sign(self, token: str, expires_ms: int) -> str:
        message = f"{token}{expires_ms}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def issue(self) -> CSRFToken:
        token = secrets.token_hex(TOKEN_BYTES)
        expires_ms = self._now_ms() + self.ttl_seconds * 1000
        return CSRFToken(token=token, hash=self._sign(token, expires_ms), expires_ms=expires_ms)

    def validate(
        self,
        token: Optional[str],
        token_hash: Optional[str],
        expires: Optional[str],
    ) -> CSRFCheck:
        if not token:
            return CSRFCheck(CSRFOutcome.MISSING, "header token missing")
        if not token_hash or not expires:
            return CSRFCheck(CSRFOutcome.MISSING, "cookie pair missing")

        try:
            expires_ms = int(expires)
        except (TypeError, ValueError):
            return CSRFCheck(CSRFOutcome.INVALID, "malformed expiry")

        if self._now_ms() > expires_ms:
            return CSRFCheck(CSRFOutcome.EXPIRED, "token expired")

        expected = self._sign(token, expires_ms)
        if len(token_hash) != len(expected):
            return CSRFCheck(CSRFOutcome.INVALID, "hash length mismatch")
        if not hmac.compare_digest(token_hash.encode("utf-8"), expected.encode("utf-8")):
            return CSRFCheck(CSRFOutcome.INVALID, "hash mismatch")

        return CSRFCheck(CSRFOutcome.VALID)

    def validate_request(self, request: Request) -> CSRFCheck:
        return self.validate(
            request.headers.get(CSRF_HEADER),
            request.cookies.get(CSRF_HASH_COOKIE),
            request.cookies.get(CSRF_EXPIRES_COOKIE),
        )

    def attach_cookies(self, response: Response, token: CSRFToken) -> None:
        for name, value in (
            (CSRF_HASH_COOKIE, token.hash),
            (CSRF_EXPIRES_COOKIE, str(token.expires_ms)),
        ):
            response.set_cookie(
                name,
                value,
                max_age=self.ttl_seconds,
                path="/",
                secure=self.secure_cookies,
                httponly=True,
                samesite="strict",
            )
        logger.debug("csrf.cookies_attached", expires_ms=token.expires_ms)
