import pytest
from starlette.responses import Response

from contact_api.services.csrf import (
    CSRF_EXPIRES_COOKIE,
    CSRF_HASH_COOKIE,
    CSRFOutcome,
    CSRFService,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def csrf(clock):
    return CSRFService("unit-test-secret", ttl_seconds=3600, clock=clock)


def test_issued_token_validates(csrf):
    token = csrf.issue()
    assert len(token.token) == 64
    check = csrf.validate(token.token, token.hash, str(token.expires_ms))
    assert check.valid
    assert check.outcome is CSRFOutcome.VALID


def test_token_expires_after_ttl(csrf, clock):
    token = csrf.issue()

    clock.now += 3600
    assert csrf.validate(token.token, token.hash, str(token.expires_ms)).valid

    clock.now += 1
    check = csrf.validate(token.token, token.hash, str(token.expires_ms))
    assert check.outcome is CSRFOutcome.EXPIRED


def test_tampered_hash_fails(csrf):
    token = csrf.issue()
    for index in (0, len(token.hash) // 2, len(token.hash) - 1):
        replacement = "0" if token.hash[index] != "0" else "1"
        tampered = token.hash[:index] + replacement + token.hash[index + 1:]
        check = csrf.validate(token.token, tampered, str(token.expires_ms))
        assert check.outcome is CSRFOutcome.INVALID


def test_tampered_expiry_fails(csrf):
    token = csrf.issue()
    check = csrf.validate(token.token, token.hash, str(token.expires_ms + 60_000))
    assert check.outcome is CSRFOutcome.INVALID


def test_token_from_another_secret_fails(clock):
    issuer = CSRFService("secret-one", clock=clock)
    verifier = CSRFService("secret-two", clock=clock)
    token = issuer.issue()
    assert not verifier.validate(token.token, token.hash, str(token.expires_ms)).valid


@pytest.mark.parametrize(
    "token,token_hash,expires",
    [
        (None, "abc", "1"),
        ("", "abc", "1"),
        ("abc", None, "1"),
        ("abc", "abc", None),
    ],
)
def test_missing_parts(csrf, token, token_hash, expires):
    assert csrf.validate(token, token_hash, expires).outcome is CSRFOutcome.MISSING


def test_malformed_expiry(csrf):
    token = csrf.issue()
    assert csrf.validate(token.token, token.hash, "soon").outcome is CSRFOutcome.INVALID


def test_truncated_hash_fails(csrf):
    token = csrf.issue()
    check = csrf.validate(token.token, token.hash[:-2], str(token.expires_ms))
    assert check.outcome is CSRFOutcome.INVALID


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        CSRFService("")


def test_cookies_are_http_only_and_strict(csrf):
    token = csrf.issue()
    response = Response()
    csrf.attach_cookies(response, token)

    cookies = response.headers.getlist("set-cookie")
    assert len(cookies) == 2
    hash_cookie = next(c for c in cookies if c.startswith(f"{CSRF_HASH_COOKIE}="))
    expires_cookie = next(c for c in cookies if c.startswith(f"{CSRF_EXPIRES_COOKIE}="))

    assert token.hash in hash_cookie
    assert str(token.expires_ms) in expires_cookie
    for cookie in cookies:
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "samesite=strict" in lowered
        assert "path=/" in lowered
        assert "max-age=3600" in lowered
        assert "secure" not in lowered


def test_secure_flag_in_production(clock):
    csrf = CSRFService("secret", secure_cookies=True, clock=clock)
    response = Response()
    csrf.attach_cookies(response, csrf.issue())
    assert all("secure" in c.lower() for c in response.headers.getlist("set-cookie"))
