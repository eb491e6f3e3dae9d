import pytest
from starlette.requests import Request

from contact_api.services import security_events
from contact_api.services.security_events import (
    LogRateLimiter,
    SecurityEventCategory,
    SecurityEventLevel,
    SecurityEventLogger,
    calculate_risk_score,
)
from tests.conftest import make_settings


def make_request():
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/api/contact",
            "query_string": b"",
            "scheme": "https",
            "server": ("alltechbr.solutions", 443),
            "headers": [
                (b"user-agent", b"Mozilla/5.0 Test"),
                (b"origin", b"https://evil.example"),
                (b"content-type", b"application/json"),
                (b"cookie", b"__csrf_hash=secret"),
                (b"x-forwarded-for", b"198.51.100.23"),
            ],
            "client": ("10.0.0.1", 1234),
        }
    )


@pytest.fixture
def webhook_calls(monkeypatch):
    calls = []

    async def fake_post_json(url, payload, *, headers=None, timeout=10):
        calls.append({"url": url, "payload": payload, "headers": headers})
        return (True, 200, None)

    monkeypatch.setattr(security_events, "post_json", fake_post_json)
    return calls


def test_risk_score_table():
    assert calculate_risk_score(SecurityEventCategory.XSS_ATTEMPT, SecurityEventLevel.CRITICAL) == 10
    assert calculate_risk_score(SecurityEventCategory.CSRF_PROTECTION, SecurityEventLevel.ERROR) == 7
    assert calculate_risk_score(SecurityEventCategory.RATE_LIMITING, SecurityEventLevel.WARNING) == 4
    assert calculate_risk_score(SecurityEventCategory.INPUT_VALIDATION, SecurityEventLevel.INFO) == 2
    assert calculate_risk_score(SecurityEventCategory.DATA_ACCESS, SecurityEventLevel.INFO) == 1


def test_log_rate_limiter_caps_identical_events():
    now = [0.0]
    limiter = LogRateLimiter(max_per_window=3, window_seconds=60, clock=lambda: now[0])
    assert [limiter.should_log("k") for _ in range(4)] == [True, True, True, False]
    assert limiter.should_log("other")

    now[0] = 61
    assert limiter.should_log("k")
    assert limiter.cleanup() == 1


def test_log_rate_limiter_sweeps_stale_keys():
    now = [0.0]
    limiter = LogRateLimiter(window_seconds=60, sweep_interval=300, clock=lambda: now[0])
    for i in range(2000):
        limiter.should_log(f"198.51.100.{i}:input_validation:INVALID_INPUT")
    assert len(limiter) == 2000

    now[0] = 24 * 3600
    assert limiter.should_log("203.0.113.9:rate_limiting:RATE_LIMIT_EXCEEDED")
    assert len(limiter) == 1


@pytest.mark.asyncio
async def test_event_captures_request_context(webhook_calls):
    events = SecurityEventLogger(make_settings())
    event = await events.cors_violation(make_request(), origin="https://evil.example")

    assert event.client_ip == "198.51.100.23"
    assert event.method == "POST"
    assert event.path == "/api/contact"
    assert event.origin == "https://evil.example"
    assert event.context == {"origin": "https://evil.example"}
    assert "cookie" not in event.headers
    assert event.headers["content-type"] == "application/json"
    assert event.id.startswith("sec_")
    assert not event.action_required

    await events.drain()
    assert webhook_calls == []


@pytest.mark.asyncio
async def test_high_risk_event_triggers_alert_webhook(webhook_calls):
    events = SecurityEventLogger(make_settings(SECURITY_ALERT_WEBHOOK="https://alerts.example/hook"))
    event = await events.xss_attempt(make_request(), reasons=[{"field": "message"}])
    await events.drain()

    assert event.risk_score == 10
    assert event.action_required
    assert len(webhook_calls) == 1
    call = webhook_calls[0]
    assert call["url"] == "https://alerts.example/hook"
    assert call["payload"]["alert_type"] == "security_incident"
    assert call["payload"]["event"] == "XSS_PAYLOAD_DETECTED"
    assert call["payload"]["risk_score"] == 10


@pytest.mark.asyncio
async def test_siem_only_in_production(webhook_calls):
    production = make_settings(
        ENVIRONMENT="production",
        DATABASE_URL="postgresql+asyncpg://u:p@db/alltech",
        SENDGRID_API_KEY="SG.key",
        SENDGRID_FROM_EMAIL="contato@alltechbr.solutions",
        SIEM_WEBHOOK_URL="https://siem.example/ingest",
        SIEM_TOKEN="siem-token",
    )
    events = SecurityEventLogger(production)
    await events.rate_limit_exceeded(make_request(), limit=10)
    await events.drain()

    assert len(webhook_calls) == 1
    call = webhook_calls[0]
    assert call["url"] == "https://siem.example/ingest"
    assert call["headers"] == {"Authorization": "Bearer siem-token"}
    assert call["payload"]["service"] == "alltech-contact-api"
    assert call["payload"]["category"] == "rate_limiting"

    webhook_calls.clear()
    events = SecurityEventLogger(make_settings(SIEM_WEBHOOK_URL="https://siem.example/ingest"))
    await events.rate_limit_exceeded(make_request(), limit=10)
    await events.drain()
    assert webhook_calls == []


@pytest.mark.asyncio
async def test_flooded_events_are_dropped(webhook_calls):
    events = SecurityEventLogger(make_settings(), rate_limiter=LogRateLimiter(max_per_window=2))
    request = make_request()
    results = [await events.invalid_input(request, issues=["x"]) for _ in range(3)]
    assert results[0] is not None
    assert results[1] is not None
    assert results[2] is None
