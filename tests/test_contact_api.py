import pytest
from fastapi.testclient import TestClient

from contact_api.core.exceptions import DatabaseError
from contact_api.core.services import ServiceContainer
from contact_api.main import create_app
from contact_api.services.email import ConsoleProvider
from tests.conftest import BROWSER_UA, MARIA, make_settings

ALLOWED_ORIGIN = "https://alltechbr.solutions"


def post_contact(client, payload, token=None, **headers):
    if token is not None:
        headers["X-CSRF-Token"] = token
    return client.post("/api/contact", json=payload, headers=headers)


def test_end_to_end_submission_creates_lead(client, csrf_token, services, fetch):
    response = post_contact(client, MARIA, csrf_token)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Formulário enviado com sucesso! Entraremos em contato em breve."
    assert body["salesRepresentative"] == {
        "name": "João Rosa",
        "email": "joao.rosa@alltechbr.solutions",
        "region": "Nacional",
    }

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-Request-ID" in response.headers

    leads = fetch("SELECT status, source, service_of_interest FROM leads")
    assert leads == [
        {"status": "new", "source": "website_contact_form", "service_of_interest": "Diagnóstico Gratuito"}
    ]
    assert len(fetch("SELECT id FROM interactions")) == 1

    outbox = services.email.provider.outbox
    assert [m.to for m in outbox] == ["joao.rosa@alltechbr.solutions", "maria@exemplo.com"]


def test_assigned_rep_is_returned(client, csrf_token, services):
    client.portal.call(services.leads.seed_sales_rep, "Ana Lima", "ana@alltechbr.solutions", "Sudeste")

    response = post_contact(client, MARIA, csrf_token)

    assert response.status_code == 200
    assert response.json()["salesRepresentative"] == {
        "name": "Ana Lima",
        "email": "ana@alltechbr.solutions",
        "region": "Sudeste",
    }


def test_invalid_cnpj_is_rejected_without_writes(client, csrf_token, services, fetch):
    response = post_contact(client, {**MARIA, "cnpj": "11.111.111/1111-11"}, csrf_token)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Dados inválidos. Verifique os campos e tente novamente."
    assert any("CNPJ" in error for error in body["errors"])

    assert fetch("SELECT id FROM leads") == []
    assert fetch("SELECT id FROM companies") == []
    assert len(services.email.provider.outbox) == 0


def test_validation_errors_are_listed(client, csrf_token):
    response = post_contact(client, {"name": "Maria", "email": "x"}, csrf_token)

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "Digite nome e sobrenome completos" in errors
    assert "Formato de email inválido" in errors
    assert "Mensagem é obrigatória" in errors


def test_eleventh_request_is_rate_limited(client, csrf_token):
    for _ in range(10):
        assert post_contact(client, MARIA, csrf_token).status_code == 200

    response = post_contact(client, MARIA, csrf_token)

    assert response.status_code == 429
    retry_after = int(response.headers["Retry-After"])
    assert 1 <= retry_after <= 60
    assert response.json()["retryAfter"] == retry_after
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_rejected_requests_still_count_towards_the_limit(client):
    for _ in range(10):
        assert post_contact(client, MARIA).status_code == 403
    assert post_contact(client, MARIA).status_code == 429


def test_script_payload_is_blocked_without_echo(client, csrf_token, fetch):
    payload = {**MARIA, "message": "<script>alert(1)</script>"}
    response = post_contact(client, payload, csrf_token)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Conteúdo bloqueado por segurança"}
    assert "<script" not in response.text
    assert "alert" not in response.text
    assert fetch("SELECT id FROM leads") == []


def test_sql_payload_is_blocked(client, csrf_token):
    payload = {**MARIA, "message": "x'; DROP TABLE leads; --"}
    response = post_contact(client, payload, csrf_token)

    assert response.status_code == 400
    assert "DROP" not in response.text


def test_missing_csrf_token(client):
    response = post_contact(client, MARIA)

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "CSRF_VALIDATION_FAILED"
    assert body["success"] is False


def test_wrong_csrf_token(client, csrf_token):
    response = post_contact(client, MARIA, "f" * 64)
    assert response.status_code == 403
    assert response.json()["error"] == "CSRF_VALIDATION_FAILED"


def test_expired_csrf_token(client):
    client.cookies.set("__csrf_hash", "0" * 64)
    client.cookies.set("__csrf_expires", "1000")

    response = post_contact(client, MARIA, "a" * 64)

    assert response.status_code == 403
    assert response.json()["error"] == "CSRF_TOKEN_EXPIRED"


def test_disallowed_origin(client, csrf_token):
    response = post_contact(client, MARIA, csrf_token, Origin="https://evil.example")

    assert response.status_code == 403
    assert response.json()["message"] == "Origem não autorizada"
    assert "Access-Control-Allow-Origin" not in response.headers


def test_allowed_origin_is_echoed(client, csrf_token):
    response = post_contact(client, MARIA, csrf_token, Origin=ALLOWED_ORIGIN)

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN


def test_non_json_body_is_rejected(client, csrf_token):
    response = client.post(
        "/api/contact",
        content="name=Maria",
        headers={"Content-Type": "application/x-www-form-urlencoded", "X-CSRF-Token": csrf_token},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Requisição inválida"


def test_malformed_json_is_rejected(client, csrf_token):
    response = client.post(
        "/api/contact",
        content="{not json",
        headers={"Content-Type": "application/json", "X-CSRF-Token": csrf_token},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "JSON inválido"


def test_deeply_nested_json_is_rejected(client, csrf_token, fetch):
    response = client.post(
        "/api/contact",
        content="[" * 100_000 + "]" * 100_000,
        headers={"Content-Type": "application/json", "X-CSRF-Token": csrf_token},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "JSON inválido"
    assert fetch("SELECT id FROM leads") == []


@pytest.mark.parametrize("user_agent", ["curl", "EvilScraper/2.0 (+http://x)"])
def test_suspicious_user_agents_are_rejected(client, csrf_token, user_agent):
    response = post_contact(client, MARIA, csrf_token, **{"User-Agent": user_agent})
    assert response.status_code == 400
    assert response.json()["message"] == "Requisição inválida"


def test_database_failure_returns_generic_error(client, csrf_token, services, monkeypatch):
    async def broken(submission):
        raise DatabaseError(details={"error": "connection refused by 10.0.0.5"})

    monkeypatch.setattr(services.leads, "create_lead", broken)
    response = post_contact(client, MARIA, csrf_token)

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert "10.0.0.5" not in response.text
    assert len(services.email.provider.outbox) == 0


def test_unexpected_error_returns_error_id(db_url):
    services = ServiceContainer.build(make_settings(DATABASE_URL=db_url), email_provider=ConsoleProvider())

    async def explode(submission):
        raise RuntimeError("secret internals")

    services.leads.create_lead = explode
    app = create_app(services=services)

    with TestClient(app, headers={"User-Agent": BROWSER_UA}, raise_server_exceptions=False) as client:
        token = client.get("/api/csrf").json()["csrfToken"]
        response = post_contact(client, MARIA, token)

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "message": "Erro interno do servidor. Tente novamente mais tarde.",
    }
    assert response.headers["X-Error-ID"].startswith("err_")
    assert "secret internals" not in response.text


def test_contact_health(client):
    response = client.get("/api/contact")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["message"] == "Sistema funcionando"
    assert body["version"] == "1.0.0"
    assert "timestamp" in body


def test_contact_health_unhealthy(client, services, monkeypatch):
    async def offline():
        return False

    monkeypatch.setattr(services.database, "test_connection", offline)
    response = client.get("/api/contact")

    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy", "message": "Problemas de conectividade"}


def test_contact_health_critical(client, services, monkeypatch):
    async def broken():
        raise RuntimeError("boom")

    monkeypatch.setattr(services.database, "test_connection", broken)
    response = client.get("/api/contact")

    assert response.status_code == 503
    assert response.json() == {"status": "critical", "message": "Falha crítica no sistema"}


def test_preflight_echoes_origin(client):
    response = client.options("/api/contact", headers={"Origin": "https://qualquer.example"})

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "https://qualquer.example"
    assert response.headers["Access-Control-Allow-Methods"] == "POST, GET, OPTIONS"
    assert response.headers["Access-Control-Allow-Headers"] == "Content-Type, X-CSRF-Token"
    assert response.headers["Access-Control-Max-Age"] == "86400"


def test_preflight_without_origin(client):
    response = client.options("/api/contact")
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_csrf_endpoint_sets_cookies(client):
    response = client.get("/api/csrf")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["csrfToken"]) == 64
    assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"
    assert response.headers["X-Frame-Options"] == "DENY"

    cookies = response.headers.get_list("set-cookie")
    assert any(c.startswith("__csrf_hash=") for c in cookies)
    assert any(c.startswith("__csrf_expires=") for c in cookies)
    assert all("httponly" in c.lower() for c in cookies)


def test_service_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["rate_limit"]["backend"] == "memory"
    assert body["dependencies"] == ["sqlite"]
    assert body["uptime"] >= 0


def test_liveness_and_readiness(client):
    assert client.get("/api/health/live").json()["status"] == "alive"
    ready = client.get("/api/health/ready")
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"


def test_attack_tool_with_injected_url_is_blocked(client):
    response = client.get(
        "/api/contact",
        params={"q": "<script>alert(1)</script>"},
        headers={"User-Agent": "sqlmap/1.7"},
    )
    assert response.status_code == 403
    assert response.text == "Acesso negado por política de segurança"


def test_global_rate_limit(db_url):
    settings = make_settings(DATABASE_URL=db_url, GLOBAL_RATE_LIMIT_REQUESTS="2")
    app = create_app(services=ServiceContainer.build(settings, email_provider=ConsoleProvider()))

    with TestClient(app, headers={"User-Agent": BROWSER_UA}) as client:
        assert client.get("/api/csrf").status_code == 200
        assert client.get("/api/csrf").status_code == 200
        blocked = client.get("/api/csrf")
        assert client.get("/api/health/live").status_code == 200

    assert blocked.status_code == 429
    assert blocked.text == "Muitas requisições. Tente novamente em alguns momentos."
    assert "Retry-After" in blocked.headers


def test_security_headers_on_every_response(client):
    response = client.get("/api/health/live")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
