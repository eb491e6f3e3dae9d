import asyncio
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import text

from contact_api.core.config import Settings
from contact_api.core.services import ServiceContainer
from contact_api.db.session import Database
from contact_api.main import create_app
from contact_api.services.email import ConsoleProvider

BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"

MARIA = {
    "name": "Maria Silva",
    "email": "maria@exemplo.com",
    "serviceOfInterest": "Diagnóstico Gratuito",
    "message": "Gostaria de agendar uma avaliação gratuita.",
}


def make_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "testing",
        "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
        "CSRF_SECRET": "test-secret-" + "x" * 52,
        "EMAIL_PROVIDER": "console",
        "ALLOWED_ORIGINS": "https://alltechbr.solutions",
        "LOG_LEVEL": "WARNING",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest_asyncio.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.create_schema()
    yield db
    await db.dispose()


@pytest.fixture
def outbox():
    return ConsoleProvider()


@pytest.fixture
def db_url(tmp_path):
    """File-backed database so the app's event loop and the test can both reach it."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'contact.db'}"

    async def _create():
        db = Database(url)
        await db.create_schema()
        await db.dispose()

    asyncio.run(_create())
    return url


@pytest.fixture
def services(db_url, outbox):
    return ServiceContainer.build(
        make_settings(DATABASE_URL=db_url),
        email_provider=outbox,
    )


@pytest.fixture
def client(services):
    app = create_app(services=services)
    with TestClient(app, headers={"User-Agent": BROWSER_UA}) as test_client:
        yield test_client


@pytest.fixture
def fetch(db_url):
    """Run a read-only SQL statement against the app's database from sync tests."""

    def _fetch(sql: str, **params):
        async def _run():
            db = Database(db_url)
            try:
                async with db.session() as session:
                    result = await session.execute(text(sql), params)
                    return [dict(row._mapping) for row in result]
            finally:
                await db.dispose()

        return asyncio.run(_run())

    return _fetch


@pytest.fixture
def csrf_token(client):
    response = client.get("/api/csrf")
    assert response.status_code == 200
    return response.json()["csrfToken"]
