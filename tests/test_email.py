import pytest

from contact_api.core.exceptions import EmailDeliveryError
from contact_api.services import email as email_service
from contact_api.services.email import (
    ConsoleProvider,
    EmailDispatcher,
    EmailMessage,
    SendGridProvider,
    build_email_provider,
)
from contact_api.services.lead_repository import SalesRep
from contact_api.services.validation import validate_contact_form
from tests.conftest import make_settings

REP = SalesRep(id=1, name="Ana Lima", email="ana@alltechbr.solutions", region="Sudeste")


def submission(**overrides):
    form = {
        "name": "Maria Silva",
        "email": "maria@exemplo.com",
        "phone": "(11) 99999-9999",
        "company": "Acme Ltda",
        "cnpj": "11.222.333/0001-81",
        "numberOfEmployees": "11-50",
        "state": "SP",
        "city": "Campinas",
        "serviceOfInterest": "Migração para Microsoft 365",
        "message": "Orçamento < R$ 5.000 & prazo de 30 dias",
    }
    form.update(overrides)
    outcome = validate_contact_form(form)
    assert outcome.is_valid, outcome.errors
    return outcome.submission


class FailingProvider:
    name = "failing"

    def __init__(self):
        self.attempts = 0

    async def send(self, message):
        self.attempts += 1
        raise EmailDeliveryError("HTTP 401: unauthorized", status_code=401)


def test_sales_rep_message():
    dispatcher = EmailDispatcher(ConsoleProvider(), make_settings())
    message = dispatcher.build_sales_rep_message(submission(), REP, lead_id=42)

    assert message.to == "ana@alltechbr.solutions"
    assert message.reply_to == "maria@exemplo.com"
    assert message.subject == "Novo Lead: Maria Silva - Acme Ltda"
    assert "Lead ID: 42" in message.text
    assert "Local: Campinas, SP" in message.text
    assert "PERFIL: Pequena empresa" in message.text
    assert "https://wa.me/5511999999999" in message.text
    assert "Orçamento < R$ 5.000 & prazo" in message.text


def test_html_escapes_visitor_text():
    dispatcher = EmailDispatcher(ConsoleProvider(), make_settings())
    message = dispatcher.build_sales_rep_message(submission(), REP, lead_id=42)

    assert "Orçamento &lt; R$ 5.000 &amp; prazo" in message.html
    assert "Orçamento < R$" not in message.html


def test_individual_lead_labels():
    dispatcher = EmailDispatcher(ConsoleProvider(), make_settings())
    message = dispatcher.build_sales_rep_message(
        submission(company="", cnpj="", numberOfEmployees="", phone="", state="", city=""),
        REP,
        lead_id=7,
    )
    assert message.subject == "Novo Lead: Maria Silva - Pessoa Física"
    assert "PERFIL: Pessoa Física" in message.text
    assert "WhatsApp" not in message.text
    assert "Local:" not in message.text


def test_client_message():
    dispatcher = EmailDispatcher(ConsoleProvider(), make_settings())
    message = dispatcher.build_client_message(submission(), REP)

    assert message.to == "maria@exemplo.com"
    assert message.reply_to == "ana@alltechbr.solutions"
    assert message.subject == "Obrigado pelo contato, Maria! - AllTech Digital"
    assert "Olá Maria!" in message.text
    assert "Ana Lima" in message.text
    assert "1. Análise do seu perfil" in message.text
    assert "4. Proposta personalizada" in message.text
    assert "(12) 99236-7544" in message.text
    assert "https://wa.me/5512992367544" in message.text


@pytest.mark.asyncio
async def test_dispatch_sends_both_messages():
    provider = ConsoleProvider()
    dispatcher = EmailDispatcher(provider, make_settings())

    results = await dispatcher.dispatch_lead_notifications(submission(), REP, lead_id=3)

    assert results == {"sales_rep": True, "client": True}
    assert [m.to for m in provider.outbox] == ["ana@alltechbr.solutions", "maria@exemplo.com"]


@pytest.mark.asyncio
async def test_dispatch_swallows_provider_failures():
    provider = FailingProvider()
    dispatcher = EmailDispatcher(provider, make_settings())

    results = await dispatcher.dispatch_lead_notifications(submission(), REP, lead_id=3)

    assert results == {"sales_rep": False, "client": False}
    assert provider.attempts == 2


@pytest.mark.asyncio
async def test_dispatch_skipped_when_not_configured():
    provider = FailingProvider()
    dispatcher = EmailDispatcher(provider, make_settings(EMAIL_PROVIDER="sendgrid"))

    results = await dispatcher.dispatch_lead_notifications(submission(), REP, lead_id=3)

    assert results == {"sales_rep": False, "client": False}
    assert provider.attempts == 0


def test_build_email_provider():
    assert isinstance(build_email_provider(make_settings()), ConsoleProvider)
    provider = build_email_provider(
        make_settings(
            EMAIL_PROVIDER="sendgrid",
            SENDGRID_API_KEY="SG.key",
            SENDGRID_FROM_EMAIL="contato@alltechbr.solutions",
        )
    )
    assert isinstance(provider, SendGridProvider)
    assert provider.from_name == "AllTech Digital"


def test_sendgrid_payload():
    provider = SendGridProvider("SG.key", "contato@alltechbr.solutions", "AllTech Digital")
    payload = provider.build_payload(
        EmailMessage(to="a@b.com", subject="Oi", html="<p>Oi</p>", text="Oi", reply_to="c@d.com")
    )
    assert payload["personalizations"] == [{"to": [{"email": "a@b.com"}]}]
    assert payload["from"] == {"email": "contato@alltechbr.solutions", "name": "AllTech Digital"}
    assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]
    assert payload["reply_to"] == {"email": "c@d.com"}


@pytest.mark.asyncio
async def test_sendgrid_error_raises_delivery_error(monkeypatch):
    calls = []

    async def fake_post_json(url, payload, *, headers=None, timeout=10):
        calls.append((url, headers))
        return (False, 403, "HTTP 403: forbidden")

    monkeypatch.setattr(email_service, "post_json", fake_post_json)
    provider = SendGridProvider("SG.key", "contato@alltechbr.solutions", "AllTech Digital")

    with pytest.raises(EmailDeliveryError) as exc_info:
        await provider.send(EmailMessage(to="a@b.com", subject="Oi", html="<p>Oi</p>", text="Oi"))

    assert exc_info.value.status_code == 403
    assert calls == [(email_service.SENDGRID_API_URL, {"Authorization": "Bearer SG.key"})]


@pytest.mark.asyncio
async def test_send_test_email():
    provider = ConsoleProvider()
    dispatcher = EmailDispatcher(provider, make_settings())
    assert await dispatcher.send_test_email("ops@alltechbr.solutions")
    assert provider.outbox[-1].subject == "Teste AllTech Digital"
