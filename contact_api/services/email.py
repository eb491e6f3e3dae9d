# contact_api/services/email.py
"""Lead notification emails.

Two messages go out for every stored lead: an internal alert to the assigned
sales representative and a confirmation to the visitor. Delivery happens
after the lead is committed, so a provider failure is logged and swallowed
and never changes what the visitor was told.
"""
from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional, Protocol, Tuple
from urllib.parse import quote

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from contact_api.core.config import Settings
from contact_api.core.exceptions import EmailDeliveryError
from contact_api.core.logging import get_structlog_logger, redact_email
from contact_api.schemas.contact import ContactSubmission
from contact_api.services.lead_repository import INDIVIDUAL_COMPANY_NAME, SalesRep
from contact_api.services.outbound import post_json
from contact_api.services.validation import format_phone, lead_profile

logger = get_structlog_logger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

# Brasília time; the business runs on it regardless of where the server is.
BRT = timezone(timedelta(hours=-3))

SERVICE_ICONS = {
    "Migração para Microsoft 365": "🔄",
    "Treinamentos Microsoft": "🎓",
    "Consultoria em Cloud": "☁️",
    "Automação de Processos": "⚙️",
    "Diagnóstico Gratuito": "🔍",
    "Outros": "💼",
}

NEXT_STEPS = (
    ("Análise do seu perfil", "Nossa equipe irá analisar suas necessidades específicas"),
    ("Contato em até 24 horas", "Nosso consultor especializado entrará em contato para conversar"),
    ("Diagnóstico gratuito", "Oferecemos análise completa da sua infraestrutura atual"),
    ("Proposta personalizada", "Você receberá um roadmap detalhado com cronograma e valores"),
)

EXPECTATIONS = (
    "Metodologia PDCA para migração segura",
    "Preservação de 100% dos seus dados",
    "Suporte completo durante todo o processo",
    "Equipe certificada Microsoft",
    "Zero downtime durante a migração",
    "Diagnóstico gratuito da infraestrutura",
)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    reply_to: Optional[str] = None


class EmailProvider(Protocol):
    name: str

    async def send(self, message: EmailMessage) -> None:
        """Deliver ``message`` or raise :class:`EmailDeliveryError`."""


class SendGridProvider:
    name = "sendgrid"

    def __init__(self, api_key: str, from_email: str, from_name: str, timeout: float = 15) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def build_payload(self, message: EmailMessage) -> Dict:
        payload = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}
        return payload

    async def send(self, message: EmailMessage) -> None:
        ok, status, error = await post_json(
            SENDGRID_API_URL,
            self.build_payload(message),
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        if not ok:
            raise EmailDeliveryError(error or "SendGrid request failed", status_code=status)


class ConsoleProvider:
    """Logs messages instead of sending them. Keeps the most recent ones for inspection."""

    name = "console"

    def __init__(self, keep: int = 50) -> None:
        self.outbox: Deque[EmailMessage] = deque(maxlen=keep)

    async def send(self, message: EmailMessage) -> None:
        self.outbox.append(message)
        logger.info(
            "email.console_delivery",
            to=redact_email(message.to),
            subject=message.subject,
            text_length=len(message.text),
        )


def build_email_provider(settings: Settings) -> EmailProvider:
    if settings.email_provider == "sendgrid":
        return SendGridProvider(
            api_key=settings.sendgrid_api_key or "",
            from_email=settings.sendgrid_from_email or "",
            from_name=settings.email_from_name,
            timeout=settings.email_timeout_seconds,
        )
    return ConsoleProvider()


class EmailRenderer:
    def __init__(self, environment: Optional[Environment] = None) -> None:
        self.environment = environment or Environment(
            loader=PackageLoader("contact_api", "templates/emails"),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, name: str, **context) -> Tuple[str, str]:
        html = self.environment.get_template(f"{name}.html").render(**context)
        text = self.environment.get_template(f"{name}.txt").render(**context)
        return html, text


def _whatsapp_url(phone_digits: str, text: Optional[str] = None) -> str:
    url = f"https://wa.me/{phone_digits}"
    if text:
        url += f"?text={quote(text)}"
    return url


class EmailDispatcher:
    def __init__(
        self,
        provider: EmailProvider,
        settings: Settings,
        renderer: Optional[EmailRenderer] = None,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self.renderer = renderer or EmailRenderer()

    @property
    def company_whatsapp_display(self) -> str:
        digits = re.sub(r"\D", "", self.settings.company_whatsapp)
        return format_phone(digits[2:] if digits.startswith("55") else digits)

    def build_sales_rep_message(
        self,
        submission: ContactSubmission,
        rep: SalesRep,
        lead_id: int,
    ) -> EmailMessage:
        company_label = submission.company or INDIVIDUAL_COMPANY_NAME
        service = submission.service_of_interest or "nossas soluções"

        reply_subject = f"Re: Seu interesse na AllTech Digital - {submission.service_of_interest}"
        reply_body = (
            f"Olá {submission.first_name}!\n\n"
            f"Recebemos seu contato sobre {service} e ficamos muito felizes com seu interesse.\n\n"
            "Vamos agendar uma conversa?"
        )
        reply_mailto = (
            f"mailto:{submission.email}?subject={quote(reply_subject)}&body={quote(reply_body)}"
        )

        lead_whatsapp_url = None
        if submission.phone:
            lead_whatsapp_url = _whatsapp_url(
                "55" + re.sub(r"\D", "", submission.phone),
                f"Olá {submission.first_name}! Recebemos seu contato sobre {service}. Vamos conversar?",
            )

        html, text = self.renderer.render(
            "sales_rep",
            lead=submission,
            rep=rep,
            lead_id=lead_id,
            company_label=company_label,
            location=", ".join(part for part in (submission.city, submission.state) if part),
            service_icon=SERVICE_ICONS.get(submission.service_of_interest, "💼"),
            profile=lead_profile(submission.company, submission.number_of_employees),
            reply_mailto=reply_mailto,
            lead_whatsapp_url=lead_whatsapp_url,
            received_at=datetime.now(BRT).strftime("%d/%m/%Y às %H:%M"),
        )
        return EmailMessage(
            to=rep.email,
            subject=f"Novo Lead: {submission.name} - {company_label}",
            html=html,
            text=text,
            reply_to=submission.email,
        )

    def build_client_message(self, submission: ContactSubmission, rep: SalesRep) -> EmailMessage:
        html, text = self.renderer.render(
            "client",
            lead=submission,
            rep=rep,
            first_name=submission.first_name,
            next_steps=NEXT_STEPS,
            expectations=EXPECTATIONS,
            company_whatsapp_url=_whatsapp_url(re.sub(r"\D", "", self.settings.company_whatsapp)),
            company_whatsapp_display=self.company_whatsapp_display,
        )
        return EmailMessage(
            to=submission.email,
            subject=f"Obrigado pelo contato, {submission.first_name}! - AllTech Digital",
            html=html,
            text=text,
            reply_to=rep.email,
        )

    async def _deliver(self, kind: str, message: EmailMessage) -> bool:
        try:
            await self.provider.send(message)
        except EmailDeliveryError as e:
            logger.error(
                "email.delivery_failed",
                kind=kind,
                provider=self.provider.name,
                to=redact_email(message.to),
                status_code=e.status_code,
                error=str(e),
            )
            return False

        logger.info(
            "email.sent",
            kind=kind,
            provider=self.provider.name,
            to=redact_email(message.to),
        )
        return True

    async def send_to_sales_rep(
        self,
        submission: ContactSubmission,
        rep: SalesRep,
        lead_id: int,
    ) -> bool:
        return await self._deliver("sales_rep", self.build_sales_rep_message(submission, rep, lead_id))

    async def send_to_client(self, submission: ContactSubmission, rep: SalesRep) -> bool:
        return await self._deliver("client", self.build_client_message(submission, rep))

    async def dispatch_lead_notifications(
        self,
        submission: ContactSubmission,
        rep: SalesRep,
        lead_id: int,
    ) -> Dict[str, bool]:
        """Send both notifications. Never raises; the lead is already stored."""
        results = {"sales_rep": False, "client": False}

        if not self.settings.email_configured:
            logger.warning("email.not_configured", lead_id=lead_id)
            return results

        for kind, send in (
            ("sales_rep", lambda: self.send_to_sales_rep(submission, rep, lead_id)),
            ("client", lambda: self.send_to_client(submission, rep)),
        ):
            try:
                results[kind] = await send()
            except Exception:
                logger.exception("email.dispatch_failed", kind=kind, lead_id=lead_id)

        logger.info("email.dispatch_completed", lead_id=lead_id, **results)
        return results

    async def send_test_email(self, to: str) -> bool:
        message = EmailMessage(
            to=to,
            subject="Teste AllTech Digital",
            html="<p>Configuração de email funcionando.</p>",
            text="Configuração de email funcionando.",
        )
        return await self._deliver("test", message)
