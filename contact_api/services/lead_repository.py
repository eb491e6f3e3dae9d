# contact_api/services/lead_repository.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from contact_api.core.exceptions import DatabaseError
from contact_api.core.logging import get_structlog_logger, redact_email
from contact_api.db.session import Database
from contact_api.models import Company, Contact, Interaction, Lead, SalesRepresentative
from contact_api.models.lead import (
    LEAD_PRIORITY_DEFAULT,
    LEAD_SOURCE_CONTACT_FORM,
    LEAD_STATUS_NEW,
)
from contact_api.schemas.contact import ContactSubmission

logger = get_structlog_logger(__name__)

INDIVIDUAL_COMPANY_NAME = "Pessoa Física"
DEFAULT_EMPLOYEES = "Não informado"
DEFAULT_STATE = "SP"
DEFAULT_CITY = "Não informada"
DEFAULT_SERVICE = "Não especificado"

INTERACTION_TYPE = "form_submission"
INTERACTION_SUBJECT = "Novo contato via site"
INTERACTION_DESCRIPTION = "Lead gerado através do formulário de contato do site"

DATABASE_UNAVAILABLE_MESSAGE = "Banco de dados indisponível. Tente novamente em alguns minutos."

STATE_REGIONS = {
    "SP": "Sudeste",
    "RJ": "Sudeste",
    "MG": "Sudeste",
    "ES": "Sudeste",
    "RS": "Sul",
    "SC": "Sul",
    "PR": "Sul",
    "GO": "Centro-Oeste",
    "MT": "Centro-Oeste",
    "MS": "Centro-Oeste",
    "DF": "Centro-Oeste",
}


@dataclass(frozen=True)
class SalesRep:
    id: Optional[int]
    name: str
    email: str
    region: str

    def to_public(self) -> dict:
        return {"name": self.name, "email": self.email, "region": self.region}


DEFAULT_SALES_REP = SalesRep(
    id=None,
    name="João Rosa",
    email="joao.rosa@alltechbr.solutions",
    region="Nacional",
)


def fallback_sales_rep(state: Optional[str]) -> SalesRep:
    """The built-in representative, relabelled with the region of ``state``."""
    region = STATE_REGIONS.get((state or "").upper(), DEFAULT_SALES_REP.region)
    return SalesRep(
        id=None,
        name=DEFAULT_SALES_REP.name,
        email=DEFAULT_SALES_REP.email,
        region=region,
    )


@dataclass(frozen=True)
class LeadCreationResult:
    lead_id: int
    company_id: int
    contact_id: int
    sales_rep: SalesRep


class LeadRepository:
    """Persists one contact-form submission as company, contact, lead and interaction.

    All writes share a single transaction: either every row is committed or
    none is.
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def _insert(self, model):
        dialect = postgresql if self.database.is_postgres else sqlite
        return dialect.insert(model)

    async def create_lead(self, submission: ContactSubmission) -> LeadCreationResult:
        if not await self.database.test_connection():
            raise DatabaseError(DATABASE_UNAVAILABLE_MESSAGE)

        async with self.database.transaction() as session:
            company_id = await self._upsert_company(session, submission)
            contact_id = await self._upsert_contact(session, company_id, submission)
            sales_rep = await self._resolve_sales_rep(session, submission.state)
            lead_id = await self._insert_lead(
                session,
                company_id=company_id,
                contact_id=contact_id,
                sales_rep=sales_rep,
                submission=submission,
            )
            await self._record_interaction(session, lead_id, sales_rep)

        logger.info(
            "lead.created",
            lead_id=lead_id,
            company_id=company_id,
            contact_id=contact_id,
            sales_rep=sales_rep.name,
            region=sales_rep.region,
            email=redact_email(submission.email),
        )
        return LeadCreationResult(
            lead_id=lead_id,
            company_id=company_id,
            contact_id=contact_id,
            sales_rep=sales_rep,
        )

    async def _upsert_company(self, session: AsyncSession, submission: ContactSubmission) -> int:
        values = {
            "name": submission.company or INDIVIDUAL_COMPANY_NAME,
            "cnpj": submission.cnpj or None,
            "number_of_employees": submission.number_of_employees or DEFAULT_EMPLOYEES,
            "state": submission.state or DEFAULT_STATE,
            "city": submission.city or DEFAULT_CITY,
        }

        stmt = self._insert(Company).values(**values)
        if values["cnpj"]:
            # One row per CNPJ; a repeat submission refreshes the company data.
            stmt = stmt.on_conflict_do_update(
                index_elements=[Company.cnpj],
                set_={
                    "name": stmt.excluded.name,
                    "number_of_employees": stmt.excluded.number_of_employees,
                    "state": stmt.excluded.state,
                    "city": stmt.excluded.city,
                    "updated_at": func.now(),
                },
            )
        company_id = (await session.execute(stmt.returning(Company.id))).scalar_one()

        logger.debug("company.upserted", company_id=company_id, has_cnpj=bool(values["cnpj"]))
        return company_id

    async def _upsert_contact(
        self,
        session: AsyncSession,
        company_id: int,
        submission: ContactSubmission,
    ) -> int:
        stmt = self._insert(Contact).values(
            company_id=company_id,
            name=submission.name,
            email=submission.email,
            phone=submission.phone or None,
            is_primary=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Contact.company_id, Contact.email],
            set_={
                "name": stmt.excluded.name,
                "phone": stmt.excluded.phone,
                "updated_at": func.now(),
            },
        )
        contact_id = (await session.execute(stmt.returning(Contact.id))).scalar_one()

        logger.debug("contact.upserted", contact_id=contact_id, company_id=company_id)
        return contact_id

    async def _resolve_sales_rep(self, session: AsyncSession, state: Optional[str]) -> SalesRep:
        # Savepoint: a failed lookup must not poison the outer transaction.
        try:
            async with session.begin_nested():
                result = await session.execute(
                    select(
                        SalesRepresentative.id,
                        SalesRepresentative.name,
                        SalesRepresentative.email,
                        SalesRepresentative.region,
                    )
                    .where(SalesRepresentative.is_active.is_(True))
                    .order_by(SalesRepresentative.id)
                    .limit(1)
                )
                row = result.first()
        except SQLAlchemyError as e:
            logger.warning("sales_rep.lookup_failed", error=str(e))
            return fallback_sales_rep(state)

        if row is None:
            logger.warning("sales_rep.none_active", state=state or None)
            return fallback_sales_rep(state)

        return SalesRep(id=row.id, name=row.name, email=row.email, region=row.region)

    async def _insert_lead(
        self,
        session: AsyncSession,
        *,
        company_id: int,
        contact_id: int,
        sales_rep: SalesRep,
        submission: ContactSubmission,
    ) -> int:
        lead = Lead(
            company_id=company_id,
            contact_id=contact_id,
            sales_rep_id=sales_rep.id,
            service_of_interest=submission.service_of_interest or DEFAULT_SERVICE,
            message=submission.message,
            status=LEAD_STATUS_NEW,
            source=LEAD_SOURCE_CONTACT_FORM,
            priority=LEAD_PRIORITY_DEFAULT,
        )
        session.add(lead)
        await session.flush()
        return lead.id

    async def _record_interaction(
        self,
        session: AsyncSession,
        lead_id: int,
        sales_rep: SalesRep,
    ) -> None:
        # The interaction is an audit trail entry; losing it must not lose the lead.
        try:
            async with session.begin_nested():
                session.add(
                    Interaction(
                        lead_id=lead_id,
                        sales_rep_id=sales_rep.id,
                        interaction_type=INTERACTION_TYPE,
                        subject=INTERACTION_SUBJECT,
                        description=INTERACTION_DESCRIPTION,
                    )
                )
        except SQLAlchemyError as e:
            logger.warning("interaction.insert_failed", lead_id=lead_id, error=str(e))

    async def seed_sales_rep(self, name: str, email: str, region: str = "Nacional") -> int:
        """Insert (or reactivate) a sales representative; used by the CLI."""
        async with self.database.transaction() as session:
            stmt = self._insert(SalesRepresentative).values(
                name=name,
                email=email.lower(),
                region=region,
                is_active=True,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[SalesRepresentative.email],
                set_={"name": stmt.excluded.name, "region": stmt.excluded.region, "is_active": True},
            )
            rep_id = (await session.execute(stmt.returning(SalesRepresentative.id))).scalar_one()

        logger.info("sales_rep.seeded", sales_rep_id=rep_id, region=region)
        return rep_id
