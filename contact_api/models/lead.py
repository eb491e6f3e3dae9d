# contact_api/models/lead.py
from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from contact_api.db.base import Base, TimestampMixin

LEAD_STATUS_NEW = "new"
LEAD_SOURCE_CONTACT_FORM = "website_contact_form"
LEAD_PRIORITY_DEFAULT = 2


class Lead(TimestampMixin, Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    contact_id = Column(ForeignKey("contacts.id", ondelete="RESTRICT"), nullable=False)
    # NULL when the lead went to the built-in fallback representative.
    sales_rep_id = Column(ForeignKey("sales_representatives.id", ondelete="SET NULL"), nullable=True)

    service_of_interest = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, server_default=LEAD_STATUS_NEW)
    source = Column(String(50), nullable=False, server_default=LEAD_SOURCE_CONTACT_FORM)
    priority = Column(Integer, nullable=False, server_default=str(LEAD_PRIORITY_DEFAULT))

    company = relationship("Company", back_populates="leads")
    interactions = relationship("Interaction", back_populates="lead")

    __table_args__ = (
        Index("idx_leads_status", "status"),
        Index("idx_leads_company_id", "company_id"),
        Index("idx_leads_sales_rep_id", "sales_rep_id"),
        CheckConstraint("length(message) > 0", name="check_message_not_empty"),
        CheckConstraint("priority BETWEEN 1 AND 5", name="check_priority_range"),
    )
