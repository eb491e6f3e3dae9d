# contact_api/models/company.py
from __future__ import annotations

from sqlalchemy import Column, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from contact_api.db.base import Base, TimestampMixin


class Company(TimestampMixin, Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    # NULL for the "Pessoa Física" placeholder rows; those are never deduplicated.
    cnpj = Column(String(18), nullable=True)
    number_of_employees = Column(String(50), nullable=False, server_default="Não informado")
    state = Column(String(2), nullable=False, server_default="SP")
    city = Column(String(50), nullable=False, server_default="Não informada")

    contacts = relationship("Contact", back_populates="company")
    leads = relationship("Lead", back_populates="company")

    __table_args__ = (
        UniqueConstraint("cnpj", name="uq_companies_cnpj"),
        Index("idx_companies_state", "state"),
    )
