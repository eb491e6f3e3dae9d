# contact_api/models/sales_representative.py
from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String, true

from contact_api.db.base import Base


class SalesRepresentative(Base):
    __tablename__ = "sales_representatives"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False, unique=True)
    region = Column(String(50), nullable=False, server_default="Nacional")
    is_active = Column(Boolean, nullable=False, server_default=true())

    __table_args__ = (
        Index("idx_sales_representatives_is_active", "is_active"),
    )
