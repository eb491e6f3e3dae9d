# contact_api/models/interaction.py
from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import relationship

from contact_api.db.base import Base


class Interaction(Base):
    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    sales_rep_id = Column(ForeignKey("sales_representatives.id", ondelete="SET NULL"), nullable=True)
    interaction_type = Column(String(50), nullable=False)
    subject = Column(String(200), nullable=False)
    description = Column(Text)
    interaction_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    lead = relationship("Lead", back_populates="interactions")
