# contact_api/models/__init__.py
"""
SQLAlchemy ORM models for the lead-capture schema.
"""

from contact_api.models.company import Company
from contact_api.models.contact import Contact
from contact_api.models.interaction import Interaction
from contact_api.models.lead import Lead
from contact_api.models.sales_representative import SalesRepresentative

__all__ = [
    "Company",
    "Contact",
    "Interaction",
    "Lead",
    "SalesRepresentative",
]
