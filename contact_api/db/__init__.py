# contact_api/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from contact_api.db.base import Base
from contact_api.db.session import Database

__all__ = [
    "Base",
    "Database",
]
