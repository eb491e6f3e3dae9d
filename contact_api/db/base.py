# contact_api/db/base.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# Same names on PostgreSQL and SQLite.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Never rendered in repr: contact data is personal.
_REPR_HIDDEN = {"email", "phone", "message", "cnpj", "created_at", "updated_at"}


class Base(DeclarativeBase):
    """Declarative base for the lead-capture schema."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    def __repr__(self) -> str:
        shown = [
            f"{column.name}={getattr(self, column.name)!r}"
            for column in self.__table__.columns
            if column.name not in _REPR_HIDDEN and getattr(self, column.name) is not None
        ]
        return f"<{self.__class__.__name__}({', '.join(shown)})>"


class TimestampMixin:
    """created_at / updated_at maintained by the database."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


__all__ = [
    "Base",
    "NAMING_CONVENTION",
    "TimestampMixin",
]
