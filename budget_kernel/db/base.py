"""
Module: budget_kernel.db.base
Responsibility: Declarative base classes for the SQLAlchemy ORM models
    backing the SQL document store.
Architecture position: Kernel > DB. Lowest-level import target for models.
    MUST NOT import from models/, selectors/, domain/, or outer layers.

Invariants enforced:
    - datetime maps to DateTime(timezone=True); timestamps are always aware.
    - TimestampedBase records created_at / updated_at for every row.
"""

from datetime import datetime
from typing import ClassVar

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all budget kernel models."""

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        int: BigInteger,
        str: String(255),
    }


class TimestampedBase(Base):
    """
    Abstract base with audit timestamps.

    Guarantees:
        - created_at is set by the server on INSERT and never changes.
        - updated_at is set on INSERT and refreshed on every UPDATE.
    """

    __abstract__ = True

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
