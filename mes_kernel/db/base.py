"""
Module: mes_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the type annotation map that routes every
    ``Decimal`` through the exact ``Quantity`` column type, and the TrackedBase
    mixin for actor/timestamp attribution.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel; MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - UUID primary keys generated with uuid4.
    - Decimal quantities are exact on every backend (see db/types.py).
      NEVER use float for quantities.
    - TrackedBase provides created_at, updated_at, created_by and updated_by.
      Actors are free-form strings (user name or the ``SYSTEM`` sentinel).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from mes_kernel.db.types import Quantity


class UUIDString(TypeDecorator):
    """
    UUID stored as String(36) for cross-database portability.

    Binds UUID -> str and loads str -> UUID.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Quantity -- exact decimal, every backend.
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger -- safe for sequence counters.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Quantity(),
        datetime: DateTime(timezone=True),
        date: Date(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with timestamp and actor tracking.

    Guarantees:
        - created_at is set by the server on INSERT.
        - updated_at is set on INSERT and refreshed on every UPDATE.
        - created_by is required; updated_by is set by the mutating service.
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

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


UUID = PyUUID
