"""
Module: budget_kernel.db.base
Responsibility: Declarative base classes for every ORM model of the budget
    core.  Fixes the UUID primary-key convention, the column type map, the
    audit columns, and the tenant/version columns that the entity store
    relies on for scoping and compare-and-swap updates.
Architecture position: Kernel > DB.  Lowest-level import target; must not
    import from store/, domain/ or any outer package.

Invariants enforced:
    - Decimal maps to Money (NUMERIC(38, 9)).  Money is never handed to
      callers as a float.
    - Every tenant-scoped row carries tenant_id and a version counter that
      starts at 1 and is incremented by every store update.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) so SQLite and PostgreSQL share one schema."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Money(TypeDecorator):
    """
    Decimal money column.

    PostgreSQL stores NUMERIC(38, 9) natively.  SQLite has no decimal type
    and keeps the value as REAL; it is read back through the shortest float
    repr, which is exact up to 15 significant digits.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(Numeric(38, 9, asdecimal=False))
        return dialect.type_descriptor(self.impl)

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name != "sqlite":
            return value
        return float(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class Base(DeclarativeBase):
    """Declarative base with a uuid4 primary key and the shared type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Money(),
        datetime: DateTime(timezone=True),
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
    Abstract base with audit timestamps and actor ids.

    created_at/updated_at fall back to the database clock, but the entity
    store always writes them explicitly from the injected Clock so ordering
    by created_at is deterministic under test.
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

    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)

    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


class TenantScopedBase(TrackedBase):
    """
    Abstract base for rows owned by a tenant.

    Contract:
        tenant_id is immutable after insert.  version is the optimistic
        concurrency token: the store's conditional update matches on it and
        increments it in the same statement.
    """

    __abstract__ = True

    # Plain Integer keeps SQLite happy with a server default
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )

    tenant_id: Mapped[PyUUID] = mapped_column(
        UUIDString(), nullable=False, index=True
    )


UUID = PyUUID
