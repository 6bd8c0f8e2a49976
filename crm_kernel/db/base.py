"""
Module: crm_kernel.db.base
Responsibility: Declarative foundation shared by every CRM table: string
    UUID keys, Decimal columns at Numeric(38, 9), the tenant column and
    created/updated timestamps.
Architecture position: Kernel > DB.  Imported by every model file; imports
    nothing from the rest of the kernel.

Invariants enforced:
    - Every row has a uuid4 primary key stored as a 36-character string, so
      ids compare the same on PostgreSQL and SQLite.
    - Quantities, stock levels and prices are Decimal end to end.  A float
      column is never declared.
    - Tenant tables carry a non-null org_id; every kernel query filters on
      it.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """Python UUID in, String(36) on disk, Python UUID out."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(str(value))


class Base(DeclarativeBase):
    """Declarative base; maps annotations to the portable column types."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class OrgScopedMixin:
    """Tenant column.  Rows of one organization are invisible to another."""

    org_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)


class TimestampedBase(Base):
    """
    Mutable entities (items, invoices, integrations) with row timestamps.

    Append-only records (stock movements, webhook deliveries) set their own
    created_at from the injected clock and derive from Base instead.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


UUID = PyUUID
