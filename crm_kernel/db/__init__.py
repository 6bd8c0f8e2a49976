"""Database layer - engine, base classes, types, and immutability."""

from crm_kernel.db.base import UUID, Base, OrgScopedMixin, TimestampedBase, UUIDString
from crm_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
    transaction_scope,
)
from crm_kernel.db.types import Money, Quantity, positive_quantity, to_quantity

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "transaction_scope",
    "create_tables",
    "Base",
    "OrgScopedMixin",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Quantity",
    "to_quantity",
    "positive_quantity",
]
