"""
Module: crm_kernel.models.stock_movement
Responsibility: ORM persistence for the append-only stock movement log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE through the ORM
      (crm_kernel.db.immutability).
    - new_level - previous_level == quantity for every row.  Written by
      StockLedgerService from the level returned by the stock UPDATE.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    StockMovement IS the audit trail of inventory.  Every change to an
    item's stock_level has exactly one movement explaining who, when, why,
    and at what price.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import Base, OrgScopedMixin, UUIDString


class MovementType(str, Enum):
    """Kinds of stock movement.

    Contract: SALE and DAMAGE carry negative quantities; RETURN, RESTOCK and
    INITIAL positive ones; ADJUSTMENT (correction) either sign.
    """

    SALE = "SALE"
    RETURN = "RETURN"
    RESTOCK = "RESTOCK"
    ADJUSTMENT = "ADJUSTMENT"
    DAMAGE = "DAMAGE"
    INITIAL = "INITIAL"


# Types a user may record through a manual adjustment
MANUAL_ADJUSTMENT_TYPES: frozenset[MovementType] = frozenset(
    {MovementType.RESTOCK, MovementType.ADJUSTMENT, MovementType.DAMAGE}
)


class ReferenceType(str, Enum):
    """What caused the movement."""

    INVOICE = "INVOICE"
    MANUAL = "MANUAL"
    IMPORT = "IMPORT"


class ActorType(str, Enum):
    """Who performed the movement."""

    USER = "USER"
    AI_AGENT = "AI_AGENT"
    SYSTEM = "SYSTEM"


class StockMovement(OrgScopedMixin, Base):
    """
    One immutable change to one inventory item's stock level.

    Contract:
        Rows are created by StockLedgerService only and never modified.

    Guarantees:
        - quantity is signed; previous_level + quantity == new_level.
        - unit_price is frozen at transaction time for SALE and RETURN.
        - reference_type/reference_id identify the causing document.

    Non-goals:
        - Does not enforce ordering between concurrent movements; the
          level pair of each row is exact, the chain order is created_at.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movement_item", "inventory_item_id", "created_at"),
        Index("idx_movement_org", "org_id"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
    )

    inventory_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_items.id"),
        nullable=False,
    )

    type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    # Signed delta
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    previous_level: Mapped[Decimal] = mapped_column(nullable=False)

    new_level: Mapped[Decimal] = mapped_column(nullable=False)

    reference_type: Mapped[ReferenceType] = mapped_column(String(20), nullable=False)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Price at transaction time
    unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    created_by_type: Mapped[ActorType] = mapped_column(
        String(20),
        nullable=False,
        default=ActorType.USER,
    )

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    @property
    def is_consistent(self) -> bool:
        """True iff the stored level pair matches the signed quantity."""
        return self.new_level - self.previous_level == self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.type} {self.quantity} "
            f"({self.previous_level} -> {self.new_level})>"
        )
