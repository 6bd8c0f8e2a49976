"""
Module: crm_kernel.models.inventory
Responsibility: ORM persistence for stock-keeping items of an organization.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - stock_level never goes negative through a ledger operation.  The
      CheckConstraint is the last line of defence; the stock ledger rejects
      such operations before they reach the database.
    - sku is unique within an organization (uq_inventory_org_sku).

Failure modes:
    - IntegrityError on duplicate sku within an org.
    - IntegrityError if a raw write tries to store a negative stock_level.

Audit relevance:
    stock_level is a cached running total of the movement log.  It is
    mutated only by StockLedgerService, which writes one StockMovement per
    change so the level can always be explained.
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import OrgScopedMixin, TimestampedBase


class InventoryItem(OrgScopedMixin, TimestampedBase):
    """
    A product or part whose quantity on hand the CRM tracks.

    Contract:
        Stock is never assigned directly by application code.  Deductions,
        restorations and adjustments go through StockLedgerService.

    Guarantees:
        - stock_level >= 0 (check constraint).
        - is_active False means discontinued: no new stock movements.

    Non-goals:
        - Does not track warehouse locations or lots.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("org_id", "sku", name="uq_inventory_org_sku"),
        CheckConstraint("stock_level >= 0", name="ck_inventory_stock_non_negative"),
        Index("idx_inventory_org", "org_id"),
        Index("idx_inventory_org_active", "org_id", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Quantity on hand (running total of movements)
    stock_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Reorder threshold for LOW_STOCK status
    reorder_level: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Display unit (pcs, kg, box)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="pcs")

    unit_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    cost_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<InventoryItem {self.sku}: {self.name} ({self.stock_level})>"
