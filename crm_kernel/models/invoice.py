"""
Module: crm_kernel.models.invoice
Responsibility: Minimal ORM mapping of invoices and their line items, as read
    by the stock ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

The invoicing feature owns these tables.  The kernel maps only the columns
the stock ledger reads and never writes them.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_kernel.db.base import OrgScopedMixin, TimestampedBase, UUIDString


class Invoice(OrgScopedMixin, TimestampedBase):
    """Invoice header."""

    __tablename__ = "invoices"

    __table_args__ = (Index("idx_invoice_org", "org_id"),)

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")

    total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceItem.sort_order",
    )


class InvoiceItem(TimestampedBase):
    """Invoice line, optionally linked to an inventory item."""

    __tablename__ = "invoice_items"

    __table_args__ = (Index("idx_invoice_item_invoice", "invoice_id"),)

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    inventory_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_items.id"),
        nullable=True,
    )

    sort_order: Mapped[int] = mapped_column(nullable=False, default=0)

    invoice: Mapped[Invoice] = relationship(back_populates="items")
