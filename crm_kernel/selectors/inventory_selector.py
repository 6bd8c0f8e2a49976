"""
Module: crm_kernel.selectors.inventory_selector
Responsibility: Read-only queries over inventory items and the stock
    movement log: availability checks, movement history, low-stock lists,
    SKU numbering and movement-chain verification.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only.  check_availability takes no locks; it is early feedback
      only.  The authoritative check happens inside
      StockLedgerService.deduct_stock under row locks.

Audit relevance:
    verify_movement_chain replays the movement log of one item and compares
    it to the cached stock level; any divergence means a write bypassed the
    ledger.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from crm_kernel.domain.dtos import (
    InventoryItemInfo,
    LedgerVerification,
    MovementInfo,
    StockCheckLine,
    StockCheckResult,
    StockDeductionLine,
    as_item_id,
    merge_deduction_lines,
)
from crm_kernel.exceptions import ItemNotFoundError
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.stock_movement import MovementType, StockMovement
from crm_kernel.selectors.base import BaseSelector

UNKNOWN = "Unknown"


class InventorySelector(BaseSelector[InventoryItem]):
    """Read side of the stock ledger."""

    model = InventoryItem

    def get_item(self, org_id: UUID, inventory_item_id: UUID) -> InventoryItemInfo | None:
        item = self.get_scoped(org_id, as_item_id(inventory_item_id))
        return InventoryItemInfo.from_model(item) if item else None

    def check_availability(
        self,
        org_id: UUID,
        items: Iterable[StockDeductionLine],
    ) -> StockCheckResult:
        """
        Compare requested quantities with current stock.

        Unknown and inactive items are reported as insufficient with zero
        availability and name/sku "Unknown".
        """
        requested = merge_deduction_lines(items)
        if not requested:
            return StockCheckResult(items=())

        found = {
            item.id: item
            for item in self.session.execute(
                self.org_scoped(org_id).where(
                    InventoryItem.id.in_(list(requested)),
                    InventoryItem.is_active.is_(True),
                )
            ).scalars()
        }

        lines = []
        for item_id, quantity in requested.items():
            item = found.get(item_id)
            if item is None:
                lines.append(
                    StockCheckLine(
                        inventory_item_id=item_id,
                        name=UNKNOWN,
                        sku=UNKNOWN,
                        requested=quantity,
                        available=Decimal("0"),
                    )
                )
            else:
                lines.append(
                    StockCheckLine(
                        inventory_item_id=item_id,
                        name=item.name,
                        sku=item.sku,
                        requested=quantity,
                        available=item.stock_level,
                    )
                )
        return StockCheckResult(items=tuple(lines))

    def list_movements(
        self,
        org_id: UUID,
        inventory_item_id: UUID | None = None,
        movement_type: MovementType | str | None = None,
        reference_type: str | None = None,
        reference_id: str | None = None,
        limit: int = 100,
    ) -> list[MovementInfo]:
        """Movements of the org, newest first."""
        stmt = select(StockMovement).where(StockMovement.org_id == org_id)
        if inventory_item_id is not None:
            stmt = stmt.where(StockMovement.inventory_item_id == as_item_id(inventory_item_id))
        if movement_type is not None:
            stmt = stmt.where(StockMovement.type == MovementType(movement_type).value)
        if reference_type is not None:
            stmt = stmt.where(StockMovement.reference_type == str(reference_type))
        if reference_id is not None:
            stmt = stmt.where(StockMovement.reference_id == str(reference_id))
        stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id).limit(limit)
        return [MovementInfo.from_model(m) for m in self.session.execute(stmt).scalars()]

    def get_low_stock_items(self, org_id: UUID, limit: int = 50) -> list[InventoryItemInfo]:
        """Active items at or below their reorder level, lowest stock first."""
        stmt = (
            self.org_scoped(org_id)
            .where(
                InventoryItem.is_active.is_(True),
                InventoryItem.stock_level <= InventoryItem.reorder_level,
            )
            .order_by(InventoryItem.stock_level, InventoryItem.sku)
            .limit(limit)
        )
        return [InventoryItemInfo.from_model(i) for i in self.session.execute(stmt).scalars()]

    def next_sku(self, org_id: UUID, prefix: str = "SKU") -> str:
        """Next sequential SKU of the form PREFIX-0001 within the org."""
        pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
        skus = self.session.execute(
            select(InventoryItem.sku).where(
                InventoryItem.org_id == org_id,
                InventoryItem.sku.startswith(f"{prefix}-", autoescape=True),
            )
        ).scalars()
        highest = 0
        for sku in skus:
            match = pattern.match(sku)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}-{highest + 1:04d}"

    def verify_movement_chain(self, org_id: UUID, inventory_item_id: UUID) -> LedgerVerification:
        """
        Replay an item's movements against its current stock level.

        The opening level is zero when the log starts with an INITIAL
        movement, otherwise the previous_level of the earliest movement.
        With no movements the opening level is the current level.

        Raises:
            ItemNotFoundError: If the item does not exist in the org.
        """
        item_id = as_item_id(inventory_item_id)
        item = self.get_scoped(org_id, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))

        movements = self.session.execute(
            select(StockMovement)
            .where(
                StockMovement.org_id == org_id,
                StockMovement.inventory_item_id == item_id,
            )
            .order_by(StockMovement.created_at, StockMovement.id)
        ).scalars().all()

        if not movements:
            opening = item.stock_level
        elif any(m.type == MovementType.INITIAL.value for m in movements):
            opening = Decimal("0")
        else:
            opening = movements[0].previous_level

        return LedgerVerification(
            inventory_item_id=item_id,
            movement_count=len(movements),
            opening_level=opening,
            net_quantity=sum((m.quantity for m in movements), Decimal("0")),
            current_level=item.stock_level,
            broken_movement_ids=tuple(m.id for m in movements if not m.is_consistent),
        )
