"""
StockLedgerService -- deduct, restore and adjust inventory with a movement log.

Responsibility:
    The only code path that changes ``InventoryItem.stock_level``.  Every
    change is paired with exactly one immutable ``StockMovement`` written in
    the same transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only: the caller owns the
    transaction (see ``crm_services.invoice_inventory`` for the standard
    unit of work).

Invariants enforced:
    NO_OVERSELL -- Two barriers:
        1. Preflight ``SELECT ... FOR UPDATE`` (ordered by id) locks every
           referenced row on PostgreSQL; stock is validated against the
           locked values before any write.
        2. Every write is a compare-and-set UPDATE
           (``SET stock_level = :new WHERE stock_level = :previous``) with
           the new level computed in Decimal from the locked row.  On
           backends without row locks (SQLite) this check alone rejects a
           lost race with StockConflictError.
    MOVEMENT_CONSISTENCY -- previous_level and new_level are the two sides of
        the compare-and-set, so they hold only if the UPDATE matched.
    LEDGER_ATOMICITY -- all validation happens before the first write; any
        error after a write propagates so the caller rolls everything back.
    PRICE_FREEZE -- SALE movements store the item price returned by the same
        UPDATE ... RETURNING; RETURN movements store the invoice line price.

Failure modes:
    - ItemNotFoundError / ItemInactiveError -- unknown or discontinued item.
    - InsufficientStockError -- carries every shortfall of the request.
    - InvalidAdjustmentError -- bad movement type or level would go negative.
    - InvalidQuantityError -- zero, negative, float or non-numeric quantity.
    - StockConflictError -- compare-and-set matched no row (concurrent writer).

Audit relevance:
    restore_stock is NOT idempotent.  Calling it twice for the same invoice
    credits the stock twice; callers must only restore on the status
    transition into cancelled/void.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update

from crm_kernel.db.types import ZERO, to_quantity
from crm_kernel.domain.dtos import (
    DeductedItem,
    InventoryItemInfo,
    RestoredItem,
    StockAdjustmentResult,
    StockDeductionLine,
    StockDeductionResult,
    StockRestorationResult,
    as_item_id,
    merge_deduction_lines,
)
from crm_kernel.exceptions import (
    InsufficientStockError,
    InvalidAdjustmentError,
    InvalidQuantityError,
    ItemInactiveError,
    ItemNotFoundError,
    StockConflictError,
    StockShortfall,
)
from crm_kernel.logging_config import get_logger
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.invoice import Invoice, InvoiceItem
from crm_kernel.models.stock_movement import (
    MANUAL_ADJUSTMENT_TYPES,
    ActorType,
    MovementType,
    ReferenceType,
    StockMovement,
)
from crm_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

RESTORE_NOTE = "Stock restored due to invoice cancellation/void"
INITIAL_STOCK_REASON = "Initial stock on item creation"


class StockLedgerService(BaseService[InventoryItem]):
    """
    Stock ledger engine.

    Contract:
        Each public method performs one ledger operation inside the caller's
        transaction and flushes.  On any exception the caller must roll back.

    Guarantees:
        - No stock level goes below zero through this service.
        - One StockMovement per item changed, with
          new_level - previous_level == quantity.
        - Failed validation writes nothing.

    Non-goals:
        - Does not commit, roll back or retry.
        - Does not create or modify invoices.
    """

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_items(self, org_id: UUID, item_ids: Iterable[UUID]) -> dict[UUID, InventoryItem]:
        """Load items of the org with row locks, in id order."""
        ids = sorted(set(item_ids), key=str)
        if not ids:
            return {}
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.org_id == org_id, InventoryItem.id.in_(ids))
            .order_by(InventoryItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {item.id: item for item in self.session.execute(stmt).scalars()}

    def _apply_delta(
        self,
        item_id: UUID,
        org_id: UUID,
        previous: Decimal,
        delta: Decimal,
    ) -> tuple[Decimal, Decimal] | None:
        """
        Move an item's stock level from a locked previous value by delta.

        The new level is computed here in Decimal and written with a
        compare-and-set ``WHERE stock_level = :previous``.  No arithmetic or
        ordering comparison on the level runs inside the database, so
        SQLite's float storage of Numeric cannot skew the result.

        Returns:
            (new_level, unit_price), or None if the level would go negative
            or no row still holds ``previous`` (item gone, or a concurrent
            writer moved it).
        """
        new_level = previous + delta
        if new_level < ZERO:
            return None
        stmt = (
            update(InventoryItem)
            .where(
                InventoryItem.id == item_id,
                InventoryItem.org_id == org_id,
                InventoryItem.stock_level == previous,
            )
            .values(stock_level=new_level)
            .returning(InventoryItem.unit_price)
            .execution_options(synchronize_session=False)
        )
        row = self.session.execute(stmt).one_or_none()

        # The identity map copy is stale after a statement-level UPDATE.
        cached = self.session.identity_map.get(
            self.session.identity_key(InventoryItem, item_id)
        )
        if cached is not None:
            self.session.expire(cached, ["stock_level", "updated_at"])

        if row is None:
            return None
        return new_level, row[0]

    def _record_movement(
        self,
        *,
        org_id: UUID,
        inventory_item_id: UUID,
        movement_type: MovementType,
        quantity: Decimal,
        new_level: Decimal,
        reference_type: ReferenceType,
        actor_id: UUID,
        actor_type: ActorType,
        reference_id: str | None = None,
        unit_price: Decimal | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        movement = StockMovement(
            org_id=org_id,
            inventory_item_id=inventory_item_id,
            type=movement_type.value,
            quantity=quantity,
            previous_level=new_level - quantity,
            new_level=new_level,
            reference_type=reference_type.value,
            reference_id=reference_id,
            unit_price=unit_price,
            created_by_id=actor_id,
            created_by_type=actor_type.value,
            reason=reason,
            notes=notes,
            created_at=self._clock.now(),
        )
        self.session.add(movement)
        return movement

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def deduct_stock(
        self,
        items: Iterable[StockDeductionLine],
        org_id: UUID,
        invoice_id: UUID,
        actor_id: UUID,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockDeductionResult:
        """
        Deduct stock for the lines of an invoice.

        Duplicate item ids are merged before validation.  Either every item
        is deducted or nothing is.

        Args:
            items: Requested deductions (quantity > 0 each).
            org_id: Tenant scope; items of other orgs are "not found".
            invoice_id: Recorded as the movements' reference_id.
            actor_id: Who performs the deduction.
            actor_type: USER, AI_AGENT or SYSTEM.

        Returns:
            StockDeductionResult with one DeductedItem per distinct item.

        Raises:
            ItemNotFoundError, ItemInactiveError, InsufficientStockError,
            StockConflictError.
        """
        actor = ActorType(actor_type)
        requested = merge_deduction_lines(items)
        if not requested:
            return StockDeductionResult(success=True, deducted_items=())

        locked = self._lock_items(org_id, requested.keys())

        shortfalls: list[StockShortfall] = []
        for item_id, quantity in requested.items():
            item = locked.get(item_id)
            if item is None:
                raise ItemNotFoundError(str(item_id))
            if not item.is_active:
                raise ItemInactiveError(str(item_id))
            if item.stock_level < quantity:
                shortfalls.append(
                    StockShortfall(
                        inventory_item_id=str(item_id),
                        name=item.name,
                        sku=item.sku,
                        available=item.stock_level,
                        requested=quantity,
                    )
                )

        if shortfalls:
            logger.info(
                "stock_deduction_rejected",
                extra={
                    "org_id": str(org_id),
                    "invoice_id": str(invoice_id),
                    "shortfall_count": len(shortfalls),
                },
            )
            raise InsufficientStockError(shortfalls)

        deducted: list[DeductedItem] = []
        for item_id, quantity in requested.items():
            previous = to_quantity(locked[item_id].stock_level)
            row = self._apply_delta(item_id, org_id, previous, -quantity)
            if row is None:
                logger.warning(
                    "stock_conflict_detected",
                    extra={
                        "org_id": str(org_id),
                        "inventory_item_id": str(item_id),
                        "requested": str(quantity),
                    },
                )
                raise StockConflictError(str(item_id), quantity)

            new_level, price_at_sale = row
            self._record_movement(
                org_id=org_id,
                inventory_item_id=item_id,
                movement_type=MovementType.SALE,
                quantity=-quantity,
                new_level=new_level,
                reference_type=ReferenceType.INVOICE,
                reference_id=str(invoice_id),
                unit_price=price_at_sale,
                actor_id=actor_id,
                actor_type=actor,
            )
            deducted.append(
                DeductedItem(
                    inventory_item_id=item_id,
                    quantity=quantity,
                    previous_level=new_level + quantity,
                    new_level=new_level,
                    price_at_sale=price_at_sale,
                )
            )

        self.session.flush()
        logger.info(
            "stock_deducted",
            extra={
                "org_id": str(org_id),
                "invoice_id": str(invoice_id),
                "item_count": len(deducted),
            },
        )
        return StockDeductionResult(success=True, deducted_items=tuple(deducted))

    def restore_stock(
        self,
        invoice_id: UUID,
        org_id: UUID,
        actor_id: UUID,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockRestorationResult:
        """
        Return the stock of an invoice's inventory-linked lines.

        Lines without an inventory link are ignored.  Lines whose item no
        longer exists in the org are skipped and logged.  Not idempotent.

        Returns:
            StockRestorationResult with the number of lines restored.
        """
        actor = ActorType(actor_type)
        lines = self.session.execute(
            select(InvoiceItem)
            .join(Invoice, InvoiceItem.invoice_id == Invoice.id)
            .where(
                Invoice.id == invoice_id,
                Invoice.org_id == org_id,
                InvoiceItem.inventory_item_id.is_not(None),
            )
            .order_by(InvoiceItem.sort_order, InvoiceItem.id)
        ).scalars().all()

        locked = self._lock_items(org_id, (line.inventory_item_id for line in lines))
        levels = {item_id: to_quantity(item.stock_level) for item_id, item in locked.items()}

        restored: list[RestoredItem] = []
        skipped: list[UUID] = []
        for line in lines:
            quantity = to_quantity(line.quantity)
            if quantity <= ZERO:
                skipped.append(line.inventory_item_id)
                continue

            if line.inventory_item_id not in levels:
                logger.warning(
                    "stock_restore_item_missing",
                    extra={
                        "org_id": str(org_id),
                        "invoice_id": str(invoice_id),
                        "inventory_item_id": str(line.inventory_item_id),
                    },
                )
                skipped.append(line.inventory_item_id)
                continue

            row = self._apply_delta(
                line.inventory_item_id, org_id, levels[line.inventory_item_id], quantity
            )
            if row is None:
                raise StockConflictError(str(line.inventory_item_id), quantity)

            new_level, _ = row
            levels[line.inventory_item_id] = new_level
            self._record_movement(
                org_id=org_id,
                inventory_item_id=line.inventory_item_id,
                movement_type=MovementType.RETURN,
                quantity=quantity,
                new_level=new_level,
                reference_type=ReferenceType.INVOICE,
                reference_id=str(invoice_id),
                unit_price=line.unit_price,
                notes=RESTORE_NOTE,
                actor_id=actor_id,
                actor_type=actor,
            )
            restored.append(
                RestoredItem(
                    inventory_item_id=line.inventory_item_id,
                    quantity=quantity,
                    previous_level=new_level - quantity,
                    new_level=new_level,
                )
            )

        self.session.flush()
        logger.info(
            "stock_restored",
            extra={
                "org_id": str(org_id),
                "invoice_id": str(invoice_id),
                "restored_count": len(restored),
                "skipped_count": len(skipped),
            },
        )
        return StockRestorationResult(
            success=True,
            restored_item_count=len(restored),
            restored_items=tuple(restored),
            skipped_item_ids=tuple(skipped),
        )

    def adjust_stock(
        self,
        inventory_item_id: UUID,
        org_id: UUID,
        quantity: Decimal | int | str,
        movement_type: MovementType | str,
        actor_id: UUID,
        reason: str | None = None,
        notes: str | None = None,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockAdjustmentResult:
        """
        Manually change an item's stock by a signed quantity.

        Args:
            quantity: Signed delta; positive adds stock, negative removes it.
            movement_type: RESTOCK, ADJUSTMENT or DAMAGE.

        Raises:
            InvalidAdjustmentError: Bad movement type, or the level would
                go below zero.
            InvalidQuantityError: Zero or unusable quantity.
            ItemNotFoundError, ItemInactiveError, StockConflictError.
        """
        try:
            kind = MovementType(movement_type)
        except ValueError:
            kind = None
        if kind not in MANUAL_ADJUSTMENT_TYPES:
            raise InvalidAdjustmentError(
                str(inventory_item_id),
                current_level=None,
                attempted_delta=None,
                reason=f"Invalid adjustment type: {movement_type}",
            )

        delta = to_quantity(quantity)
        if delta == ZERO:
            raise InvalidQuantityError(quantity, "adjustment quantity cannot be zero")

        actor = ActorType(actor_type)
        item_id = as_item_id(inventory_item_id)
        item = self._lock_items(org_id, [item_id]).get(item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        if not item.is_active:
            raise ItemInactiveError(str(item_id))

        if item.stock_level + delta < ZERO:
            logger.info(
                "stock_adjustment_rejected",
                extra={
                    "org_id": str(org_id),
                    "inventory_item_id": str(item_id),
                    "current_level": str(item.stock_level),
                    "attempted_delta": str(delta),
                },
            )
            raise InvalidAdjustmentError(str(item_id), item.stock_level, delta)

        row = self._apply_delta(item_id, org_id, to_quantity(item.stock_level), delta)
        if row is None:
            raise StockConflictError(str(item_id), delta)

        new_level, _ = row
        movement = self._record_movement(
            org_id=org_id,
            inventory_item_id=item_id,
            movement_type=kind,
            quantity=delta,
            new_level=new_level,
            reference_type=ReferenceType.MANUAL,
            reason=reason,
            notes=notes,
            actor_id=actor_id,
            actor_type=actor,
        )
        self.session.flush()

        logger.info(
            "stock_adjusted",
            extra={
                "org_id": str(org_id),
                "inventory_item_id": str(item_id),
                "movement_type": kind.value,
                "quantity": str(delta),
                "new_level": str(new_level),
            },
        )
        return StockAdjustmentResult(
            success=True,
            previous_level=new_level - delta,
            new_level=new_level,
            movement_id=movement.id,
        )

    def record_initial_stock(
        self,
        inventory_item_id: UUID,
        org_id: UUID,
        initial_stock: Decimal | int | str,
        actor_id: UUID,
        actor_type: ActorType | str = ActorType.USER,
    ) -> UUID | None:
        """
        Write the INITIAL movement (0 -> initial_stock) of a new item.

        The item row already carries initial_stock as its level; this only
        explains it in the log.  No-op for zero.

        Returns:
            The movement id, or None when initial_stock is zero.
        """
        quantity = to_quantity(initial_stock)
        if quantity < ZERO:
            raise InvalidQuantityError(initial_stock, "initial stock cannot be negative")
        if quantity == ZERO:
            return None

        item_id = as_item_id(inventory_item_id)
        exists = self.session.execute(
            select(InventoryItem.id).where(
                InventoryItem.id == item_id,
                InventoryItem.org_id == org_id,
            )
        ).scalar_one_or_none()
        if exists is None:
            raise ItemNotFoundError(str(item_id))

        movement = self._record_movement(
            org_id=org_id,
            inventory_item_id=item_id,
            movement_type=MovementType.INITIAL,
            quantity=quantity,
            new_level=quantity,
            reference_type=ReferenceType.MANUAL,
            reason=INITIAL_STOCK_REASON,
            actor_id=actor_id,
            actor_type=ActorType(actor_type),
        )
        self.session.flush()
        return movement.id

    def create_item(
        self,
        org_id: UUID,
        name: str,
        sku: str,
        actor_id: UUID,
        stock_level: Decimal | int | str = 0,
        reorder_level: Decimal | int | str = 0,
        unit_price: Decimal | int | str = 0,
        cost_price: Decimal | int | str | None = None,
        unit: str = "pcs",
        category: str | None = None,
        description: str | None = None,
    ) -> InventoryItemInfo:
        """
        Create an inventory item together with its INITIAL movement.

        Returns:
            InventoryItemInfo DTO of the new item.
        """
        initial = to_quantity(stock_level)
        if initial < ZERO:
            raise InvalidQuantityError(stock_level, "initial stock cannot be negative")

        item = InventoryItem(
            org_id=org_id,
            name=name,
            sku=sku,
            description=description,
            stock_level=initial,
            reorder_level=to_quantity(reorder_level),
            unit=unit,
            unit_price=to_quantity(unit_price),
            cost_price=to_quantity(cost_price) if cost_price is not None else None,
            category=category,
            is_active=True,
        )
        self.session.add(item)
        self.session.flush()

        self.record_initial_stock(item.id, org_id, initial, actor_id)

        logger.info(
            "inventory_item_created",
            extra={"org_id": str(org_id), "inventory_item_id": str(item.id), "sku": sku},
        )
        return InventoryItemInfo.from_model(item)
