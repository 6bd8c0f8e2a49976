"""
DTOs -- Pure domain data transfer objects for the stock ledger.

Responsibility:
    Defines the immutable data structures that cross the ledger boundary:
    deduction input lines, operation results, availability reports,
    movement views and ledger verification reports.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Services and selectors convert ORM rows into these DTOs; callers never
    receive ORM entities from the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from crm_kernel.db.types import positive_quantity
from crm_kernel.domain.stock_status import calculate_margin, get_stock_status
from crm_kernel.exceptions import ItemNotFoundError

if TYPE_CHECKING:
    from crm_kernel.models.inventory import InventoryItem as InventoryItemModel
    from crm_kernel.models.stock_movement import StockMovement as StockMovementModel


def as_item_id(value: object) -> UUID:
    """Normalize an inventory item id; unparseable ids cannot exist."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ItemNotFoundError(str(value)) from None


def _plain(value: object) -> str:
    return str(getattr(value, "value", value))


@dataclass(frozen=True)
class StockDeductionLine:
    """One requested deduction: an item and a positive quantity."""

    inventory_item_id: UUID
    quantity: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "inventory_item_id", as_item_id(self.inventory_item_id))
        object.__setattr__(self, "quantity", positive_quantity(self.quantity))


def merge_deduction_lines(lines: Iterable[StockDeductionLine]) -> dict[UUID, Decimal]:
    """
    Sum quantities of lines that reference the same item.

    Preserves first-appearance order of item ids.
    """
    merged: dict[UUID, Decimal] = {}
    for line in lines:
        merged[line.inventory_item_id] = (
            merged.get(line.inventory_item_id, Decimal("0")) + line.quantity
        )
    return merged


@dataclass(frozen=True)
class DeductedItem:
    inventory_item_id: UUID
    quantity: Decimal
    previous_level: Decimal
    new_level: Decimal
    price_at_sale: Decimal


@dataclass(frozen=True)
class StockDeductionResult:
    success: bool
    deducted_items: tuple[DeductedItem, ...] = ()


@dataclass(frozen=True)
class RestoredItem:
    inventory_item_id: UUID
    quantity: Decimal
    previous_level: Decimal
    new_level: Decimal


@dataclass(frozen=True)
class StockRestorationResult:
    success: bool
    restored_item_count: int
    restored_items: tuple[RestoredItem, ...] = ()
    skipped_item_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class StockAdjustmentResult:
    success: bool
    previous_level: Decimal
    new_level: Decimal
    movement_id: UUID | None = None


@dataclass(frozen=True)
class StockCheckLine:
    """Availability of one requested item.

    Unknown or inactive items are reported with name/sku "Unknown" and zero
    availability.
    """

    inventory_item_id: UUID
    name: str
    sku: str
    requested: Decimal
    available: Decimal

    @property
    def sufficient(self) -> bool:
        return self.available >= self.requested

    @property
    def shortfall(self) -> Decimal | None:
        if self.sufficient:
            return None
        return self.requested - self.available


@dataclass(frozen=True)
class StockCheckResult:
    items: tuple[StockCheckLine, ...] = ()

    @property
    def insufficient_items(self) -> tuple[StockCheckLine, ...]:
        return tuple(line for line in self.items if not line.sufficient)

    @property
    def valid(self) -> bool:
        return not self.insufficient_items


@dataclass(frozen=True)
class MovementInfo:
    """Read view of one StockMovement row."""

    id: UUID
    inventory_item_id: UUID
    type: str
    quantity: Decimal
    previous_level: Decimal
    new_level: Decimal
    reference_type: str
    reference_id: str | None
    unit_price: Decimal | None
    created_by_id: UUID
    created_by_type: str
    reason: str | None
    notes: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, movement: StockMovementModel) -> MovementInfo:
        return cls(
            id=movement.id,
            inventory_item_id=movement.inventory_item_id,
            type=_plain(movement.type),
            quantity=movement.quantity,
            previous_level=movement.previous_level,
            new_level=movement.new_level,
            reference_type=_plain(movement.reference_type),
            reference_id=movement.reference_id,
            unit_price=movement.unit_price,
            created_by_id=movement.created_by_id,
            created_by_type=_plain(movement.created_by_type),
            reason=movement.reason,
            notes=movement.notes,
            created_at=movement.created_at,
        )


@dataclass(frozen=True)
class InventoryItemInfo:
    """Read view of one InventoryItem with derived status fields."""

    id: UUID
    name: str
    sku: str
    stock_level: Decimal
    reorder_level: Decimal
    unit: str
    unit_price: Decimal
    cost_price: Decimal | None
    is_active: bool
    stock_status: str
    margin: Decimal | None

    @classmethod
    def from_model(cls, item: InventoryItemModel) -> InventoryItemInfo:
        return cls(
            id=item.id,
            name=item.name,
            sku=item.sku,
            stock_level=item.stock_level,
            reorder_level=item.reorder_level,
            unit=item.unit,
            unit_price=item.unit_price,
            cost_price=item.cost_price,
            is_active=item.is_active,
            stock_status=get_stock_status(item.stock_level, item.reorder_level).value,
            margin=calculate_margin(item.unit_price, item.cost_price),
        )


@dataclass(frozen=True)
class LedgerVerification:
    """
    Result of replaying an item's movement log against its stock level.

    consistent is True iff every movement satisfies
    new_level - previous_level == quantity and the opening level plus the
    sum of all quantities equals the current stock level.
    """

    inventory_item_id: UUID
    movement_count: int
    opening_level: Decimal
    net_quantity: Decimal
    current_level: Decimal
    broken_movement_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def expected_level(self) -> Decimal:
        return self.opening_level + self.net_quantity

    @property
    def consistent(self) -> bool:
        return not self.broken_movement_ids and self.expected_level == self.current_level
