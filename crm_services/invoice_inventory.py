"""
crm_services.invoice_inventory -- Unit-of-work facade over the stock ledger.

Responsibility:
    The entry point invoice workflows call.  Each operation opens exactly
    one transaction, runs the ledger operation, commits on success and
    rolls back on any error.  Expected ledger failures come back as a
    structured ``StockOperationResult`` instead of an exception.

Architecture position:
    Services -- composes ``StockLedgerService`` and ``InventorySelector``
    from the kernel with the optional ``WebhookDispatcher``.

Invariants enforced:
    LEDGER_ATOMICITY -- one transaction per operation; a failure leaves no
        stock change and no movement behind.
    - Webhooks (``invoice.created`` after deduction, ``invoice.cancelled``
      after restoration) fire only after the commit succeeded, on a
      background thread.  The operation returns without waiting for them
      and their outcome never changes the returned result.

Failure modes:
    - InventoryError / ConcurrencyError -> StockOperationResult with
      success=False and the error's ``code``.
    - Anything else propagates after rollback.

Usage:
    service = InvoiceInventoryService(session_factory, dispatcher=dispatcher)
    result = service.deduct_for_invoice(
        org_id, invoice_id,
        [StockDeductionLine(widget_id, Decimal("2"))],
        actor_id,
    )
    if not result.success:
        for shortfall in result.insufficient_stock:
            ...
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from crm_config.schema import LedgerSettings
from crm_kernel.db.engine import transaction_scope
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.dtos import (
    InventoryItemInfo,
    MovementInfo,
    StockAdjustmentResult,
    StockDeductionLine,
    StockDeductionResult,
    StockRestorationResult,
)
from crm_kernel.domain.webhooks import TriggerResult
from crm_kernel.exceptions import (
    ConcurrencyError,
    CrmKernelError,
    InventoryError,
    StockShortfall,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.models.invoice import Invoice
from crm_kernel.models.stock_movement import ActorType, MovementType
from crm_kernel.selectors.inventory_selector import UNKNOWN, InventorySelector
from crm_kernel.services.stock_ledger_service import StockLedgerService
from crm_services.webhook_dispatcher import WebhookDispatcher
from crm_services.webhook_events import WebhookEventType, invoice_event_data

logger = get_logger("services.invoice_inventory")


def format_quantity(value: Decimal) -> str:
    """Human form of a quantity: 10, 2.5 (no trailing zeros, no exponent)."""
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")


@dataclass(frozen=True)
class InvoiceLineInput:
    """An invoice line as seen by stock validation.  Unlinked lines are ignored."""

    inventory_item_id: UUID | str | None
    quantity: Decimal | int | str


@dataclass(frozen=True)
class StockValidation:
    valid: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class StockOperationResult:
    """
    Outcome of one facade operation.

    Exactly one of deduction / restoration / adjustment / item is set on
    success.  ``webhook_delivery`` is the pending fan-out fired by a
    successful deduction or restoration (None without a dispatcher).  On
    failure ``error_code`` is the kernel exception's code and
    ``insufficient_stock`` lists every shortfall of a rejected deduction.
    """

    success: bool
    error_code: str | None = None
    error: str | None = None
    insufficient_stock: tuple[StockShortfall, ...] = ()
    deduction: StockDeductionResult | None = None
    restoration: StockRestorationResult | None = None
    adjustment: StockAdjustmentResult | None = None
    item: InventoryItemInfo | None = None
    webhook_delivery: Future[list[TriggerResult]] | None = None

    @classmethod
    def failed(cls, exc: CrmKernelError) -> StockOperationResult:
        return cls(
            success=False,
            error_code=exc.code,
            error=str(exc),
            insufficient_stock=tuple(getattr(exc, "shortfalls", ())),
        )


def _invoice_snapshot(session: Session, org_id: UUID, invoice_id: UUID) -> dict[str, Any]:
    invoice = session.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.org_id == org_id)
    ).scalar_one_or_none()
    if invoice is None:
        return {"id": str(invoice_id)}
    return {
        "id": str(invoice.id),
        "invoiceNumber": invoice.invoice_number,
        "status": invoice.status,
        "total": invoice.total,
    }


class InvoiceInventoryService:
    """
    Invoice-facing stock operations with transaction ownership.

    Contract:
        Every public method is one unit of work; callers never see a
        half-applied ledger operation.

    Non-goals:
        - Does not decide when an invoice is cancelled; callers invoke
          restore_for_invoice exactly once on that transition.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        dispatcher: WebhookDispatcher | None = None,
        clock: Clock | None = None,
        ledger_settings: LedgerSettings | None = None,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._settings = ledger_settings or LedgerSettings()

    def _notify(
        self,
        org_id: UUID,
        event_type: WebhookEventType,
        invoice: dict[str, Any],
    ) -> Future[list[TriggerResult]] | None:
        if self._dispatcher is None:
            return None
        return self._dispatcher.trigger_webhooks_async(
            org_id, event_type, invoice_event_data(invoice)
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def deduct_for_invoice(
        self,
        org_id: UUID,
        invoice_id: UUID,
        lines: Iterable[StockDeductionLine],
        actor_id: UUID,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockOperationResult:
        """Deduct stock for a new invoice, then fire ``invoice.created``."""
        with LogContext.bind(org_id=str(org_id), invoice_id=str(invoice_id), actor_id=str(actor_id)):
            try:
                with transaction_scope(self._session_factory) as session:
                    ledger = StockLedgerService(session, clock=self._clock)
                    deduction = ledger.deduct_stock(
                        list(lines), org_id, invoice_id, actor_id, actor_type
                    )
                    snapshot = _invoice_snapshot(session, org_id, invoice_id)
            except (InventoryError, ConcurrencyError) as exc:
                logger.info("invoice_stock_deduction_failed", extra={"error_code": exc.code})
                return StockOperationResult.failed(exc)

            webhooks = self._notify(org_id, WebhookEventType.INVOICE_CREATED, snapshot)
            return StockOperationResult(
                success=True, deduction=deduction, webhook_delivery=webhooks
            )

    def restore_for_invoice(
        self,
        org_id: UUID,
        invoice_id: UUID,
        actor_id: UUID,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockOperationResult:
        """Restore an invoice's stock on cancel/void, then fire ``invoice.cancelled``."""
        with LogContext.bind(org_id=str(org_id), invoice_id=str(invoice_id), actor_id=str(actor_id)):
            try:
                with transaction_scope(self._session_factory) as session:
                    ledger = StockLedgerService(session, clock=self._clock)
                    restoration = ledger.restore_stock(invoice_id, org_id, actor_id, actor_type)
                    snapshot = _invoice_snapshot(session, org_id, invoice_id)
            except (InventoryError, ConcurrencyError) as exc:
                logger.info("invoice_stock_restore_failed", extra={"error_code": exc.code})
                return StockOperationResult.failed(exc)

            webhooks = self._notify(org_id, WebhookEventType.INVOICE_CANCELLED, snapshot)
            return StockOperationResult(
                success=True, restoration=restoration, webhook_delivery=webhooks
            )

    def adjust(
        self,
        org_id: UUID,
        inventory_item_id: UUID,
        quantity: Decimal | int | str,
        movement_type: MovementType | str,
        actor_id: UUID,
        reason: str | None = None,
        notes: str | None = None,
        actor_type: ActorType | str = ActorType.USER,
    ) -> StockOperationResult:
        with LogContext.bind(org_id=str(org_id), actor_id=str(actor_id)):
            try:
                with transaction_scope(self._session_factory) as session:
                    adjustment = StockLedgerService(session, clock=self._clock).adjust_stock(
                        inventory_item_id,
                        org_id,
                        quantity,
                        movement_type,
                        actor_id,
                        reason=reason,
                        notes=notes,
                        actor_type=actor_type,
                    )
            except (InventoryError, ConcurrencyError) as exc:
                return StockOperationResult.failed(exc)
            return StockOperationResult(success=True, adjustment=adjustment)

    def create_item(
        self,
        org_id: UUID,
        name: str,
        actor_id: UUID,
        sku: str | None = None,
        **fields: Any,
    ) -> StockOperationResult:
        """
        Create an inventory item with its INITIAL movement.

        Without an explicit sku the next ``<sku_prefix>-NNNN`` of the org is
        assigned.  Remaining keyword arguments go to
        StockLedgerService.create_item.
        """
        try:
            with transaction_scope(self._session_factory) as session:
                if not sku:
                    sku = InventorySelector(session).next_sku(org_id, self._settings.sku_prefix)
                item = StockLedgerService(session, clock=self._clock).create_item(
                    org_id, name, sku, actor_id, **fields
                )
        except InventoryError as exc:
            return StockOperationResult.failed(exc)
        return StockOperationResult(success=True, item=item)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def validate_stock_for_invoice(
        self,
        org_id: UUID,
        lines: Iterable[InvoiceLineInput],
    ) -> StockValidation:
        """
        Early, lock-free stock check for an invoice being edited.

        Lines without an inventory link are ignored.  The authoritative
        check happens again inside deduct_for_invoice.
        """
        errors: list[str] = []
        requested: list[StockDeductionLine] = []
        for line in lines:
            if line.inventory_item_id is None:
                continue
            try:
                requested.append(StockDeductionLine(line.inventory_item_id, line.quantity))
            except InventoryError as exc:
                errors.append(str(exc))

        if requested:
            with transaction_scope(self._session_factory) as session:
                check = InventorySelector(session).check_availability(org_id, requested)
            for item in check.insufficient_items:
                if item.name == UNKNOWN:
                    errors.append(f"Inventory item not found: {item.inventory_item_id}")
                    continue
                errors.append(
                    f'Insufficient stock for "{item.name}" ({item.sku}): '
                    f"need {format_quantity(item.requested)}, "
                    f"available {format_quantity(item.available)}"
                )

        return StockValidation(valid=not errors, errors=tuple(errors))

    def low_stock_items(self, org_id: UUID) -> list[InventoryItemInfo]:
        with transaction_scope(self._session_factory) as session:
            return InventorySelector(session).get_low_stock_items(
                org_id, limit=self._settings.low_stock_page_size
            )

    def movement_history(
        self,
        org_id: UUID,
        inventory_item_id: UUID | None = None,
        reference_id: str | None = None,
    ) -> list[MovementInfo]:
        with transaction_scope(self._session_factory) as session:
            return InventorySelector(session).list_movements(
                org_id,
                inventory_item_id=inventory_item_id,
                reference_id=reference_id,
                limit=self._settings.movement_page_size,
            )
