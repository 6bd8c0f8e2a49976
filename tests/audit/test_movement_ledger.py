"""
Audit tests: the movement log and the delivery log are append-only, and the
movement log explains every stock level exactly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError

from crm_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from crm_kernel.domain.dtos import StockDeductionLine
from crm_kernel.domain.webhooks import DeliveryOutcome, DeliveryRecord
from crm_kernel.exceptions import ImmutabilityViolationError
from crm_kernel.invariants import ALL_KERNEL_INVARIANTS, KernelInvariant
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.stock_movement import MovementType, StockMovement
from crm_kernel.models.webhook_delivery import WebhookDelivery
from crm_kernel.selectors.inventory_selector import InventorySelector
from crm_services.webhook_recorder import DeliveryRecorder


def _movement(session, item_id, movement_type) -> StockMovement:
    return session.execute(
        select(StockMovement).where(
            StockMovement.inventory_item_id == item_id,
            StockMovement.type == movement_type.value,
        )
    ).scalar_one()


class TestStockMovementImmutability:

    def test_update_is_blocked(self, session, ledger, make_item, org_id, actor_id):
        item_id = make_item(stock=10)
        ledger.deduct_stock([StockDeductionLine(item_id, 2)], org_id, uuid4(), actor_id)
        movement = _movement(session, item_id, MovementType.SALE)

        movement.quantity = Decimal("-1")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "StockMovement"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_delete_is_blocked(self, session, make_item):
        item_id = make_item(stock=10)
        movement = _movement(session, item_id, MovementType.INITIAL)

        session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_is_logged(self, session, make_item, captured_logs):
        item_id = make_item(stock=1)
        _movement(session, item_id, MovementType.INITIAL).notes = "edited"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked and blocked[0]["operation"] == "UPDATE"

    def test_listener_registration_is_idempotent(self, session, make_item):
        register_immutability_listeners()
        register_immutability_listeners()
        unregister_immutability_listeners()
        try:
            item_id = make_item(stock=1)
            _movement(session, item_id, MovementType.INITIAL).notes = "no listeners"
            # The database trigger still rejects the row
            with pytest.raises(DBAPIError, match="IMMUTABILITY_VIOLATION"):
                session.flush()
        finally:
            register_immutability_listeners()


class TestWebhookDeliveryImmutability:

    @pytest.fixture
    def delivery_id(self, session_factory, make_integration, org_id):
        integration_id = make_integration()
        DeliveryRecorder(session_factory).record(
            DeliveryRecord(
                org_id=org_id,
                integration_id=integration_id,
                event_type="invoice.created",
                request_url="https://hooks.example.com/a",
                request_headers={},
                request_body={},
                attempted_at=datetime.now(timezone.utc),
                outcome=DeliveryOutcome(success=True, status=200),
            )
        )
        return integration_id

    def test_update_is_blocked(self, session, delivery_id):
        row = session.execute(
            select(WebhookDelivery).where(WebhookDelivery.integration_id == delivery_id)
        ).scalar_one()

        row.status = "FAILED"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_is_blocked(self, session, delivery_id):
        row = session.execute(
            select(WebhookDelivery).where(WebhookDelivery.integration_id == delivery_id)
        ).scalar_one()

        session.delete(row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestPriceFreeze:

    def test_sale_price_survives_price_change(self, session, ledger, make_item, org_id, actor_id):
        item_id = make_item(stock=10, unit_price="25.00")
        ledger.deduct_stock([StockDeductionLine(item_id, 1)], org_id, uuid4(), actor_id)

        session.get(InventoryItem, item_id).unit_price = Decimal("30.00")
        session.flush()

        assert _movement(session, item_id, MovementType.SALE).unit_price == Decimal("25.00")


class TestMovementConsistency:

    def test_every_movement_balances(self, session, ledger, make_item, make_invoice, org_id, actor_id):
        item_id = make_item(stock=50)
        invoice_id = make_invoice([(item_id, 7, "2.00")])
        ledger.deduct_stock([StockDeductionLine(item_id, 7)], org_id, invoice_id, actor_id)
        ledger.adjust_stock(item_id, org_id, 5, MovementType.RESTOCK, actor_id)
        ledger.adjust_stock(item_id, org_id, -1, MovementType.DAMAGE, actor_id)
        ledger.restore_stock(invoice_id, org_id, actor_id)

        movements = session.execute(
            select(StockMovement).where(StockMovement.inventory_item_id == item_id)
        ).scalars().all()

        assert len(movements) == 5
        assert all(m.is_consistent for m in movements)
        assert InventorySelector(session).verify_movement_chain(org_id, item_id).consistent
        assert session.get(InventoryItem, item_id).stock_level == Decimal("54")

    def test_invariants_declared(self):
        assert KernelInvariant.NO_OVERSELL in ALL_KERNEL_INVARIANTS
        assert KernelInvariant.APPEND_ONLY in ALL_KERNEL_INVARIANTS
        assert len(ALL_KERNEL_INVARIANTS) == 6
