"""Tests for InventorySelector: availability, history, low stock, SKUs, chain checks."""

from decimal import Decimal
from uuid import uuid4

import pytest

from crm_kernel.domain.dtos import StockDeductionLine
from crm_kernel.exceptions import ItemNotFoundError
from crm_kernel.models.stock_movement import MovementType
from crm_kernel.selectors.inventory_selector import UNKNOWN, InventorySelector


@pytest.fixture
def selector(session):
    return InventorySelector(session)


class TestCheckAvailability:

    def test_reports_sufficient_and_insufficient_lines(self, selector, make_item, org_id):
        plenty = make_item(stock=100, name="Plenty", sku="P-1")
        scarce = make_item(stock=3, name="Scarce", sku="S-1")

        result = selector.check_availability(
            org_id, [StockDeductionLine(plenty, 10), StockDeductionLine(scarce, 10)]
        )

        assert not result.valid
        (short,) = result.insufficient_items
        assert short.inventory_item_id == scarce
        assert short.available == Decimal("3")
        assert short.shortfall == Decimal("7")

    def test_unknown_and_inactive_items_count_as_empty(self, selector, make_item, org_id):
        inactive = make_item(stock=50, is_active=False)
        missing = uuid4()

        result = selector.check_availability(
            org_id, [StockDeductionLine(inactive, 1), StockDeductionLine(missing, 1)]
        )

        assert len(result.insufficient_items) == 2
        for line in result.insufficient_items:
            assert line.name == UNKNOWN
            assert line.sku == UNKNOWN
            assert line.available == Decimal("0")

    def test_empty_request_is_valid(self, selector, org_id):
        assert selector.check_availability(org_id, []).valid


class TestListMovements:

    def test_filters_by_type_and_reference(self, session, ledger, selector, make_item, org_id, actor_id):
        item_id = make_item(stock=10)
        invoice_id = uuid4()
        ledger.deduct_stock([StockDeductionLine(item_id, 2)], org_id, invoice_id, actor_id)
        ledger.adjust_stock(item_id, org_id, 5, MovementType.RESTOCK, actor_id)

        everything = selector.list_movements(org_id, inventory_item_id=item_id)
        by_invoice = selector.list_movements(org_id, reference_id=str(invoice_id))
        restocks = selector.list_movements(org_id, movement_type="RESTOCK")
        manual = selector.list_movements(org_id, inventory_item_id=item_id, reference_type="MANUAL")

        assert {m.type for m in everything} == {"INITIAL", "SALE", "RESTOCK"}
        assert [m.type for m in by_invoice] == ["SALE"]
        assert [m.quantity for m in restocks] == [Decimal("5")]
        assert {m.type for m in manual} == {"INITIAL", "RESTOCK"}

    def test_scoped_to_org(self, selector, make_item, other_org_id):
        make_item(stock=10, org=other_org_id)

        assert selector.list_movements(uuid4()) == []

    def test_limit(self, ledger, selector, make_item, org_id, actor_id):
        item_id = make_item(stock=10)
        for _ in range(3):
            ledger.adjust_stock(item_id, org_id, 1, MovementType.RESTOCK, actor_id)

        assert len(selector.list_movements(org_id, limit=2)) == 2


class TestLowStockAndSku:

    def test_low_stock_items(self, selector, make_item, org_id):
        low = make_item(stock=2, reorder_level=5, sku="LOW-1")
        make_item(stock=50, reorder_level=5, sku="OK-1")
        make_item(stock=0, reorder_level=5, sku="GONE-1", is_active=False)

        items = selector.get_low_stock_items(org_id)

        assert [i.id for i in items] == [low]
        assert items[0].stock_status == "LOW_STOCK"

    def test_next_sku_continues_numbering(self, selector, make_item, org_id):
        make_item(sku="SKU-0001")
        make_item(sku="SKU-0007")
        make_item(sku="OTHER-0100")

        assert selector.next_sku(org_id) == "SKU-0008"
        assert selector.next_sku(org_id, prefix="NEW") == "NEW-0001"

    def test_get_item_scoped_to_org(self, selector, make_item, org_id, other_org_id):
        item_id = make_item(stock=1, unit_price="25.00", cost_price="15.00")

        info = selector.get_item(org_id, item_id)
        assert info.margin == Decimal("40.00")
        assert selector.get_item(other_org_id, item_id) is None


class TestVerifyMovementChain:

    def test_chain_consistent_after_operations(
        self, ledger, selector, make_item, make_invoice, org_id, actor_id
    ):
        item_id = make_item(stock=100)
        invoice_id = make_invoice([(item_id, 10, "1.00")])
        ledger.deduct_stock([StockDeductionLine(item_id, 10)], org_id, invoice_id, actor_id)
        ledger.adjust_stock(item_id, org_id, -4, MovementType.DAMAGE, actor_id)
        ledger.restore_stock(invoice_id, org_id, actor_id)

        report = selector.verify_movement_chain(org_id, item_id)

        assert report.consistent
        assert report.movement_count == 4
        assert report.opening_level == Decimal("0")
        assert report.net_quantity == Decimal("96")
        assert report.current_level == Decimal("96")
        assert report.broken_movement_ids == ()

    def test_item_without_movements(self, selector, make_item, org_id):
        item_id = make_item(stock=0)

        report = selector.verify_movement_chain(org_id, item_id)

        assert report.consistent
        assert report.movement_count == 0

    def test_unknown_item(self, selector, org_id):
        with pytest.raises(ItemNotFoundError):
            selector.verify_movement_chain(org_id, uuid4())
