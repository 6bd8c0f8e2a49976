"""Tests for engine lifecycle and the transactional scope helpers."""

from decimal import Decimal

import pytest
from sqlalchemy import inspect

from crm_kernel.db.engine import (
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    reset_engine,
    session_scope,
    transaction_scope,
)
from crm_kernel.exceptions import InvalidAdjustmentError
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.stock_movement import MovementType
from crm_kernel.services.stock_ledger_service import StockLedgerService


class TestEngineLifecycle:

    def test_uninitialized_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()
        with pytest.raises(RuntimeError):
            get_session_factory()

    def test_drop_tables(self, db_engine):
        assert "stock_movements" in inspect(db_engine).get_table_names()

        drop_tables()

        assert inspect(db_engine).get_table_names() == []


class TestSessionScope:

    def test_commits_on_success(self, db_engine, make_item, org_id, actor_id):
        item_id = make_item(stock=10)

        with session_scope() as session:
            StockLedgerService(session).adjust_stock(
                item_id, org_id, 5, MovementType.RESTOCK, actor_id
            )

        check = get_session()
        try:
            assert check.get(InventoryItem, item_id).stock_level == Decimal("15")
        finally:
            check.close()

    def test_rolls_back_on_error(self, db_engine, make_item, org_id, actor_id):
        item_id = make_item(stock=10)

        with pytest.raises(RuntimeError, match="abort"):
            with session_scope() as session:
                StockLedgerService(session).adjust_stock(
                    item_id, org_id, -4, MovementType.DAMAGE, actor_id
                )
                raise RuntimeError("abort")

        check = get_session()
        try:
            assert check.get(InventoryItem, item_id).stock_level == Decimal("10")
        finally:
            check.close()


class TestRollbackLogging:

    def test_expected_ledger_failure_logs_info_without_traceback(
        self, session_factory, make_item, org_id, actor_id, captured_logs
    ):
        item_id = make_item(stock=10)

        with pytest.raises(InvalidAdjustmentError):
            with transaction_scope(session_factory) as session:
                StockLedgerService(session).adjust_stock(
                    item_id, org_id, -15, MovementType.ADJUSTMENT, actor_id
                )

        (record,) = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert record["level"] == "INFO"
        assert record["error_code"] == "INVALID_ADJUSTMENT"
        assert "traceback" not in record

    def test_unexpected_failure_logs_warning_with_traceback(self, session_factory, captured_logs):
        with pytest.raises(RuntimeError, match="abort"):
            with transaction_scope(session_factory):
                raise RuntimeError("abort")

        (record,) = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert record["level"] == "WARNING"
        assert record["exc_type"] == "RuntimeError"
        assert "traceback" in record
