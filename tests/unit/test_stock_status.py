"""Tests for stock status classification and margin calculation."""

from decimal import Decimal

import pytest

from crm_kernel.domain.stock_status import StockStatus, calculate_margin, get_stock_status


class TestGetStockStatus:

    @pytest.mark.parametrize(
        "level, reorder, expected",
        [
            ("0", "5", StockStatus.OUT_OF_STOCK),
            ("-1", "0", StockStatus.OUT_OF_STOCK),
            ("5", "5", StockStatus.LOW_STOCK),
            ("1", "5", StockStatus.LOW_STOCK),
            ("6", "5", StockStatus.IN_STOCK),
            ("1", "0", StockStatus.IN_STOCK),
        ],
    )
    def test_classification(self, level, reorder, expected):
        assert get_stock_status(Decimal(level), Decimal(reorder)) is expected


class TestCalculateMargin:

    def test_margin_percent(self):
        assert calculate_margin(Decimal("25"), Decimal("15")) == Decimal("40.00")

    def test_rounded_to_two_places(self):
        assert calculate_margin(Decimal("3"), Decimal("1")) == Decimal("66.67")

    def test_negative_margin(self):
        assert calculate_margin(Decimal("10"), Decimal("12")) == Decimal("-20.00")

    @pytest.mark.parametrize(
        "price, cost",
        [(Decimal("10"), None), (Decimal("10"), Decimal("0")), (Decimal("0"), Decimal("5"))],
    )
    def test_undefined(self, price, cost):
        assert calculate_margin(price, cost) is None
