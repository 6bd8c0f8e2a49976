"""Tests for ledger quantity and money helpers in crm_kernel.db.types."""

from decimal import Decimal

import pytest

from crm_kernel.db.types import positive_quantity, round_money, to_quantity
from crm_kernel.exceptions import InvalidQuantityError


class TestToQuantity:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("1.5"), Decimal("1.5")),
            (7, Decimal("7")),
            ("-3", Decimal("-3")),
            (" 2.25 ", Decimal("2.25")),
            (0, Decimal("0")),
        ],
    )
    def test_accepted(self, value, expected):
        assert to_quantity(value) == expected

    @pytest.mark.parametrize("value", [1.0, True, False, "ten", "Infinity", Decimal("NaN"), None, [1]])
    def test_rejected(self, value):
        with pytest.raises(InvalidQuantityError):
            to_quantity(value)

    def test_error_carries_reason(self):
        with pytest.raises(InvalidQuantityError) as exc_info:
            to_quantity(0.1)
        assert "float" in exc_info.value.reason
        assert exc_info.value.code == "INVALID_QUANTITY"


class TestPositiveQuantity:

    def test_positive(self):
        assert positive_quantity("0.001") == Decimal("0.001")

    @pytest.mark.parametrize("value", [0, "-1", Decimal("-0.5")])
    def test_not_positive(self, value):
        with pytest.raises(InvalidQuantityError):
            positive_quantity(value)


class TestRoundMoney:

    def test_half_up(self):
        assert round_money(Decimal("2.345")) == Decimal("2.35")
        assert round_money(Decimal("2.344")) == Decimal("2.34")

    def test_places(self):
        assert round_money(Decimal("1.23456"), places=4) == Decimal("1.2346")
