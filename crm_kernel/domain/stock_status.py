"""
Stock status and margin helpers.

Pure functions over Decimal values; no ORM, no I/O.
"""

from decimal import Decimal
from enum import Enum

from crm_kernel.db.types import ZERO, round_money


class StockStatus(str, Enum):
    OUT_OF_STOCK = "OUT_OF_STOCK"
    LOW_STOCK = "LOW_STOCK"
    IN_STOCK = "IN_STOCK"


def get_stock_status(stock_level: Decimal, reorder_level: Decimal) -> StockStatus:
    """
    Classify a stock level against its reorder threshold.

    Zero or less is OUT_OF_STOCK; at or below the reorder level is
    LOW_STOCK; anything else is IN_STOCK.
    """
    if stock_level <= ZERO:
        return StockStatus.OUT_OF_STOCK
    if stock_level <= reorder_level:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def calculate_margin(unit_price: Decimal, cost_price: Decimal | None) -> Decimal | None:
    """
    Gross margin as a percentage of the unit price, rounded to 2 places.

    Returns None when the cost price is missing or zero, or when the unit
    price is not positive.
    """
    if not cost_price or unit_price <= ZERO:
        return None
    margin = (unit_price - cost_price) / unit_price * Decimal(100)
    return round_money(margin)
