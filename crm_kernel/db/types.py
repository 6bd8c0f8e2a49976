"""
Module: crm_kernel.db.types
Responsibility: Annotated type aliases and the single sanctioned conversion
    into ledger quantities.  Every model and service uses identical
    definitions for quantities, prices and short codes.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    No floats anywhere in stock arithmetic.  to_quantity() rejects float and
    bool input outright instead of converting it.

Failure modes:
    - InvalidQuantityError on float, bool, non-numeric string, NaN/Infinity,
      or (for positive_quantity) zero and negative values.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

from crm_kernel.exceptions import InvalidQuantityError

# Stock quantity / level, 38 digits with 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Unit and cost prices
Money = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (enum values, SKUs)
ShortCode = Annotated[str, String(50)]

# Long text for descriptions and notes
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_quantity(value: object) -> Decimal:
    """
    Convert an external value into a ledger quantity.

    Accepts Decimal, int, and numeric strings.  Rejects float (binary
    rounding would leak into the ledger), bool, and non-finite values.

    Raises:
        InvalidQuantityError: If the value cannot be used as a quantity.
    """
    if isinstance(value, bool):
        raise InvalidQuantityError(value, "booleans are not quantities")
    if isinstance(value, float):
        raise InvalidQuantityError(value, "floats are not accepted; use Decimal or str")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantityError(value, "not a number") from None
    else:
        raise InvalidQuantityError(value, f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidQuantityError(value, "must be finite")
    return result


def positive_quantity(value: object) -> Decimal:
    """to_quantity() that additionally requires a value > 0."""
    result = to_quantity(value)
    if result <= ZERO:
        raise InvalidQuantityError(value, "must be greater than zero")
    return result


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary or percentage value half-up to `places` decimals."""
    quantizer = Decimal(10) ** -places
    return amount.quantize(quantizer, rounding=DEFAULT_ROUNDING)
