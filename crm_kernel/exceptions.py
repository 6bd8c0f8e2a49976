"""
Typed Exception Hierarchy for the CRM Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and webhook failures must be handled by type, not by parsing messages.
Every exception here has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example - WRONG way:
    try:
        ledger.deduct_stock(...)
    except Exception as e:
        if "Insufficient" in str(e):
            ...

Example - RIGHT way:
    try:
        ledger.deduct_stock(...)
    except InsufficientStockError as e:
        for shortfall in e.shortfalls:
            notify(shortfall.sku, shortfall.available, shortfall.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CrmKernelError (base)
    |
    +-- InventoryError
    |   +-- ItemNotFoundError
    |   +-- ItemInactiveError
    |   +-- InsufficientStockError
    |   +-- InvalidAdjustmentError
    |   +-- InvalidQuantityError
    |
    +-- ConcurrencyError
    |   +-- StockConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- WebhookError
    |   +-- MissingEndpointError
    |   +-- InvalidAuthConfigError
    |   +-- IntegrationNotFoundError
    |   +-- NotOutgoingWebhookError
    |
    +-- EncryptionError
        +-- EncryptionKeyMissingError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Inventory    | ITEM_NOT_FOUND           | Item id unknown in the organization
             | ITEM_INACTIVE            | Item discontinued (is_active = False)
             | INSUFFICIENT_STOCK       | Requested quantity exceeds stock level
             | INVALID_ADJUSTMENT       | Adjustment would take stock below zero
             | INVALID_QUANTITY         | Zero, negative, float or non-numeric qty
-------------|--------------------------|------------------------------------------
Concurrency  | STOCK_CONFLICT           | Guarded decrement lost a race
-------------|--------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | UPDATE/DELETE of a movement or delivery
-------------|--------------------------|------------------------------------------
Webhook      | MISSING_ENDPOINT         | Integration config has no url
             | INVALID_AUTH_CONFIG      | Stored auth config cannot be decoded
             | INTEGRATION_NOT_FOUND    | Integration id unknown in the org
             | NOT_OUTGOING_WEBHOOK     | Integration is not an outgoing webhook
-------------|--------------------------|------------------------------------------
Encryption   | ENCRYPTION_KEY_MISSING   | No encryption key configured

===============================================================================
HANDLING PATTERNS
===============================================================================

- InventoryError -> user-facing validation error ("cannot invoice 10 units
  of SKU X, only 3 in stock").  Nothing was written; no compensation needed.
- ConcurrencyError -> the transaction was rolled back; the caller may retry
  the whole operation against fresh stock levels.
- ImmutabilityError -> programming error or tampering; log and investigate.
- WebhookError -> contained by the dispatcher; surfaced as a failed
  TriggerResult and as ``last_error`` on the integration.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class CrmKernelError(Exception):
    """
    Base exception for all CRM kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CRM_KERNEL_ERROR"


# Inventory-related exceptions


class InventoryError(CrmKernelError):
    """Base exception for stock ledger errors."""

    code: str = "INVENTORY_ERROR"


class ItemNotFoundError(InventoryError):
    """Inventory item was not found in the organization."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, inventory_item_id: str):
        self.inventory_item_id = inventory_item_id
        super().__init__(f"Inventory item not found: {inventory_item_id}")


class ItemInactiveError(InventoryError):
    """Inventory item is discontinued and cannot move stock."""

    code: str = "ITEM_INACTIVE"

    def __init__(self, inventory_item_id: str):
        self.inventory_item_id = inventory_item_id
        super().__init__(f"Inventory item is inactive: {inventory_item_id}")


@dataclass(frozen=True)
class StockShortfall:
    """One item that cannot cover its requested quantity."""

    inventory_item_id: str
    name: str
    sku: str
    available: Decimal
    requested: Decimal

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available


class InsufficientStockError(InventoryError):
    """
    One or more items lack stock for the requested deduction.

    Carries every shortfall, not only the first, so the caller can report
    all offending lines at once.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, shortfalls: list[StockShortfall]):
        self.shortfalls = list(shortfalls)
        self.inventory_item_ids = [s.inventory_item_id for s in self.shortfalls]
        detail = "; ".join(
            f"{s.name} ({s.sku}): need {s.requested}, have {s.available}"
            for s in self.shortfalls
        )
        super().__init__(f"Insufficient stock for: {detail}")


class InvalidAdjustmentError(InventoryError):
    """Manual adjustment rejected (would go negative or bad type)."""

    code: str = "INVALID_ADJUSTMENT"

    def __init__(
        self,
        inventory_item_id: str,
        current_level: Decimal | None,
        attempted_delta: Decimal | None,
        reason: str | None = None,
    ):
        self.inventory_item_id = inventory_item_id
        self.current_level = current_level
        self.attempted_delta = attempted_delta
        self.reason = reason or (
            f"Cannot reduce stock below 0. Current: {current_level}, "
            f"Adjustment: {attempted_delta}"
        )
        super().__init__(self.reason)


class InvalidQuantityError(InventoryError):
    """Quantity is not a usable decimal amount."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, reason: str):
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid quantity {value!r}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(CrmKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StockConflictError(ConcurrencyError):
    """
    Guarded stock update matched no row.

    Another transaction changed the item between the preflight read and the
    write.  The enclosing unit of work must be rolled back.
    """

    code: str = "STOCK_CONFLICT"

    def __init__(self, inventory_item_id: str, requested: Decimal):
        self.inventory_item_id = inventory_item_id
        self.requested = requested
        super().__init__(
            f"Stock conflict on inventory item {inventory_item_id}: "
            f"level changed concurrently, cannot apply {requested}"
        )


# Immutability-related exceptions


class ImmutabilityError(CrmKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    StockMovement and WebhookDelivery are immutable from creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Webhook-related exceptions


class WebhookError(CrmKernelError):
    """Base exception for webhook delivery errors."""

    code: str = "WEBHOOK_ERROR"


class MissingEndpointError(WebhookError):
    """Integration has no target URL."""

    code: str = "MISSING_ENDPOINT"

    def __init__(self, integration_id: str):
        self.integration_id = integration_id
        super().__init__("No URL configured")


class InvalidAuthConfigError(WebhookError):
    """Stored auth configuration cannot be decoded."""

    code: str = "INVALID_AUTH_CONFIG"

    def __init__(self, auth_type: str, reason: str):
        self.auth_type = auth_type
        self.reason = reason
        super().__init__(f"Invalid auth configuration ({auth_type}): {reason}")


class IntegrationNotFoundError(WebhookError):
    """Integration was not found in the organization."""

    code: str = "INTEGRATION_NOT_FOUND"

    def __init__(self, integration_id: str):
        self.integration_id = integration_id
        super().__init__(f"Integration not found: {integration_id}")


class NotOutgoingWebhookError(WebhookError):
    """Only outgoing webhooks can be delivered to."""

    code: str = "NOT_OUTGOING_WEBHOOK"

    def __init__(self, integration_id: str, integration_type: str):
        self.integration_id = integration_id
        self.integration_type = integration_type
        super().__init__(
            f"Integration {integration_id} is {integration_type!r}; "
            "only outgoing webhooks can be tested"
        )


# Encryption-related exceptions


class EncryptionError(CrmKernelError):
    """Base exception for encryption errors."""

    code: str = "ENCRYPTION_ERROR"


class EncryptionKeyMissingError(EncryptionError):
    """No encryption key configured."""

    code: str = "ENCRYPTION_KEY_MISSING"

    def __init__(self):
        super().__init__(
            "Encryption key is required. Generate one with: openssl rand -base64 32"
        )
