"""ORM models for the CRM kernel."""

from crm_kernel.models.integration import IntegrationType, RegularIntegration
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.invoice import Invoice, InvoiceItem
from crm_kernel.models.stock_movement import (
    MANUAL_ADJUSTMENT_TYPES,
    ActorType,
    MovementType,
    ReferenceType,
    StockMovement,
)
from crm_kernel.models.webhook_delivery import DeliveryStatus, WebhookDelivery

__all__ = [
    "ActorType",
    "DeliveryStatus",
    "IntegrationType",
    "InventoryItem",
    "Invoice",
    "InvoiceItem",
    "MANUAL_ADJUSTMENT_TYPES",
    "MovementType",
    "ReferenceType",
    "RegularIntegration",
    "StockMovement",
    "WebhookDelivery",
]
