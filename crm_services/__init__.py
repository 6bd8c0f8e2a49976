"""
crm_services -- Orchestration above the CRM kernel.

Owns transactions for invoice stock operations and delivers outgoing
webhooks.  May import crm_kernel and crm_config; the kernel never imports
this package.
"""

from crm_services.invoice_inventory import (
    InvoiceInventoryService,
    InvoiceLineInput,
    StockOperationResult,
    StockValidation,
)
from crm_services.webhook_dispatcher import WebhookDispatcher
from crm_services.webhook_events import (
    WebhookEventType,
    trigger_contact_webhook,
    trigger_invoice_webhook,
    trigger_lead_webhook,
    trigger_opportunity_webhook,
)
from crm_services.webhook_recorder import DeliveryRecorder

__all__ = [
    "DeliveryRecorder",
    "InvoiceInventoryService",
    "InvoiceLineInput",
    "StockOperationResult",
    "StockValidation",
    "WebhookDispatcher",
    "WebhookEventType",
    "trigger_contact_webhook",
    "trigger_invoice_webhook",
    "trigger_lead_webhook",
    "trigger_opportunity_webhook",
]
