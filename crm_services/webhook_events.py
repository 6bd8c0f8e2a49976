"""
Domain-event webhook wrappers.

Shape the ``data`` of each CRM event the way subscribers expect it and hand
it to ``WebhookDispatcher.trigger_webhooks``.  Entity arguments are plain
mappings with camelCase keys (``id``, ``invoiceNumber``, ``firstName`` ...).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from crm_kernel.domain.webhooks import TriggerResult
from crm_services.webhook_dispatcher import WebhookDispatcher


class WebhookEventType(str, Enum):
    INVOICE_CREATED = "invoice.created"
    INVOICE_UPDATED = "invoice.updated"
    INVOICE_PAID = "invoice.paid"
    INVOICE_CANCELLED = "invoice.cancelled"
    LEAD_CREATED = "lead.created"
    LEAD_UPDATED = "lead.updated"
    LEAD_CONVERTED = "lead.converted"
    CONTACT_CREATED = "contact.created"
    CONTACT_UPDATED = "contact.updated"
    OPPORTUNITY_CREATED = "opportunity.created"
    OPPORTUNITY_UPDATED = "opportunity.updated"
    OPPORTUNITY_WON = "opportunity.won"
    OPPORTUNITY_LOST = "opportunity.lost"


def _full_name(entity: Mapping[str, Any]) -> str:
    first = entity.get("firstName") or ""
    last = entity.get("lastName") or ""
    return f"{first} {last}".strip()


def invoice_event_data(invoice: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "invoice": dict(invoice),
        "invoiceId": invoice.get("id"),
        "invoiceNumber": invoice.get("invoiceNumber"),
        "total": invoice.get("total"),
        "status": invoice.get("status"),
    }


def trigger_invoice_webhook(
    dispatcher: WebhookDispatcher,
    org_id: UUID,
    event_type: WebhookEventType,
    invoice: Mapping[str, Any],
) -> list[TriggerResult]:
    return dispatcher.trigger_webhooks(org_id, event_type, invoice_event_data(invoice))


def trigger_lead_webhook(
    dispatcher: WebhookDispatcher,
    org_id: UUID,
    event_type: WebhookEventType,
    lead: Mapping[str, Any],
) -> list[TriggerResult]:
    return dispatcher.trigger_webhooks(
        org_id,
        event_type,
        {
            "lead": dict(lead),
            "leadId": lead.get("id"),
            "email": lead.get("email"),
            "name": _full_name(lead),
            "status": lead.get("status"),
        },
    )


def trigger_contact_webhook(
    dispatcher: WebhookDispatcher,
    org_id: UUID,
    event_type: WebhookEventType,
    contact: Mapping[str, Any],
) -> list[TriggerResult]:
    return dispatcher.trigger_webhooks(
        org_id,
        event_type,
        {
            "contact": dict(contact),
            "contactId": contact.get("id"),
            "email": contact.get("email"),
            "name": _full_name(contact),
        },
    )


def trigger_opportunity_webhook(
    dispatcher: WebhookDispatcher,
    org_id: UUID,
    event_type: WebhookEventType,
    opportunity: Mapping[str, Any],
) -> list[TriggerResult]:
    return dispatcher.trigger_webhooks(
        org_id,
        event_type,
        {
            "opportunity": dict(opportunity),
            "opportunityId": opportunity.get("id"),
            "name": opportunity.get("name"),
            "value": opportunity.get("value"),
            "stage": opportunity.get("stage"),
        },
    )
