"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock movement log and the webhook delivery log are audit trails.  A
stock level is only trustworthy if every change to it is explained by a
movement that nobody can edit afterwards.  Mistakes are corrected with a new
ADJUSTMENT movement, never by rewriting an old one.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError is raised and the flush is
aborted.  The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable          | Why
------------------|-------------------------|----------------------------------
StockMovement     | ALWAYS (from creation)  | Explains every stock change
WebhookDelivery   | ALWAYS (from creation)  | Delivery history is evidence

Note: Core UPDATE/DELETE statements and raw SQL bypass mapper events.  The
database triggers in db/triggers.py reject those; both layers raise on any
attempt to rewrite these tables.

===============================================================================
USAGE
===============================================================================

Called once during application startup:

    from crm_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY - never in production):

    from crm_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event

from crm_kernel.exceptions import ImmutabilityViolationError
from crm_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_stock_movement_immutability(mapper, connection, target):
    """Prevent any updates to StockMovement records."""
    _block(
        "StockMovement",
        target,
        "UPDATE",
        "Stock movements are immutable and cannot be modified",
    )


def _check_stock_movement_delete(mapper, connection, target):
    """Prevent deletion of StockMovement records."""
    _block(
        "StockMovement",
        target,
        "DELETE",
        "Stock movements are immutable and cannot be deleted",
    )


def _check_webhook_delivery_immutability(mapper, connection, target):
    """Prevent any updates to WebhookDelivery records."""
    _block(
        "WebhookDelivery",
        target,
        "UPDATE",
        "Webhook delivery records are immutable and cannot be modified",
    )


def _check_webhook_delivery_delete(mapper, connection, target):
    """Prevent deletion of WebhookDelivery records."""
    _block(
        "WebhookDelivery",
        target,
        "DELETE",
        "Webhook delivery records are immutable and cannot be deleted",
    )


def _listeners():
    from crm_kernel.models.stock_movement import StockMovement
    from crm_kernel.models.webhook_delivery import WebhookDelivery

    return (
        (StockMovement, "before_update", _check_stock_movement_immutability),
        (StockMovement, "before_delete", _check_stock_movement_delete),
        (WebhookDelivery, "before_update", _check_webhook_delivery_immutability),
        (WebhookDelivery, "before_delete", _check_webhook_delivery_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
