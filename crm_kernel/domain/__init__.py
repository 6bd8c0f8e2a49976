"""
Pure domain layer.

Immutable data transfer objects and pure logic with NO dependencies on:
- ORM sessions
- Database
- Time (except through an injected Clock)
- Network I/O
"""

from crm_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from crm_kernel.domain.dtos import (
    DeductedItem,
    InventoryItemInfo,
    LedgerVerification,
    MovementInfo,
    RestoredItem,
    StockAdjustmentResult,
    StockCheckLine,
    StockCheckResult,
    StockDeductionLine,
    StockDeductionResult,
    StockRestorationResult,
    as_item_id,
    merge_deduction_lines,
)
from crm_kernel.domain.stock_status import StockStatus, calculate_margin, get_stock_status
from crm_kernel.domain.webhook_auth import (
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    NoAuth,
    WebhookAuth,
    decode_auth,
    redact_headers,
)
from crm_kernel.domain.webhooks import (
    DeliveryOutcome,
    DeliveryRecord,
    WebhookTestResult,
    TriggerResult,
    WebhookPayload,
    WebhookSubscription,
    json_safe,
)

__all__ = [
    "ApiKeyAuth",
    "BasicAuth",
    "BearerAuth",
    "Clock",
    "DeductedItem",
    "DeliveryOutcome",
    "DeliveryRecord",
    "DeterministicClock",
    "InventoryItemInfo",
    "LedgerVerification",
    "MovementInfo",
    "NoAuth",
    "RestoredItem",
    "StockAdjustmentResult",
    "StockCheckLine",
    "StockCheckResult",
    "StockDeductionLine",
    "StockDeductionResult",
    "StockRestorationResult",
    "StockStatus",
    "SystemClock",
    "WebhookTestResult",
    "TriggerResult",
    "WebhookAuth",
    "WebhookPayload",
    "WebhookSubscription",
    "as_item_id",
    "calculate_margin",
    "decode_auth",
    "get_stock_status",
    "json_safe",
    "merge_deduction_lines",
    "redact_headers",
]
