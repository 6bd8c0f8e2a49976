"""
Webhook value objects shared by the dispatcher and the delivery recorder.

Pure data; no I/O.  WebhookPayload is the exact JSON body every subscriber
of one event receives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

WEBHOOK_SOURCE = "Y-CRM"

HEADER_CONTENT_TYPE = "Content-Type"
HEADER_SOURCE = "X-Webhook-Source"
HEADER_EVENT = "X-Webhook-Event"
HEADER_TIMESTAMP = "X-Webhook-Timestamp"
HEADER_TEST = "X-Webhook-Test"

# Contract headers a subscriber's custom headers may not override
PROTECTED_HEADERS: frozenset[str] = frozenset(
    h.lower() for h in (HEADER_CONTENT_TYPE, HEADER_SOURCE, HEADER_EVENT, HEADER_TIMESTAMP)
)


def iso_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def json_safe(value: Any) -> Any:
    """
    Convert a value into plain JSON types.

    Decimals become strings so money and quantities keep their exact value.
    """
    if isinstance(value, Enum):
        return json_safe(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return iso_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    return str(value)


@dataclass(frozen=True)
class WebhookPayload:
    """Body of one webhook event.  Generated once per trigger."""

    event: str
    timestamp: str
    data: dict[str, Any]

    @classmethod
    def build(cls, event: str, moment: datetime, data: Mapping[str, Any]) -> WebhookPayload:
        return cls(event=event, timestamp=iso_timestamp(moment), data=json_safe(dict(data)))

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "timestamp": self.timestamp, "data": self.data}


@dataclass(frozen=True)
class WebhookSubscription:
    """Snapshot of an outgoing-webhook integration taken at lookup time."""

    integration_id: UUID
    org_id: UUID
    name: str
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str | None:
        url = self.config.get("url")
        return url or None


@dataclass(frozen=True)
class DeliveryOutcome:
    """What happened on one delivery attempt."""

    success: bool
    status: int | None = None
    error: str | None = None
    duration_ms: int | None = None
    response_body: str | None = None


@dataclass(frozen=True)
class TriggerResult:
    """Per-subscriber result returned by trigger_webhooks."""

    integration_id: UUID
    success: bool
    status: int | None = None
    error: str | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class DeliveryRecord:
    """Everything the DeliveryRecorder persists for one attempt."""

    org_id: UUID
    integration_id: UUID
    event_type: str
    request_url: str | None
    request_headers: dict[str, str]
    request_body: dict[str, Any]
    attempted_at: datetime
    outcome: DeliveryOutcome

    @property
    def counter_error(self) -> str | None:
        """Error text stored as the integration's last_error on failure."""
        if self.outcome.success:
            return None
        if self.outcome.error:
            return self.outcome.error
        return f"HTTP {self.outcome.status}"


@dataclass(frozen=True)
class WebhookTestResult:
    """Result of a manual test delivery."""

    success: bool
    message: str
    status: int | None = None
    duration_ms: int | None = None
    response: str | None = None
