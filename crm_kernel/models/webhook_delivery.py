"""
Module: crm_kernel.models.webhook_delivery
Responsibility: ORM persistence for the append-only webhook delivery log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE through the ORM
      (crm_kernel.db.immutability).
    - request_headers never contain credential values; DeliveryRecorder
      stores the redacted header map.

Audit relevance:
    One row per delivery attempt, including attempts that failed before any
    network call (missing URL, undecodable auth configuration).
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import Base, OrgScopedMixin, UUIDString


class DeliveryStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class WebhookDelivery(OrgScopedMixin, Base):
    """One webhook delivery attempt and its outcome."""

    __tablename__ = "webhook_deliveries"

    __table_args__ = (
        Index("idx_delivery_integration", "integration_id", "attempted_at"),
        Index("idx_delivery_org_event", "org_id", "event_type"),
    )

    integration_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("regular_integrations.id"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    request_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    request_headers: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    request_body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)

    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[DeliveryStatus] = mapped_column(String(20), nullable=False)

    error_message: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookDelivery {self.event_type} {self.status} ({self.response_status})>"
