"""
Module: crm_kernel.models.integration
Responsibility: ORM persistence for third-party integrations, of which
    outgoing webhooks are the kind the dispatcher delivers to.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - success_count and failure_count are only changed through atomic SQL
      increments (DeliveryRecorder), never read-modify-write.

Audit relevance:
    last_triggered_at / last_error summarise the latest delivery attempt;
    the full history is in webhook_deliveries.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import OrgScopedMixin, TimestampedBase


class IntegrationType(str, Enum):
    """Integration kinds.  Only WEBHOOK_OUTGOING is dispatched to."""

    WEBHOOK_OUTGOING = "webhook_outgoing"
    WEBHOOK_INCOMING = "webhook_incoming"
    ZAPIER = "zapier"
    SLACK = "slack"


class RegularIntegration(OrgScopedMixin, TimestampedBase):
    """
    A configured integration of an organization.

    Contract:
        For outgoing webhooks ``config`` holds ``url``, ``authType``
        (none/bearer/api_key/basic), ``authConfig`` (encrypted string or
        plain dict) and optional custom ``headers``.  ``events`` lists the
        event types the subscriber receives.

    Non-goals:
        - Does not validate config shape; decode_auth does that at
          delivery time.
    """

    __tablename__ = "regular_integrations"

    __table_args__ = (
        Index("idx_integration_org_type", "org_id", "type"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    type: Mapped[str] = mapped_column(String(50), nullable=False)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_triggered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    last_error: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    @property
    def is_outgoing_webhook(self) -> bool:
        return self.type == IntegrationType.WEBHOOK_OUTGOING.value

    def __repr__(self) -> str:
        return f"<RegularIntegration {self.name} ({self.type})>"
