"""
crm_services.webhook_recorder -- Persist webhook delivery attempts.

Responsibility:
    Writes one ``WebhookDelivery`` row per attempt and updates the
    integration's rolling counters, in a transaction of its own.

Architecture position:
    Services -- the narrow "log or ignore" boundary of webhook delivery.
    The dispatcher calls ``record()`` after every attempt; nothing the
    recorder does can fail a delivery or a domain operation.

Invariants enforced:
    - Counters change only through atomic SQL increments
      (``success_count = success_count + 1``), so concurrent deliveries to
      one integration never lose an update.
    - Success leaves ``last_error`` untouched; failure overwrites it.

Failure modes:
    - Any database error is logged as ``webhook_delivery_record_failed``
      and reported as ``False``.  ``record()`` never raises.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from crm_kernel.db.engine import transaction_scope
from crm_kernel.domain.webhooks import DeliveryRecord
from crm_kernel.logging_config import get_logger
from crm_kernel.models.integration import RegularIntegration
from crm_kernel.models.webhook_delivery import DeliveryStatus, WebhookDelivery

logger = get_logger("services.webhook_recorder")


class DeliveryRecorder:
    """Appends delivery rows and bumps integration counters."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def record(self, record: DeliveryRecord) -> bool:
        """
        Persist one delivery attempt.

        Returns:
            True if the row and the counter update were committed.
        """
        outcome = record.outcome
        status = DeliveryStatus.SUCCESS if outcome.success else DeliveryStatus.FAILED
        try:
            with transaction_scope(self._session_factory) as session:
                session.add(
                    WebhookDelivery(
                        org_id=record.org_id,
                        integration_id=record.integration_id,
                        event_type=record.event_type,
                        request_url=record.request_url,
                        request_headers=dict(record.request_headers),
                        request_body=record.request_body,
                        response_status=outcome.status,
                        response_body=outcome.response_body,
                        attempted_at=record.attempted_at,
                        duration_ms=outcome.duration_ms,
                        status=status.value,
                        error_message=outcome.error,
                    )
                )

                stmt = update(RegularIntegration).where(
                    RegularIntegration.id == record.integration_id
                )
                if outcome.success:
                    stmt = stmt.values(
                        success_count=RegularIntegration.success_count + 1,
                        last_triggered_at=record.attempted_at,
                    )
                else:
                    stmt = stmt.values(
                        failure_count=RegularIntegration.failure_count + 1,
                        last_triggered_at=record.attempted_at,
                        last_error=record.counter_error,
                    )
                session.execute(stmt.execution_options(synchronize_session=False))
        except Exception:
            logger.error(
                "webhook_delivery_record_failed",
                exc_info=True,
                extra={
                    "org_id": str(record.org_id),
                    "integration_id": str(record.integration_id),
                    "event_type": record.event_type,
                    "delivery_status": status.value,
                },
            )
            return False
        return True
