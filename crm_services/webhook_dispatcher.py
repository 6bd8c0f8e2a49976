"""
crm_services.webhook_dispatcher -- Fan out domain events to outgoing webhooks.

Responsibility:
    Finds the enabled outgoing-webhook integrations of an organization that
    subscribe to an event, builds one payload, and POSTs it to every
    subscriber in parallel, one worker thread per subscriber.  Each attempt
    is handed to the DeliveryRecorder.  trigger_webhooks_async() runs the
    same fan-out on a background thread for fire-and-forget callers.

Architecture position:
    Services -- called after the domain transaction commits.  Subscriber
    lookup and delivery recording use their own short transactions and
    never join the caller's.

Invariants enforced:
    CONTAINED_DELIVERY -- a failing subscriber (timeout, refused connection,
        non-2xx, bad configuration, unexpected error) affects only its own
        TriggerResult.  trigger_webhooks() never raises.
    - All subscribers of one trigger receive the same payload, timestamp
      included.
    - Contract headers cannot be overridden by custom headers or by an API
      key header; the auth header wins over a custom header of the same name.
    - A POST gets timeout_seconds in total, not per socket read: the body
      is streamed and the delivery fails at the first chunk that arrives
      past the deadline.  A connection that goes silent is cut by the
      per-read timeout of the same length.
    - Persisted request headers never contain credential values.

Failure modes:
    - Lookup failure -> logged as ``webhook_subscriber_lookup_failed``,
      returns [].
    - Missing URL / undecodable auth -> FAILED delivery, no network call.
    - send_test_webhook raises IntegrationNotFoundError,
      NotOutgoingWebhookError, MissingEndpointError or
      InvalidAuthConfigError for unusable targets.

Non-goals:
    No retries, no backoff, no queue.  A failed delivery stays failed.
"""

from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Mapping
from uuid import UUID

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from crm_config.schema import CrmConfig, WebhookSettings
from crm_kernel.db.engine import transaction_scope
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.domain.webhook_auth import (
    Decryptor,
    NoAuth,
    WebhookAuth,
    decode_auth,
    redact_headers,
)
from crm_kernel.domain.webhooks import (
    HEADER_CONTENT_TYPE,
    HEADER_EVENT,
    HEADER_SOURCE,
    HEADER_TEST,
    HEADER_TIMESTAMP,
    PROTECTED_HEADERS,
    DeliveryOutcome,
    DeliveryRecord,
    TriggerResult,
    WebhookPayload,
    WebhookSubscription,
    WebhookTestResult,
)
from crm_kernel.exceptions import (
    IntegrationNotFoundError,
    MissingEndpointError,
    NotOutgoingWebhookError,
    WebhookError,
)
from crm_kernel.logging_config import LogContext, get_logger
from crm_kernel.models.integration import IntegrationType, RegularIntegration
from crm_kernel.utils.encryption import FieldEncryptor, plaintext_only
from crm_services.webhook_recorder import DeliveryRecorder

logger = get_logger("services.webhook_dispatcher")

TEST_EVENT = "test"
TEST_MESSAGE = "This is a test webhook from Y-CRM"

JSON_CONTENT_TYPE = "application/json"

READ_CHUNK_BYTES = 512


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _event_name(event_type: Any) -> str:
    return str(getattr(event_type, "value", event_type))


def _custom_headers(config: Mapping[str, Any], protected: frozenset[str]) -> dict[str, str]:
    """Subscriber-defined headers minus any that collide with protected names."""
    raw = config.get("headers")
    if not isinstance(raw, Mapping):
        return {}
    headers: dict[str, str] = {}
    for name, value in raw.items():
        if value is None or str(name).lower() in protected:
            continue
        headers[str(name)] = str(value)
    return headers


def _read_text(response: requests.Response, deadline: float, limit: int) -> str | None:
    """
    Stream the response body and return its first ``limit`` characters.

    Returns None once ``deadline`` (a time.monotonic() value) has passed.
    Reading stops as soon as enough bytes for ``limit`` characters arrived.
    """
    byte_budget = limit * 4
    chunks: list[bytes] = []
    size = 0
    if time.monotonic() > deadline:
        return None
    for chunk in response.iter_content(chunk_size=READ_CHUNK_BYTES):
        if time.monotonic() > deadline:
            return None
        chunks.append(chunk)
        size += len(chunk)
        if size >= byte_budget:
            break
    raw = b"".join(chunks)
    try:
        text = raw.decode(response.encoding or "utf-8", errors="replace")
    except LookupError:
        text = raw.decode("utf-8", errors="replace")
    return text[:limit]


def _apply_auth(headers: dict[str, str], auth: WebhookAuth) -> dict[str, str]:
    taken = auth.credential_headers()
    for name in [n for n in headers if n.lower() in taken]:
        del headers[name]
    return auth.apply(headers)


class WebhookDispatcher:
    """
    Outgoing webhook dispatcher.

    Contract:
        trigger_webhooks(org_id, event_type, data) returns one TriggerResult
        per matching subscriber, in subscriber order, and never raises.

    Guarantees:
        - One POST per subscriber per trigger, each started immediately
          and bounded by its own total deadline.
        - One WebhookDelivery row per attempt (unless the recorder itself
          fails, which is logged).

    Non-goals:
        - Does not retry.
        - Does not take part in the caller's database transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        http_session: requests.Session | None = None,
        recorder: DeliveryRecorder | None = None,
        settings: WebhookSettings | None = None,
        decrypt: Decryptor | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._http = http_session or requests.Session()
        self._recorder = recorder or DeliveryRecorder(session_factory)
        self._settings = settings or WebhookSettings()
        self._decrypt = decrypt or plaintext_only
        self._clock = clock or SystemClock()

    @classmethod
    def from_config(
        cls,
        config: CrmConfig,
        session_factory: sessionmaker[Session],
        http_session: requests.Session | None = None,
    ) -> WebhookDispatcher:
        """Build a dispatcher whose auth decryption uses the configured key."""
        decrypt: Decryptor = plaintext_only
        if config.encryption.configured:
            decrypt = FieldEncryptor(config.encryption.key).safe_decrypt
        return cls(
            session_factory,
            http_session=http_session,
            settings=config.webhooks,
            decrypt=decrypt,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _load_subscriptions(self, org_id: UUID, event: str) -> list[WebhookSubscription]:
        with transaction_scope(self._session_factory) as session:
            rows = session.execute(
                select(RegularIntegration)
                .where(
                    RegularIntegration.org_id == org_id,
                    RegularIntegration.is_enabled.is_(True),
                    RegularIntegration.type == IntegrationType.WEBHOOK_OUTGOING.value,
                )
                .order_by(RegularIntegration.created_at, RegularIntegration.id)
            ).scalars().all()
            return [
                WebhookSubscription(
                    integration_id=row.id,
                    org_id=row.org_id,
                    name=row.name,
                    config=dict(row.config or {}),
                )
                for row in rows
                if event in (row.events or [])
            ]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _contract_headers(self, event: str, timestamp: str) -> dict[str, str]:
        return {
            HEADER_CONTENT_TYPE: JSON_CONTENT_TYPE,
            HEADER_SOURCE: self._settings.source,
            HEADER_EVENT: event,
            HEADER_TIMESTAMP: timestamp,
        }

    def _post(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        response_limit: int,
    ) -> DeliveryOutcome:
        timeout = self._settings.timeout_seconds
        started = time.monotonic()
        try:
            response = self._http.post(
                url,
                json=body,
                headers=headers,
                timeout=timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            return DeliveryOutcome(
                success=False,
                error=str(exc) or exc.__class__.__name__,
                duration_ms=_elapsed_ms(started),
            )

        # timeout bounds each socket read; the deadline bounds the whole request
        try:
            text = _read_text(response, started + timeout, response_limit)
        except requests.RequestException as exc:
            return DeliveryOutcome(
                success=False,
                status=response.status_code,
                error=str(exc) or exc.__class__.__name__,
                duration_ms=_elapsed_ms(started),
            )
        finally:
            response.close()

        if text is None:
            return DeliveryOutcome(
                success=False,
                error=f"Request timed out after {timeout:g}s",
                duration_ms=_elapsed_ms(started),
            )
        return DeliveryOutcome(
            success=200 <= response.status_code < 300,
            status=response.status_code,
            duration_ms=_elapsed_ms(started),
            response_body=text,
        )

    def deliver_webhook(
        self,
        subscription: WebhookSubscription,
        payload: WebhookPayload,
    ) -> DeliveryOutcome:
        """
        Deliver one payload to one subscriber and record the attempt.

        Configuration problems are returned as failed outcomes; the only
        exceptions that escape are unexpected ones.
        """
        with LogContext.bind(
            org_id=str(subscription.org_id),
            integration_id=str(subscription.integration_id),
            event_type=payload.event,
        ):
            attempted_at = self._clock.now()
            config = subscription.config
            url = subscription.url
            body = payload.to_dict()
            headers = _custom_headers(config, PROTECTED_HEADERS)
            headers.update(self._contract_headers(payload.event, payload.timestamp))

            auth: WebhookAuth = NoAuth()
            try:
                if url is None:
                    raise MissingEndpointError(str(subscription.integration_id))
                auth = decode_auth(config.get("authType"), config.get("authConfig"), self._decrypt)
            except WebhookError as exc:
                logger.warning(
                    "webhook_delivery_not_attempted",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                outcome = DeliveryOutcome(success=False, error=str(exc))
            else:
                _apply_auth(headers, auth)
                outcome = self._post(url, headers, body, self._settings.response_body_limit)

            self._recorder.record(
                DeliveryRecord(
                    org_id=subscription.org_id,
                    integration_id=subscription.integration_id,
                    event_type=payload.event,
                    request_url=url,
                    request_headers=redact_headers(headers, auth),
                    request_body=body,
                    attempted_at=attempted_at,
                    outcome=outcome,
                )
            )

            if outcome.success:
                logger.info(
                    "webhook_delivered",
                    extra={"status": outcome.status, "duration_ms": outcome.duration_ms},
                )
            else:
                logger.warning(
                    "webhook_delivery_failed",
                    extra={
                        "status": outcome.status,
                        "error": outcome.error,
                        "duration_ms": outcome.duration_ms,
                    },
                )
            return outcome

    def trigger_webhooks(
        self,
        org_id: UUID,
        event_type: Any,
        data: Mapping[str, Any],
    ) -> list[TriggerResult]:
        """
        Deliver an event to every enabled outgoing webhook subscribed to it.

        Args:
            org_id: Organization whose integrations are notified.
            event_type: Event name (str or WebhookEventType).
            data: Event data; converted to plain JSON types.

        Returns:
            One TriggerResult per subscriber; [] when there are none or the
            lookup failed.
        """
        event = _event_name(event_type)
        try:
            subscriptions = self._load_subscriptions(org_id, event)
        except Exception:
            logger.error(
                "webhook_subscriber_lookup_failed",
                exc_info=True,
                extra={"org_id": str(org_id), "event_type": event},
            )
            return []

        if not subscriptions:
            return []

        payload = WebhookPayload.build(event, self._clock.now(), data)
        # One worker per subscriber: every POST starts immediately
        with ThreadPoolExecutor(
            max_workers=len(subscriptions), thread_name_prefix="webhook"
        ) as pool:
            futures = [pool.submit(self.deliver_webhook, s, payload) for s in subscriptions]

        results: list[TriggerResult] = []
        for subscription, future in zip(subscriptions, futures):
            try:
                outcome = future.result()
            except Exception as exc:
                logger.error(
                    "webhook_delivery_crashed",
                    exc_info=True,
                    extra={
                        "org_id": str(org_id),
                        "integration_id": str(subscription.integration_id),
                        "event_type": event,
                    },
                )
                outcome = DeliveryOutcome(success=False, error=str(exc) or exc.__class__.__name__)
            results.append(
                TriggerResult(
                    integration_id=subscription.integration_id,
                    success=outcome.success,
                    status=outcome.status,
                    error=outcome.error,
                    duration_ms=outcome.duration_ms,
                )
            )

        logger.info(
            "webhooks_triggered",
            extra={
                "org_id": str(org_id),
                "event_type": event,
                "subscriber_count": len(results),
                "success_count": sum(1 for r in results if r.success),
            },
        )
        return results

    def trigger_webhooks_async(
        self,
        org_id: UUID,
        event_type: Any,
        data: Mapping[str, Any],
    ) -> Future[list[TriggerResult]]:
        """
        Run trigger_webhooks on a background thread and return at once.

        The thread inherits the caller's LogContext.  It is not a daemon, so
        deliveries in flight finish (bounded by the delivery timeout) before
        the interpreter exits.  The returned future resolves to the
        TriggerResults; callers may ignore it.
        """
        future: Future[list[TriggerResult]] = Future()
        context = contextvars.copy_context()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.trigger_webhooks(org_id, event_type, data))
            except Exception as exc:
                logger.error(
                    "webhook_trigger_crashed",
                    exc_info=True,
                    extra={"org_id": str(org_id), "event_type": _event_name(event_type)},
                )
                future.set_exception(exc)

        threading.Thread(
            target=context.run, args=(run,), name="webhook-trigger", daemon=False
        ).start()
        return future

    # ------------------------------------------------------------------
    # Manual test
    # ------------------------------------------------------------------

    def send_test_webhook(self, org_id: UUID, integration_id: UUID | str) -> WebhookTestResult:
        """
        Send a ``test`` event to one integration.

        Counters and the delivery log are not touched.

        Raises:
            IntegrationNotFoundError: Unknown id, or another org's integration.
            NotOutgoingWebhookError: The integration is not an outgoing webhook.
            MissingEndpointError: No URL configured.
            InvalidAuthConfigError: Stored auth settings cannot be decoded.
        """
        try:
            key = integration_id if isinstance(integration_id, UUID) else UUID(str(integration_id))
        except ValueError:
            raise IntegrationNotFoundError(str(integration_id)) from None

        with transaction_scope(self._session_factory) as session:
            row = session.execute(
                select(RegularIntegration).where(
                    RegularIntegration.id == key,
                    RegularIntegration.org_id == org_id,
                )
            ).scalar_one_or_none()
            snapshot = None
            if row is not None:
                snapshot = (row.type, row.name, dict(row.config or {}))

        if snapshot is None:
            raise IntegrationNotFoundError(str(key))
        integration_type, name, config = snapshot
        if integration_type != IntegrationType.WEBHOOK_OUTGOING.value:
            raise NotOutgoingWebhookError(str(key), integration_type)

        url = config.get("url") or None
        if url is None:
            raise MissingEndpointError(str(key))
        auth = decode_auth(config.get("authType"), config.get("authConfig"), self._decrypt)

        payload = WebhookPayload.build(
            TEST_EVENT,
            self._clock.now(),
            {"message": TEST_MESSAGE, "integrationId": str(key), "integrationName": name},
        )
        headers = _custom_headers(config, PROTECTED_HEADERS | {HEADER_TEST.lower()})
        headers.update(
            {
                HEADER_CONTENT_TYPE: JSON_CONTENT_TYPE,
                HEADER_SOURCE: self._settings.source,
                HEADER_TEST: "true",
            }
        )
        _apply_auth(headers, auth)

        outcome = self._post(url, headers, payload.to_dict(), self._settings.test_response_limit)
        if outcome.status is None:
            message = f"Failed to connect: {outcome.error}"
        elif outcome.success:
            message = "Webhook delivered successfully"
        else:
            message = f"Webhook returned status {outcome.status}"

        logger.info(
            "webhook_test_sent",
            extra={
                "org_id": str(org_id),
                "integration_id": str(key),
                "success": outcome.success,
                "status": outcome.status,
            },
        )
        return WebhookTestResult(
            success=outcome.success,
            message=message,
            status=outcome.status,
            duration_ms=outcome.duration_ms,
            response=outcome.response_body,
        )
