"""
Pytest fixtures for the CRM stock ledger and webhook test suite.

Provides:
- A file-backed SQLite database per test (tables created, immutability
  listeners registered)
- Sessions and a session factory for unit-of-work tests
- Data builders for inventory items, invoices and webhook integrations
- A fake HTTP session for webhook delivery
- Structured log capture

Every test gets a fresh database file under tmp_path, so data written
through committed transactions never leaks between tests.
"""

import json
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from io import StringIO
from typing import Any, Generator
from uuid import UUID, uuid4

import pytest
import requests
from sqlalchemy.orm import Session

from crm_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    transaction_scope,
)
from crm_kernel.db.immutability import register_immutability_listeners
from crm_kernel.domain.clock import DeterministicClock
from crm_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from crm_kernel.models.integration import IntegrationType, RegularIntegration
from crm_kernel.models.inventory import InventoryItem
from crm_kernel.models.invoice import Invoice, InvoiceItem
from crm_kernel.services.stock_ledger_service import StockLedgerService


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture crm_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.adjust_stock(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_adjusted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("crm_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """A fresh SQLite database file with all tables."""
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'crm_test.db'}")
    create_tables()
    register_immutability_listeners()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for flush-only service tests.  Rolled back at teardown."""
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def ledger(session, deterministic_clock) -> StockLedgerService:
    return StockLedgerService(session, clock=deterministic_clock)


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_org_id() -> UUID:
    return uuid4()


@pytest.fixture
def actor_id() -> UUID:
    return uuid4()


# =============================================================================
# Data builders (committed through their own transaction)
# =============================================================================


@pytest.fixture
def make_item(session_factory, org_id, actor_id, deterministic_clock):
    """
    Create a committed inventory item with its INITIAL movement.

    Returns the item id.  ``is_active=False`` deactivates the item after
    creation.
    """
    counter = {"n": 0}

    def _make(
        stock: Decimal | int | str = 0,
        unit_price: Decimal | int | str = "10.00",
        name: str | None = None,
        sku: str | None = None,
        reorder_level: Decimal | int | str = 0,
        cost_price: Decimal | int | str | None = None,
        is_active: bool = True,
        org: UUID | None = None,
    ) -> UUID:
        counter["n"] += 1
        n = counter["n"]
        with transaction_scope(session_factory) as sess:
            info = StockLedgerService(sess, clock=deterministic_clock).create_item(
                org or org_id,
                name or f"Item {n}",
                sku or f"TEST-{n:04d}",
                actor_id,
                stock_level=stock,
                reorder_level=reorder_level,
                unit_price=unit_price,
                cost_price=cost_price,
            )
            if not is_active:
                sess.get(InventoryItem, info.id).is_active = False
        return info.id

    return _make


@pytest.fixture
def make_invoice(session_factory, org_id):
    """
    Create a committed invoice.

    ``lines`` is a list of (inventory_item_id | None, quantity, unit_price).
    """

    def _make(lines, status: str = "SENT", org: UUID | None = None) -> UUID:
        with transaction_scope(session_factory) as sess:
            total = sum((Decimal(str(q)) * Decimal(str(p)) for _, q, p in lines), Decimal("0"))
            invoice = Invoice(
                org_id=org or org_id,
                invoice_number=f"INV-{uuid4().hex[:6].upper()}",
                status=status,
                total=total,
            )
            sess.add(invoice)
            sess.flush()
            for i, (item_id, quantity, price) in enumerate(lines):
                sess.add(
                    InvoiceItem(
                        invoice_id=invoice.id,
                        description=f"Line {i + 1}",
                        quantity=Decimal(str(quantity)),
                        unit_price=Decimal(str(price)),
                        inventory_item_id=item_id,
                        sort_order=i,
                    )
                )
            return invoice.id

    return _make


@pytest.fixture
def make_integration(session_factory, org_id):
    """Create a committed integration.  Defaults to an enabled outgoing webhook."""

    def _make(
        url: str | None = "https://hooks.example.com/a",
        events: list[str] | None = None,
        auth_type: str | None = None,
        auth_config: Any = None,
        headers: dict[str, str] | None = None,
        name: str = "Test hook",
        is_enabled: bool = True,
        integration_type: str = IntegrationType.WEBHOOK_OUTGOING.value,
        org: UUID | None = None,
    ) -> UUID:
        config: dict[str, Any] = {}
        if url is not None:
            config["url"] = url
        if auth_type is not None:
            config["authType"] = auth_type
        if auth_config is not None:
            config["authConfig"] = auth_config
        if headers is not None:
            config["headers"] = headers
        with transaction_scope(session_factory) as sess:
            integration = RegularIntegration(
                org_id=org or org_id,
                name=name,
                type=integration_type,
                is_enabled=is_enabled,
                events=events if events is not None else ["invoice.created"],
                config=config,
                success_count=0,
                failure_count=0,
            )
            sess.add(integration)
            sess.flush()
            return integration.id

    return _make


# =============================================================================
# Fake HTTP
# =============================================================================


@dataclass
class FakeResponse:
    """Streamed response: the dispatcher reads the body through iter_content()."""

    status_code: int = 200
    text: str = "ok"
    encoding: str | None = "utf-8"
    closed: bool = False

    def iter_content(self, chunk_size=1, decode_unicode=False):
        raw = self.text.encode(self.encoding or "utf-8")
        for start in range(0, len(raw), chunk_size):
            yield raw[start:start + chunk_size]

    def close(self):
        self.closed = True


@dataclass
class RecordedRequest:
    url: str
    json: Any
    headers: dict[str, str]
    timeout: Any
    stream: bool = False


class FakeHttpSession:
    """
    Stand-in for requests.Session used by WebhookDispatcher.

    ``routes`` maps a URL to a FakeResponse, to an exception instance that
    post() raises, or to a zero-argument callable whose return value (or
    exception) is the outcome.  Unrouted URLs answer 200.
    """

    def __init__(self):
        self.routes: dict[str, Any] = {}
        self.requests: list[RecordedRequest] = []
        self._lock = threading.Lock()

    def route(self, url: str, outcome: Any) -> None:
        self.routes[url] = outcome

    def respond(self, url: str, status_code: int, text: str = "") -> None:
        self.routes[url] = FakeResponse(status_code, text)

    def make_response(self, status_code: int = 200, text: str = "") -> FakeResponse:
        return FakeResponse(status_code, text)

    def post(self, url, json=None, headers=None, timeout=None, stream=False, **kwargs):
        with self._lock:
            self.requests.append(
                RecordedRequest(
                    url=url, json=json, headers=dict(headers or {}), timeout=timeout, stream=stream
                )
            )
        outcome = self.routes.get(url, FakeResponse())
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome()
        return outcome

    def for_url(self, url: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.url == url]


@pytest.fixture
def http():
    return FakeHttpSession()


@pytest.fixture
def timeout_error():
    return requests.Timeout("Read timed out. (read timeout=30)")


@pytest.fixture
def dispatcher(session_factory, http, deterministic_clock):
    """WebhookDispatcher wired to the fake HTTP session."""
    from crm_services.webhook_dispatcher import WebhookDispatcher

    return WebhookDispatcher(session_factory, http_session=http, clock=deterministic_clock)
