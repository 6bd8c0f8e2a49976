"""Tests for the structured logging system (crm_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from crm_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "crm_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("stock_deducted", extra={"item_count": 2, "reference_id": "inv-1"})

        record = _parse_log(stream)
        assert record["item_count"] == 2
        assert record["reference_id"] == "inv-1"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", invoice_id="inv-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["invoice_id"] == "inv-456"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from crm_kernel.exceptions import InvalidAuthConfigError

        try:
            raise InvalidAuthConfigError("bearer", "missing 'bearerToken'")
        except InvalidAuthConfigError:
            logger.error("auth_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_AUTH_CONFIG"
        assert record["exc_type"] == "InvalidAuthConfigError"
        assert record["exc_auth_type"] == "bearer"
        assert record["exc_reason"] == "missing 'bearerToken'"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "org_id" not in record

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_values", extra={"item_id": uid, "quantity": Decimal("2.5")})

        record = _parse_log(stream)
        assert record["item_id"] == str(uid)
        assert record["quantity"] == "2.5"

    def test_credential_fields_redacted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "auth_debug",
            extra={"bearer_token": "abc", "Authorization": "Basic xyz", "status": 200},
        )

        record = _parse_log(stream)
        assert record["bearer_token"] == "[REDACTED]"
        assert record["Authorization"] == "[REDACTED]"
        assert record["status"] == 200

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", org_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "org_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(integration_id="outer")
        with LogContext.bind(integration_id="inner"):
            assert LogContext.get_all()["integration_id"] == "inner"
        assert LogContext.get_all()["integration_id"] == "outer"

    def test_bind_restores_none(self):
        assert "event_type" not in LogContext.get_all()
        with LogContext.bind(event_type="invoice.paid"):
            assert LogContext.get_all()["event_type"] == "invoice.paid"
        assert "event_type" not in LogContext.get_all()

    def test_bind_stringifies_and_ignores_unknown(self):
        uid = uuid4()
        with LogContext.bind(org_id=uid, not_a_field="x"):
            assert LogContext.get_all() == {"org_id": str(uid)}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            org_id="o",
            actor_id="a",
            invoice_id="i",
            integration_id="n",
            event_type="e",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["integration_id"] == "n"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("crm_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.stock_ledger").name == "crm_kernel.services.stock_ledger"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "crm_kernel.deep.nested.module"
