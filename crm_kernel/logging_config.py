"""
Structured JSON logging for the CRM kernel.

Every record is one JSON line with ``ts``, ``level``, ``logger`` and
``message`` plus the bound LogContext fields and any ``extra=`` fields.
Messages are snake_case event names (``stock_deducted``,
``webhook_delivery_failed``); data goes in fields, never in the message.

Fields whose names look like credentials are replaced with
``[REDACTED]`` before serialization.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "crm_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "org_id",
    "actor_id",
    "invoice_id",
    "integration_id",
    "event_type",
)

_SECRET_MARKERS = ("authorization", "password", "token", "api_key", "apikey", "secret", "auth_config")


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_context: ContextVar[dict[str, str]] = ContextVar("crm_log_context", default={})


class LogContext:
    """Request-scoped log fields, safe across threads and async tasks."""

    @staticmethod
    def _merged(values: dict[str, Any]) -> dict[str, str]:
        merged = dict(_context.get())
        for name, val in values.items():
            if name in CONTEXT_FIELDS and val is not None:
                merged[name] = str(val)
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add or replace fields; None values and unknown names are ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Context manager: fields apply inside the block only."""
        return _BoundContext(cls._merged(fields))


class _BoundContext:
    def __init__(self, values: dict[str, str]):
        self._values = values
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(self._values)
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _is_secret(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _to_json(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key in _STDLIB_KEYS or key in payload:
                continue
            payload[key] = "[REDACTED]" if _is_secret(key) else val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            # Structured attributes of CrmKernelError subclasses
            for k, v in vars(exc).items():
                if k.startswith("_") or k in ("args", "code") or _is_secret(k):
                    continue
                payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the crm_kernel namespace, e.g. ``services.stock_ledger``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the crm_kernel logger.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Remove handlers and forget configuration.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
