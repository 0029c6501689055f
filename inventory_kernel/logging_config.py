"""
Structured JSON logging for the inventory kernel.

Every record under the ``inventory_kernel`` logger namespace is written as one
JSON object per line.  Fields passed through ``extra={...}`` land at top level,
as do the request-scoped fields held in LogContext (operation, actor, the
document being worked on).  Exceptions raised from the kernel contribute their
machine ``code`` and structured attributes as ``exc_*`` keys, so a rejected
allocation logs ``exc_requested`` / ``exc_available`` without string parsing.

Usage::

    logger = get_logger("services.allocation")
    with LogContext.bind(operation="allocate_order", document_ref="ORD-000042"):
        logger.info("stock_allocated", extra={"quantity": qty})
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_ROOT = "inventory_kernel"

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "operation", "document_ref", "trace_id")

_EMPTY: Mapping[str, str] = MappingProxyType({})

_current: ContextVar[Mapping[str, str]] = ContextVar("inventory_log_context", default=_EMPTY)


def _checked(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(_CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
    return {k: str(v) for k, v in fields.items() if v is not None}


class LogContext:
    """
    Request-scoped log fields.

    Backed by a single ContextVar holding a read-only mapping, so each thread
    and each asyncio task sees its own copy.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Merge non-None fields into the current context."""
        _current.set(MappingProxyType({**_current.get(), **_checked(fields)}))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_current.get())

    @staticmethod
    def clear() -> None:
        _current.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[type["LogContext"]]:
        """Overlay fields for the duration of a ``with`` block."""
        token = _current.set(MappingProxyType({**_current.get(), **_checked(fields)}))
        try:
            yield LogContext
        finally:
            _current.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_current.get(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                out.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            out.update(_exception_fields(record.exc_info[1]))
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger named ``inventory_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the ``inventory_kernel`` logger.

    Only the first call has any effect until reset_logging() is called.
    Records do not propagate to the root logger.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root = logging.getLogger(_ROOT)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach handlers and forget configuration. For tests."""
    global _handler
    with _setup_lock:
        _handler = None
        root = logging.getLogger(_ROOT)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
