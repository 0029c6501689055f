"""Tests for the structured logging system (inventory_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import ReservationStatus
from inventory_kernel.exceptions import InsufficientStockError, InvalidTransitionError
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "inventory_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("order_transitioned", extra={"line_count": 3, "status": "confirmed"})

        record = _parse_log(stream)
        assert record["line_count"] == 3
        assert record["status"] == "confirmed"

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "stock_allocated",
            extra={
                "reservation_id": uid,
                "quantity": Decimal("2.5"),
                "status": ReservationStatus.ACTIVE,
            },
        )

        record = _parse_log(stream)
        assert record["reservation_id"] == str(uid)
        assert record["quantity"] == "2.5"
        assert record["status"] == "active"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(operation="allocate_order", document_ref="ORD-000007")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["operation"] == "allocate_order"
        assert record["document_ref"] == "ORD-000007"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "operation" not in record
        assert "actor_id" not in record

    def test_plain_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record
        assert "exc_code" not in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("v-1", Decimal("10"), Decimal("4"), "warehouse WH1")
        except InsufficientStockError:
            get_logger("test").warning("allocation_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INSUFFICIENT_STOCK"
        assert record["exc_variant_id"] == "v-1"
        assert record["exc_requested"] == "10"
        assert record["exc_available"] == "4"
        assert record["exc_scope"] == "warehouse WH1"

    def test_transition_error_carries_states(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        error = InvalidTransitionError("Order", "o-1", "draft", "ship")
        try:
            raise error
        except InvalidTransitionError:
            get_logger("test").warning("transition_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_TRANSITION"
        assert record["exc_current_state"] == "draft"
        assert record["exc_action"] == "ship"

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", operation="receive_goods")
        assert LogContext.get_all() == {"correlation_id": "x", "operation": "receive_goods"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner"):
            assert LogContext.get_all()["operation"] == "inner"
        assert LogContext.get_all()["operation"] == "outer"

    def test_bind_restores_absent(self):
        with LogContext.bind(actor_id="temp"):
            assert LogContext.get_all()["actor_id"] == "temp"
        assert "actor_id" not in LogContext.get_all()

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            actor_id="a",
            operation="o",
            document_ref="d",
            trace_id="t",
        )
        assert len(LogContext.get_all()) == 5


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert len(logging.getLogger("inventory_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.ledger").name == "inventory_kernel.services.ledger"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "inventory_kernel.deep.nested.module"


class TestOperationLogs:

    def test_operation_and_actor_bound_for_engine_calls(
        self, engine, site, variant, put_stock, test_actor_id,
    ):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)

        put_stock(variant, site["A-01"], 3)

        adjusted = next(r for r in _parse_all_logs(stream) if r["message"] == "stock_adjusted")
        assert adjusted["operation"] == "apply_adjustment"
        assert adjusted["actor_id"] == str(test_actor_id)
        assert adjusted["delta"] == "3.000000000"
