"""Event buffer semantics, cancellation tokens and quantity coercion."""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.events import DomainEvent, EventBuffer, EventKind
from inventory_kernel.domain.quantities import positive_quantity, to_quantity
from inventory_kernel.exceptions import OperationCancelledError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class TestEventBuffer:

    def test_record_and_drain(self):
        buf = EventBuffer()
        entity = uuid4()
        buf.record(EventKind.ORDER_CONFIRMED, "Order", entity, NOW, reference="ORD-000001", total="10")
        assert len(buf) == 1

        events = buf.drain()
        assert len(buf) == 0
        assert events[0].kind is EventKind.ORDER_CONFIRMED
        assert events[0].reference == "ORD-000001"
        assert events[0].payload["total"] == "10"

    def test_discard_drops_everything(self):
        buf = EventBuffer()
        buf.record(EventKind.STOCK_ADJUSTED, "StockAdjustment", uuid4(), NOW)
        buf.discard()
        assert buf.drain() == ()

    def test_payload_is_read_only(self):
        event = DomainEvent(
            kind=EventKind.GOODS_RECEIVED,
            entity_type="PurchaseOrder",
            entity_id=uuid4(),
            reference=None,
            occurred_at=NOW,
            payload={"lines": 2},
        )
        with pytest.raises(TypeError):
            event.payload["lines"] = 3

    def test_buffers_are_independent(self):
        a, b = EventBuffer(), EventBuffer()
        a.record(EventKind.ORDER_SHIPPED, "Order", uuid4(), NOW)
        assert len(b) == 0


class TestCancellationToken:

    def test_never_cancelled(self):
        NEVER_CANCELLED.raise_if_cancelled("noop")
        assert NEVER_CANCELLED.remaining() is None

    def test_explicit_cancel(self):
        token = CancellationToken()
        token.cancel("user abort")
        assert token.is_cancelled
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled("allocate_order")
        assert exc_info.value.operation == "allocate_order"
        assert exc_info.value.reason == "user abort"

    def test_deadline_on_deterministic_clock(self):
        clock = DeterministicClock()
        token = CancellationToken.with_timeout(5, clock)
        assert token.remaining() == pytest.approx(5)
        clock.advance(3)
        assert not token.is_cancelled
        clock.advance(2)
        assert token.is_expired
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled("receive_goods")
        assert exc_info.value.reason == "deadline exceeded"
        assert token.remaining() == 0

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            CancellationToken.with_timeout(0)


class TestQuantities:

    def test_quantized(self):
        assert to_quantity("1.5") == Decimal("1.500000000")
        assert to_quantity(3) == Decimal("3")

    @pytest.mark.parametrize("bad", [1.5, True])
    def test_float_and_bool_rejected(self, bad):
        with pytest.raises(TypeError):
            to_quantity(bad)

    @pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity"])
    def test_garbage_rejected(self, bad):
        with pytest.raises(ValueError):
            to_quantity(bad)

    def test_large_quantity_keeps_full_scale(self):
        assert to_quantity(10**20) == Decimal("100000000000000000000.000000000")
        assert to_quantity("12345678901234567890.123456789").as_tuple().exponent == -9

    @pytest.mark.parametrize("huge", [10**30, "1E+40"])
    def test_beyond_storage_precision_rejected(self, huge):
        with pytest.raises(ValueError, match="out of range"):
            to_quantity(huge)

    @pytest.mark.parametrize("value", [0, "-2"])
    def test_positive_quantity(self, value):
        with pytest.raises(ValueError):
            positive_quantity(value)
