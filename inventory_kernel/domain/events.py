"""
Domain events.

Lifecycle notifications are immutable value records collected in an
``EventBuffer`` owned by one unit of work.  Services append while the
transaction is open; the unit of work drains the buffer only after a
successful commit and discards it on rollback.  Nothing here delivers events
anywhere: that belongs to whoever receives the drained tuple.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID


class EventKind(str, Enum):
    ORDER_CONFIRMED = "OrderConfirmed"
    ORDER_ALLOCATED = "OrderAllocated"
    ORDER_SHIPPED = "OrderShipped"
    ORDER_CANCELLED = "OrderCancelled"
    GOODS_RECEIVED = "GoodsReceived"
    PURCHASE_ORDER_CLOSED = "PurchaseOrderClosed"
    STOCK_ADJUSTED = "StockAdjusted"
    STOCK_TRANSFERRED = "StockTransferred"


@dataclass(frozen=True)
class DomainEvent:
    """
    One lifecycle event.

    ``reference`` is the human-facing document number (ORD-000001 etc.);
    ``payload`` is a read-only mapping of scalar facts about the change.
    """
    kind: EventKind
    entity_type: str
    entity_id: UUID
    reference: str | None
    occurred_at: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))


class EventBuffer:
    """Per-transaction event queue."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []

    def append(self, event: DomainEvent) -> None:
        self._events.append(event)

    def record(
        self,
        kind: EventKind,
        entity_type: str,
        entity_id: UUID,
        occurred_at: datetime,
        reference: str | None = None,
        **payload: Any,
    ) -> DomainEvent:
        event = DomainEvent(
            kind=kind,
            entity_type=entity_type,
            entity_id=entity_id,
            reference=reference,
            occurred_at=occurred_at,
            payload=payload,
        )
        self._events.append(event)
        return event

    def drain(self) -> tuple[DomainEvent, ...]:
        """Return all buffered events and empty the buffer."""
        drained = tuple(self._events)
        self._events.clear()
        return drained

    def discard(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
