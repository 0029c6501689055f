"""
OrderService -- the sales Order Workflow.

Responsibility:
    Creates orders, adds lines, and drives every status transition through
    ORDER_WORKFLOW.  Allocation, shipment and cancellation call into the
    AllocationService for the stock side of the transition.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the orchestrator inside a unit of work.

Invariants enforced:
    - Status changes only through ``Order.apply_transition``.
    - Allocate is all-or-nothing: a shortfall on any line leaves the order
      Confirmed with no reservation persisted.
    - Cancelling an order that holds stock releases its reservation in the
      same transaction.
    - Events are buffered, never delivered here.

Failure modes:
    - InvalidTransitionError: guard violated (status unchanged).
    - InsufficientStockError: allocation shortfall.
    - ConflictError: another transaction is transitioning the same order.
    - OrderNotFoundError / VariantNotFoundError / WarehouseNotFoundError.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.config import EngineConfig
from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import AllocationRequest, OrderLineSpec
from inventory_kernel.domain.events import EventBuffer, EventKind
from inventory_kernel.domain.quantities import positive_quantity, to_quantity
from inventory_kernel.domain.workflows import ORDER_HOLDS_ALLOCATION, ORDER_WORKFLOW
from inventory_kernel.exceptions import (
    OrderNotFoundError,
    VariantNotFoundError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.order import Order
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.services.allocation_service import AllocationService
from inventory_kernel.services.row_locks import flush_document, lock_document
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.order")

REFERENCE_TYPE = "order"


class OrderService:
    """
    Sales order lifecycle.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT price or tax; unit prices arrive from the caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        events: EventBuffer,
        config: EngineConfig | None = None,
        allocation: AllocationService | None = None,
        sequence_service: SequenceService | None = None,
        cancellation: CancellationToken | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._events = events
        self._config = config or EngineConfig.with_defaults()
        self._cancellation = cancellation or NEVER_CANCELLED
        self._allocation = allocation or AllocationService(
            session, self._clock, cancellation=self._cancellation,
        )
        self._sequences = sequence_service or SequenceService(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, order_id: UUID) -> Order:
        return lock_document(self._session, Order, order_id, OrderNotFoundError)

    def _emit(self, kind: EventKind, order: Order, **payload) -> None:
        self._events.record(
            kind,
            "Order",
            order.id,
            self._clock.now(),
            reference=order.order_number,
            status=order.status,
            **payload,
        )

    def _log_transition(self, order: Order, from_state: str, action: str) -> None:
        logger.info(
            "order_transitioned",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "action": action,
                "from_state": from_state,
                "to_state": order.status,
            },
        )

    def _append_line(self, order: Order, spec: OrderLineSpec) -> None:
        variant = self._session.get(ProductVariant, spec.variant_id)
        if variant is None or variant.is_deleted or not variant.is_active:
            raise VariantNotFoundError(str(spec.variant_id))
        unit_price = to_quantity(spec.unit_price)
        if unit_price < 0:
            raise ValueError("unit_price cannot be negative")
        order.add_line(spec.variant_id, positive_quantity(spec.quantity), unit_price)

    def _simple_transition(self, order_id: UUID, action: str, actor_id: UUID) -> Order:
        order = self._lock(order_id)
        from_state = order.status
        order.apply_transition(action)
        order.updated_by_id = actor_id
        flush_document(self._session, order)
        self._log_transition(order, from_state, action)
        return order

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        customer_id: UUID,
        warehouse_id: UUID,
        *,
        actor_id: UUID,
        lines: Iterable[OrderLineSpec] = (),
        notes: str | None = None,
    ) -> Order:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None or warehouse.is_deleted or not warehouse.is_active:
            raise WarehouseNotFoundError(str(warehouse_id))

        order = Order(
            order_number=self._sequences.next_document_number(
                "order", self._config.prefix_for("order"), self._config.number_width,
            ),
            order_date=self._clock.now(),
            customer_id=customer_id,
            warehouse_id=warehouse_id,
            total_amount=Decimal("0"),
            notes=notes,
            created_by_id=actor_id,
        )
        self._session.add(order)
        for spec in lines:
            self._append_line(order, spec)
        self._session.flush()

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "line_count": len(order.lines),
            },
        )
        return order

    def add_line(self, order_id: UUID, spec: OrderLineSpec, *, actor_id: UUID) -> Order:
        order = self._lock(order_id)
        self._append_line(order, spec)
        order.updated_by_id = actor_id
        flush_document(self._session, order)
        logger.info(
            "order_line_added",
            extra={
                "order_id": str(order.id),
                "line_count": len(order.lines),
                "total_amount": str(order.total_amount),
            },
        )
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm(self, order_id: UUID, *, actor_id: UUID) -> Order:
        order = self._simple_transition(order_id, "confirm", actor_id)
        self._emit(EventKind.ORDER_CONFIRMED, order, total_amount=order.total_amount)
        return order

    def allocate(self, order_id: UUID, *, actor_id: UUID) -> Order:
        """Reserve every line against the order's warehouse, or fail with nothing held."""
        order = self._lock(order_id)
        from_state = order.status
        ORDER_WORKFLOW.transition(
            order.status, "allocate", facts=order.facts(), entity_id=order.id,
        )

        reservation = self._allocation.allocate_many(
            [
                AllocationRequest(variant_id, quantity)
                for variant_id, quantity in order.quantities_by_variant().items()
            ],
            order.warehouse_id,
            actor_id=actor_id,
            reference_type=REFERENCE_TYPE,
            reference_id=order.id,
            order_id=order.id,
        )

        order.apply_transition("allocate")
        order.reservation_id = reservation.id
        order.updated_by_id = actor_id
        flush_document(self._session, order)
        self._log_transition(order, from_state, "allocate")
        self._emit(
            EventKind.ORDER_ALLOCATED, order, reservation_id=reservation.id,
        )
        return order

    def pick(self, order_id: UUID, *, actor_id: UUID) -> Order:
        return self._simple_transition(order_id, "pick", actor_id)

    def pack(self, order_id: UUID, *, actor_id: UUID) -> Order:
        return self._simple_transition(order_id, "pack", actor_id)

    def ship(self, order_id: UUID, *, actor_id: UUID) -> Order:
        """Ship a packed order, consuming its reservation."""
        order = self._lock(order_id)
        from_state = order.status
        ORDER_WORKFLOW.transition(
            order.status, "ship", facts=order.facts(), entity_id=order.id,
        )

        if order.reservation_id is not None:
            self._allocation.consume(
                order.reservation_id,
                actor_id=actor_id,
                reference_type=REFERENCE_TYPE,
                reference_id=order.id,
            )

        order.apply_transition("ship")
        order.updated_by_id = actor_id
        flush_document(self._session, order)
        self._log_transition(order, from_state, "ship")
        self._emit(EventKind.ORDER_SHIPPED, order)
        return order

    def invoice(self, order_id: UUID, *, actor_id: UUID) -> Order:
        return self._simple_transition(order_id, "invoice", actor_id)

    def cancel(self, order_id: UUID, *, actor_id: UUID) -> Order:
        """Cancel, releasing held stock when the order was past allocation."""
        order = self._lock(order_id)
        from_state = order.status
        ORDER_WORKFLOW.transition(
            order.status, "cancel", facts=order.facts(), entity_id=order.id,
        )

        released = False
        if from_state in ORDER_HOLDS_ALLOCATION and order.reservation_id is not None:
            result = self._allocation.release_for_order(
                order.reservation_id, order.id, actor_id=actor_id,
            )
            released = bool(result.released_lines)

        order.apply_transition("cancel")
        order.updated_by_id = actor_id
        flush_document(self._session, order)
        self._log_transition(order, from_state, "cancel")
        self._emit(
            EventKind.ORDER_CANCELLED,
            order,
            previous_status=from_state,
            stock_released=released,
        )
        return order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, order_id: UUID, *, active_only: bool = True) -> Order:
        order = self._session.get(Order, order_id, populate_existing=True)
        if order is None or (active_only and order.is_deleted):
            raise OrderNotFoundError(str(order_id))
        return order
