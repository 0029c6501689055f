"""
ProcurementService -- the Procurement Workflow and goods receipt.

Responsibility:
    Creates purchase orders, drives them through PURCHASE_ORDER_WORKFLOW,
    and processes goods receipt notes: each received line increments the
    PO line, appends a Purchase ledger entry and raises on-hand stock.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the orchestrator inside a unit of work.  All stock writes go
    through LedgerService.

Invariants enforced:
    - 0 <= quantity_received <= quantity_ordered per PO line.
    - Receipt is all-or-nothing: every GRN line is validated before the
      first ledger entry is written, and the unit of work rolls back if a
      later write fails.
    - After a receipt the PO is PartiallyReceived while any line is short
      and Closed once every line is full.

Failure modes:
    - InvalidTransitionError: receipt outside Approved/PartiallyReceived or
      any other guard violation.
    - OverReceiptError: receipt would exceed the ordered quantity.
    - ReceiptLineMismatchError: GRN line variant differs from the PO line.
    - PurchaseOrderLineNotFoundError / LocationNotFoundError.
    - ConflictError: concurrent transition on the same PO.

Audit relevance:
    GoodsReceiptNote rows are append-only and each GRN line names the
    ledger entry it produced.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.config import EngineConfig
from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryType, PurchaseOrderLineSpec, ReceiptLineSpec
from inventory_kernel.domain.events import EventBuffer, EventKind
from inventory_kernel.domain.quantities import positive_quantity, to_quantity
from inventory_kernel.domain.workflows import RECEIVABLE_PO_STATES, PurchaseOrderStatus
from inventory_kernel.exceptions import (
    InvalidTransitionError,
    LocationNotFoundError,
    OverReceiptError,
    PurchaseOrderLineNotFoundError,
    PurchaseOrderNotFoundError,
    ReceiptLineMismatchError,
    VariantNotFoundError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.purchasing import (
    GoodsReceiptLine,
    GoodsReceiptNote,
    PurchaseOrder,
    PurchaseOrderLine,
)
from inventory_kernel.models.warehouse import Location, Warehouse
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.row_locks import flush_document, lock_document
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.procurement")

REFERENCE_TYPE = "purchase_order"


class ProcurementService:
    """
    Purchase order lifecycle and receiving.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT onboard vendors; vendor_id is an opaque reference.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        events: EventBuffer,
        config: EngineConfig | None = None,
        ledger: LedgerService | None = None,
        sequence_service: SequenceService | None = None,
        cancellation: CancellationToken | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._events = events
        self._config = config or EngineConfig.with_defaults()
        self._sequences = sequence_service or SequenceService(session)
        self._ledger = ledger or LedgerService(session, self._clock, self._sequences)
        self._cancellation = cancellation or NEVER_CANCELLED

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock(self, purchase_order_id: UUID) -> PurchaseOrder:
        return lock_document(
            self._session, PurchaseOrder, purchase_order_id, PurchaseOrderNotFoundError,
        )

    def _append_line(self, po: PurchaseOrder, spec: PurchaseOrderLineSpec) -> None:
        variant = self._session.get(ProductVariant, spec.variant_id)
        if variant is None or variant.is_deleted or not variant.is_active:
            raise VariantNotFoundError(str(spec.variant_id))
        unit_price = to_quantity(spec.unit_price)
        if unit_price < 0:
            raise ValueError("unit_price cannot be negative")
        po.add_line(
            spec.variant_id,
            positive_quantity(spec.quantity_ordered, "quantity_ordered"),
            unit_price,
        )

    def _transition(
        self, purchase_order_id: UUID, action: str, actor_id: UUID,
    ) -> PurchaseOrder:
        po = self._lock(purchase_order_id)
        from_state = po.status
        po.apply_transition(action)
        po.updated_by_id = actor_id
        flush_document(self._session, po)
        logger.info(
            "purchase_order_transitioned",
            extra={
                "purchase_order_id": str(po.id),
                "po_number": po.po_number,
                "action": action,
                "from_state": from_state,
                "to_state": po.status,
            },
        )
        return po

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_purchase_order(
        self,
        vendor_id: UUID,
        warehouse_id: UUID,
        *,
        actor_id: UUID,
        lines: Iterable[PurchaseOrderLineSpec] = (),
        expected_delivery_date: date | None = None,
        notes: str | None = None,
    ) -> PurchaseOrder:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None or warehouse.is_deleted or not warehouse.is_active:
            raise WarehouseNotFoundError(str(warehouse_id))

        po = PurchaseOrder(
            po_number=self._sequences.next_document_number(
                "purchase_order",
                self._config.prefix_for("purchase_order"),
                self._config.number_width,
            ),
            order_date=self._clock.now(),
            vendor_id=vendor_id,
            warehouse_id=warehouse_id,
            expected_delivery_date=expected_delivery_date,
            notes=notes,
            created_by_id=actor_id,
        )
        self._session.add(po)
        for spec in lines:
            self._append_line(po, spec)
        self._session.flush()

        logger.info(
            "purchase_order_created",
            extra={
                "purchase_order_id": str(po.id),
                "po_number": po.po_number,
                "line_count": len(po.lines),
            },
        )
        return po

    def add_line(
        self, purchase_order_id: UUID, spec: PurchaseOrderLineSpec, *, actor_id: UUID,
    ) -> PurchaseOrder:
        po = self._lock(purchase_order_id)
        self._append_line(po, spec)
        po.updated_by_id = actor_id
        flush_document(self._session, po)
        return po

    # ------------------------------------------------------------------
    # Approval flow
    # ------------------------------------------------------------------

    def submit(self, purchase_order_id: UUID, *, actor_id: UUID) -> PurchaseOrder:
        return self._transition(purchase_order_id, "submit", actor_id)

    def request_approval(self, purchase_order_id: UUID, *, actor_id: UUID) -> PurchaseOrder:
        return self._transition(purchase_order_id, "request_approval", actor_id)

    def approve(self, purchase_order_id: UUID, *, actor_id: UUID) -> PurchaseOrder:
        return self._transition(purchase_order_id, "approve", actor_id)

    def reject(
        self, purchase_order_id: UUID, *, actor_id: UUID, reason: str | None = None,
    ) -> PurchaseOrder:
        """Send a pending PO back to Draft, recording the reason in its notes."""
        po = self._transition(purchase_order_id, "reject", actor_id)
        if reason:
            stamp = self._clock.now().date().isoformat()
            line = f"[{stamp}] Rejected: {reason}"
            po.notes = f"{po.notes}\n{line}" if po.notes else line
            flush_document(self._session, po)
        return po

    def cancel(self, purchase_order_id: UUID, *, actor_id: UUID) -> PurchaseOrder:
        return self._transition(purchase_order_id, "cancel", actor_id)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def _validate_receipt(
        self, po: PurchaseOrder, specs: list[ReceiptLineSpec],
    ) -> list[tuple[ReceiptLineSpec, PurchaseOrderLine, Decimal]]:
        receiving: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        resolved = []
        for spec in specs:
            quantity = positive_quantity(spec.quantity, "received quantity")

            po_line = po.line_by_id(spec.purchase_order_line_id)
            if po_line is None:
                raise PurchaseOrderLineNotFoundError(str(spec.purchase_order_line_id))
            if po_line.variant_id != spec.variant_id:
                raise ReceiptLineMismatchError(
                    str(po_line.id), str(po_line.variant_id), str(spec.variant_id),
                )

            location = self._session.get(Location, spec.location_id)
            if location is None or location.is_deleted or not location.is_active:
                raise LocationNotFoundError(str(spec.location_id))

            receiving[po_line.id] += quantity
            if po_line.quantity_received + receiving[po_line.id] > po_line.quantity_ordered:
                raise OverReceiptError(
                    str(po_line.id),
                    po_line.quantity_ordered,
                    po_line.quantity_received,
                    receiving[po_line.id],
                )
            resolved.append((spec, po_line, quantity))
        return resolved

    def receive_goods(
        self,
        purchase_order_id: UUID,
        lines: Iterable[ReceiptLineSpec],
        *,
        received_by: str,
        actor_id: UUID,
        delivery_note_number: str | None = None,
        notes: str | None = None,
    ) -> tuple[GoodsReceiptNote, PurchaseOrder]:
        """
        Process one delivery against an approved purchase order.

        Returns:
            The persisted GoodsReceiptNote and the updated PurchaseOrder.
        """
        po = self._lock(purchase_order_id)
        closed = po.status == PurchaseOrderStatus.CLOSED.value
        if po.status not in RECEIVABLE_PO_STATES and not closed:
            raise InvalidTransitionError(
                "PurchaseOrder", str(po.id), po.status, "receive",
            )

        specs = list(lines)
        if not specs:
            raise ValueError("Goods receipt requires at least one line")
        # A closed PO has nothing outstanding, so any positive line is an over-receipt.
        resolved = self._validate_receipt(po, specs)
        if closed:
            raise InvalidTransitionError(
                "PurchaseOrder", str(po.id), po.status, "receive",
            )

        grn = GoodsReceiptNote(
            grn_number=self._sequences.next_document_number(
                "goods_receipt",
                self._config.prefix_for("goods_receipt"),
                self._config.number_width,
            ),
            purchase_order_id=po.id,
            received_date=self._clock.now(),
            delivery_note_number=delivery_note_number,
            received_by=received_by,
            notes=notes,
            created_by_id=actor_id,
        )

        for line_no, (spec, po_line, quantity) in enumerate(resolved, start=1):
            self._cancellation.raise_if_cancelled("receive_goods")
            entry, _ = self._ledger.record_movement(
                LedgerEntryType.PURCHASE,
                spec.variant_id,
                spec.location_id,
                quantity,
                unit_cost=po_line.unit_price,
                actor_id=actor_id,
                reference_type=REFERENCE_TYPE,
                reference_id=po.id,
                notes=f"Receipt {grn.grn_number}",
            )
            po_line.quantity_received += quantity
            grn.lines.append(
                GoodsReceiptLine(
                    line_no=line_no,
                    purchase_order_line_id=po_line.id,
                    variant_id=spec.variant_id,
                    location_id=spec.location_id,
                    quantity_received=quantity,
                    ledger_entry_id=entry.id,
                )
            )

        self._session.add(grn)
        from_state = po.status
        po.apply_transition("receive")
        po.updated_by_id = actor_id
        flush_document(self._session, po)

        logger.info(
            "goods_received",
            extra={
                "purchase_order_id": str(po.id),
                "grn_number": grn.grn_number,
                "line_count": len(grn.lines),
                "from_state": from_state,
                "to_state": po.status,
            },
        )

        now = self._clock.now()
        self._events.record(
            EventKind.GOODS_RECEIVED,
            "PurchaseOrder",
            po.id,
            now,
            reference=po.po_number,
            grn_number=grn.grn_number,
            status=po.status,
            quantity_received=sum((q for _, _, q in resolved), Decimal("0")),
        )
        if po.status == PurchaseOrderStatus.CLOSED.value:
            self._events.record(
                EventKind.PURCHASE_ORDER_CLOSED,
                "PurchaseOrder",
                po.id,
                now,
                reference=po.po_number,
            )
        return grn, po

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_purchase_order(
        self, purchase_order_id: UUID, *, active_only: bool = True,
    ) -> PurchaseOrder:
        po = self._session.get(PurchaseOrder, purchase_order_id, populate_existing=True)
        if po is None or (active_only and po.is_deleted):
            raise PurchaseOrderNotFoundError(str(purchase_order_id))
        return po
