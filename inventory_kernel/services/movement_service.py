"""
MovementService -- the Adjustment & Transfer Engine.

Responsibility:
    Applies manual stock corrections at one location and moves stock
    between two warehouses.  Both are ledger-recording operations outside
    the order and procurement flows.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the orchestrator inside a unit of work; every snapshot write
    goes through LedgerService.

Invariants enforced:
    - An adjustment never drives on-hand below zero, nor below the quantity
      currently allocated (reserved stock cannot be adjusted away).
    - A transfer writes a paired -q / +q Transfer entry per moved slice and
      is atomic across all of its lines (SAVEPOINT).

Failure modes:
    - NegativeStockError: adjustment below zero on-hand.
    - InsufficientStockError: adjustment below allocated, or transfer source
      cannot cover the requested quantity.
    - ValueError: zero delta, same-warehouse transfer, empty transfer, or a
      location outside its warehouse.
    - LocationNotFoundError / WarehouseNotFoundError / VariantNotFoundError.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from inventory_kernel.config import EngineConfig
from inventory_kernel.domain.allocation import (
    AllocationSlice,
    LocationAvailability,
    plan_allocation,
)
from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    AdjustmentReasonCode,
    LedgerEntryType,
    TransferLineSpec,
    TransferStatus,
    ZoneType,
)
from inventory_kernel.domain.events import EventBuffer, EventKind
from inventory_kernel.domain.quantities import ZERO, positive_quantity, to_quantity
from inventory_kernel.exceptions import (
    InsufficientStockError,
    LocationNotFoundError,
    VariantNotFoundError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.movements import StockAdjustment, TransferOrder, TransferOrderLine
from inventory_kernel.models.stock import StockSnapshot
from inventory_kernel.models.warehouse import Location, Warehouse
from inventory_kernel.services.ledger_service import LedgerService
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.movement")


class MovementService:
    """
    Adjustments and inter-warehouse transfers.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT model in-transit stock; a transfer lands in one step.
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
    # Lookups
    # ------------------------------------------------------------------

    def _variant(self, variant_id: UUID) -> ProductVariant:
        variant = self._session.get(ProductVariant, variant_id)
        if variant is None or variant.is_deleted:
            raise VariantNotFoundError(str(variant_id))
        return variant

    def _warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None or warehouse.is_deleted or not warehouse.is_active:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def _location(self, location_id: UUID, warehouse_id: UUID | None = None) -> Location:
        location = self._session.get(Location, location_id)
        if location is None or location.is_deleted:
            raise LocationNotFoundError(str(location_id))
        if warehouse_id is not None and location.warehouse_id != warehouse_id:
            raise ValueError(
                f"Location {location.code} does not belong to warehouse {warehouse_id}"
            )
        return location

    def receiving_location(self, warehouse_id: UUID) -> Location:
        """Default put-away location: the Receiving zone first, then lowest code."""
        location = self._session.execute(
            select(Location)
            .where(
                Location.warehouse_id == warehouse_id,
                Location.is_active.is_(True),
                Location.is_deleted.is_(False),
            )
            .order_by(
                case((Location.zone_type == ZoneType.RECEIVING.value, 0), else_=1),
                Location.code,
            )
            .limit(1)
        ).scalar_one_or_none()
        if location is None:
            raise LocationNotFoundError(f"receiving location in warehouse {warehouse_id}")
        return location

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        variant_id: UUID,
        location_id: UUID,
        delta: Decimal,
        reason_code: AdjustmentReasonCode | str,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> tuple[StockAdjustment, StockSnapshot]:
        """
        Correct on-hand at one location by a signed ``delta``.

        Raises:
            ValueError: delta is zero or reason_code unknown.
            NegativeStockError: on_hand + delta < 0.
            InsufficientStockError: on_hand + delta < allocated.
        """
        delta = to_quantity(delta)
        if delta == ZERO:
            raise ValueError("Adjustment delta must be non-zero")
        reason = AdjustmentReasonCode(reason_code)
        self._variant(variant_id)
        location = self._location(location_id)

        self._cancellation.raise_if_cancelled("apply_adjustment")
        adjustment_id = uuid4()
        number = self._sequences.next_document_number(
            "adjustment", self._config.prefix_for("adjustment"), self._config.number_width,
        )
        entry, snapshot = self._ledger.record_movement(
            LedgerEntryType.ADJUSTMENT,
            variant_id,
            location.id,
            delta,
            actor_id=actor_id,
            reference_type="adjustment",
            reference_id=adjustment_id,
            notes=notes or reason.value,
        )

        adjustment = StockAdjustment(
            id=adjustment_id,
            adjustment_number=number,
            adjusted_at=self._clock.now(),
            variant_id=variant_id,
            location_id=location.id,
            quantity_adjusted=delta,
            reason_code=reason.value,
            notes=notes,
            adjusted_by=actor_id,
            ledger_entry_id=entry.id,
            created_by_id=actor_id,
        )
        self._session.add(adjustment)
        self._session.flush()

        logger.info(
            "stock_adjusted",
            extra={
                "adjustment_number": number,
                "variant_id": str(variant_id),
                "location_id": str(location.id),
                "delta": str(delta),
                "reason_code": reason.value,
                "quantity_on_hand": str(snapshot.quantity_on_hand),
            },
        )
        self._events.record(
            EventKind.STOCK_ADJUSTED,
            "StockAdjustment",
            adjustment.id,
            self._clock.now(),
            reference=number,
            variant_id=variant_id,
            location_id=location.id,
            delta=delta,
            reason_code=reason.value,
        )
        return adjustment, snapshot

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _plan_source(
        self, spec: TransferLineSpec, quantity: Decimal, warehouse: Warehouse,
    ) -> tuple[AllocationSlice, ...]:
        if spec.from_location_id is not None:
            location = self._location(spec.from_location_id, warehouse.id)
            snapshot = self._ledger.lock_snapshot(spec.variant_id, location.id, create=False)
            available = snapshot.quantity_available if snapshot is not None else ZERO
            if available < quantity:
                raise InsufficientStockError(
                    str(spec.variant_id), quantity, available, f"location {location.code}",
                )
            return (AllocationSlice(location.id, location.code, quantity),)

        rows = self._session.execute(
            select(StockSnapshot, Location.code)
            .join(Location, Location.id == StockSnapshot.location_id)
            .where(
                StockSnapshot.variant_id == spec.variant_id,
                Location.warehouse_id == warehouse.id,
                Location.is_active.is_(True),
                Location.is_deleted.is_(False),
                Location.zone_type != ZoneType.QUARANTINE.value,
            )
            .order_by(Location.code)
            .with_for_update(of=StockSnapshot)
            .execution_options(populate_existing=True)
        ).all()
        return plan_allocation(
            [
                LocationAvailability(snap.location_id, code, snap.quantity_available)
                for snap, code in rows
            ],
            quantity,
            variant_id=spec.variant_id,
            scope=f"warehouse {warehouse.code}",
        )

    def apply_transfer(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        lines: Iterable[TransferLineSpec],
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> TransferOrder:
        """
        Move stock between two warehouses; every line lands or none do.

        Raises:
            ValueError: same warehouse, or no lines.
            InsufficientStockError: a line's source cannot cover it.
        """
        if from_warehouse_id == to_warehouse_id:
            raise ValueError("Transfer source and destination warehouses must differ")
        specs = list(lines)
        if not specs:
            raise ValueError("Transfer requires at least one line")
        source = self._warehouse(from_warehouse_id)
        destination = self._warehouse(to_warehouse_id)

        transfer = TransferOrder(
            id=uuid4(),
            transfer_number=self._sequences.next_document_number(
                "transfer", self._config.prefix_for("transfer"), self._config.number_width,
            ),
            transfer_date=self._clock.now(),
            from_warehouse_id=source.id,
            to_warehouse_id=destination.id,
            status=TransferStatus.COMPLETED.value,
            notes=notes,
            created_by_id=actor_id,
        )

        savepoint = self._session.begin_nested()
        try:
            line_no = 0
            for spec in specs:
                self._cancellation.raise_if_cancelled("apply_transfer")
                quantity = positive_quantity(spec.quantity)
                self._variant(spec.variant_id)

                if spec.to_location_id is not None:
                    target = self._location(spec.to_location_id, destination.id)
                else:
                    target = self.receiving_location(destination.id)

                for piece in self._plan_source(spec, quantity, source):
                    outbound, _ = self._ledger.record_movement(
                        LedgerEntryType.TRANSFER,
                        spec.variant_id,
                        piece.location_id,
                        -piece.quantity,
                        actor_id=actor_id,
                        reference_type="transfer",
                        reference_id=transfer.id,
                        notes=f"Transfer {transfer.transfer_number} out",
                    )
                    inbound, _ = self._ledger.record_movement(
                        LedgerEntryType.TRANSFER,
                        spec.variant_id,
                        target.id,
                        piece.quantity,
                        unit_cost=outbound.unit_cost,
                        actor_id=actor_id,
                        reference_type="transfer",
                        reference_id=transfer.id,
                        notes=f"Transfer {transfer.transfer_number} in",
                    )
                    line_no += 1
                    transfer.lines.append(
                        TransferOrderLine(
                            line_no=line_no,
                            variant_id=spec.variant_id,
                            quantity=piece.quantity,
                            from_location_id=piece.location_id,
                            to_location_id=target.id,
                            outbound_entry_id=outbound.id,
                            inbound_entry_id=inbound.id,
                        )
                    )

            self._session.add(transfer)
            self._session.flush()
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.info(
                "transfer_rolled_back",
                extra={
                    "transfer_number": transfer.transfer_number,
                    "from_warehouse_id": str(from_warehouse_id),
                    "to_warehouse_id": str(to_warehouse_id),
                },
            )
            raise

        logger.info(
            "stock_transferred",
            extra={
                "transfer_number": transfer.transfer_number,
                "from_warehouse": source.code,
                "to_warehouse": destination.code,
                "line_count": len(transfer.lines),
            },
        )
        self._events.record(
            EventKind.STOCK_TRANSFERRED,
            "TransferOrder",
            transfer.id,
            self._clock.now(),
            reference=transfer.transfer_number,
            from_warehouse_id=source.id,
            to_warehouse_id=destination.id,
            quantity=sum((l.quantity for l in transfer.lines), ZERO),
        )
        return transfer
