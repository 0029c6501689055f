"""
AllocationService -- the Inventory Allocation Engine.

Responsibility:
    Reserves stock for orders (or any referenced document) within one
    warehouse, releases reservations, and consumes them at shipment.  It is
    the only writer of ``quantity_allocated``.

Architecture position:
    Kernel > Services -- imperative shell.
    Uses domain/allocation.py for the location plan and LedgerService for
    every snapshot write.  Called by OrderService and the orchestrator.

Invariants enforced:
    - Sum of reserved slices == requested quantity for every variant.
    - Whole-call atomicity: allocate_many runs inside a SAVEPOINT; a line
      that cannot be satisfied undoes every line reserved before it.
    - Release is idempotent: a second release returns ALREADY_RELEASED and
      writes nothing.
    - Snapshots are locked variant by variant in id order and, within a
      variant, in location-code order.  Allocate, release and consume all
      use this order, so no two of them wait on each other in a cycle.

Failure modes:
    - InsufficientStockError: warehouse availability below the request.
    - InvalidTransitionError: release/consume of a consumed or released
      reservation, or a plain release of a reservation an order holds.
    - OptimisticLockError: a snapshot or reservation row changed concurrently.
    - OperationCancelledError: token cancelled between lines.
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.allocation import (
    LocationAvailability,
    plan_allocation,
)
from inventory_kernel.domain.cancellation import NEVER_CANCELLED, CancellationToken
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    AllocationRequest,
    LedgerEntryType,
    ReleaseResult,
    ReleaseStatus,
    ReservationStatus,
)
from inventory_kernel.domain.quantities import positive_quantity
from inventory_kernel.exceptions import (
    InvalidTransitionError,
    OptimisticLockError,
    ReservationNotFoundError,
    VariantNotFoundError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.reservation import Reservation, ReservationLine
from inventory_kernel.models.stock import LedgerEntry, StockSnapshot
from inventory_kernel.models.warehouse import Location, Warehouse, allocatable_location_filter
from inventory_kernel.services.ledger_service import LedgerService

logger = get_logger("services.allocation")


class AllocationService:
    """
    Reserve, release and consume stock.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT change order status; OrderService does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: LedgerService | None = None,
        cancellation: CancellationToken | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = ledger or LedgerService(session, self._clock)
        self._cancellation = cancellation or NEVER_CANCELLED

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _lock_candidates(
        self, variant_id: UUID, warehouse_id: UUID,
    ) -> list[tuple[StockSnapshot, str]]:
        rows = self._session.execute(
            select(StockSnapshot, Location.code)
            .join(Location, Location.id == StockSnapshot.location_id)
            .join(Warehouse, Warehouse.id == Location.warehouse_id)
            .where(
                StockSnapshot.variant_id == variant_id,
                Location.warehouse_id == warehouse_id,
                *allocatable_location_filter(),
            )
            .order_by(Location.code)
            .with_for_update(of=StockSnapshot)
            .execution_options(populate_existing=True)
        ).all()
        return [(row[0], row[1]) for row in rows]

    def _require_warehouse(self, warehouse_id: UUID) -> Warehouse:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None or warehouse.is_deleted:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def _require_variant(self, variant_id: UUID) -> None:
        variant = self._session.get(ProductVariant, variant_id)
        if variant is None or variant.is_deleted:
            raise VariantNotFoundError(str(variant_id))

    # ------------------------------------------------------------------
    # Allocate
    # ------------------------------------------------------------------

    def allocate(
        self,
        variant_id: UUID,
        warehouse_id: UUID,
        quantity: Decimal,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        order_id: UUID | None = None,
    ) -> Reservation:
        """Reserve ``quantity`` of one variant in ``warehouse_id``."""
        return self.allocate_many(
            [AllocationRequest(variant_id, quantity)],
            warehouse_id,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            order_id=order_id,
        )

    def allocate_many(
        self,
        requests: Iterable[AllocationRequest],
        warehouse_id: UUID,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        order_id: UUID | None = None,
    ) -> Reservation:
        """
        Reserve every request or none of them.

        Requests for the same variant are merged.  Returns the flushed
        ACTIVE reservation.
        """
        merged: dict[UUID, Decimal] = {}
        for request in requests:
            qty = positive_quantity(request.quantity)
            merged[request.variant_id] = merged.get(request.variant_id, Decimal("0")) + qty
        if not merged:
            raise ValueError("Allocation requires at least one line")

        warehouse = self._require_warehouse(warehouse_id)
        for variant_id in merged:
            self._require_variant(variant_id)

        savepoint = self._session.begin_nested()
        try:
            reservation = Reservation(
                warehouse_id=warehouse_id,
                order_id=order_id,
                reference_type=reference_type,
                reference_id=reference_id,
                status=ReservationStatus.ACTIVE.value,
                created_by_id=actor_id,
            )
            self._session.add(reservation)
            self._session.flush()

            line_no = 0
            for variant_id in sorted(merged, key=str):
                self._cancellation.raise_if_cancelled("allocate")
                quantity = merged[variant_id]

                locked = self._lock_candidates(variant_id, warehouse_id)
                by_location = {snap.location_id: snap for snap, _ in locked}
                plan = plan_allocation(
                    [
                        LocationAvailability(snap.location_id, code, snap.quantity_available)
                        for snap, code in locked
                    ],
                    quantity,
                    variant_id=variant_id,
                    scope=f"warehouse {warehouse.code}",
                )

                for piece in plan:
                    entry, _ = self._ledger.record_reservation(
                        variant_id,
                        piece.location_id,
                        piece.quantity,
                        actor_id=actor_id,
                        reference_type=reference_type or "reservation",
                        reference_id=reference_id or reservation.id,
                        snapshot=by_location[piece.location_id],
                    )
                    line_no += 1
                    reservation.lines.append(
                        ReservationLine(
                            line_no=line_no,
                            variant_id=variant_id,
                            location_id=piece.location_id,
                            quantity=piece.quantity,
                            ledger_entry_id=entry.id,
                        )
                    )

            self._session.flush()
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.info(
                "allocation_rolled_back",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "reference_id": str(reference_id) if reference_id else None,
                },
            )
            raise

        logger.info(
            "stock_allocated",
            extra={
                "reservation_id": str(reservation.id),
                "warehouse_id": str(warehouse_id),
                "line_count": len(reservation.lines),
                "reference_type": reference_type,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return reservation

    # ------------------------------------------------------------------
    # Release / consume
    # ------------------------------------------------------------------

    def _lock_reservation(self, reservation_id: UUID) -> Reservation:
        reservation = self._session.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(str(reservation_id))
        return reservation

    def _flush_reservation(self, reservation: Reservation) -> None:
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("Reservation", str(reservation.id)) from exc

    def _lock_order(self, lines: list[ReservationLine]) -> list[ReservationLine]:
        """Lines in the order allocate() locks snapshots: variant id, then location code."""
        codes = dict(
            self._session.execute(
                select(Location.id, Location.code)
                .where(Location.id.in_([line.location_id for line in lines]))
            ).tuples()
        )
        return sorted(lines, key=lambda l: (str(l.variant_id), codes[l.location_id]))

    def release(self, reservation_id: UUID, *, actor_id: UUID) -> ReleaseResult:
        """
        Hand reserved stock back.

        Returns ALREADY_RELEASED, with nothing written, if the reservation
        was released before.  Reservations held by an order are released
        only by cancelling the order.
        """
        reservation = self._lock_reservation(reservation_id)
        if reservation.order_id is not None:
            raise InvalidTransitionError(
                "Reservation", str(reservation_id), reservation.status, "release",
                reason=f"held by order {reservation.order_id}; cancel the order instead",
            )
        return self._release(reservation, actor_id)

    def release_for_order(
        self, reservation_id: UUID, order_id: UUID, *, actor_id: UUID,
    ) -> ReleaseResult:
        """Release the reservation ``order_id`` holds, as part of cancelling it."""
        reservation = self._lock_reservation(reservation_id)
        if reservation.order_id != order_id:
            raise InvalidTransitionError(
                "Reservation", str(reservation_id), reservation.status, "release",
                reason=f"not held by order {order_id}",
            )
        return self._release(reservation, actor_id)

    def _release(self, reservation: Reservation, actor_id: UUID) -> ReleaseResult:
        reservation_id = reservation.id

        if reservation.status == ReservationStatus.RELEASED.value:
            logger.info(
                "reservation_already_released",
                extra={"reservation_id": str(reservation_id)},
            )
            return ReleaseResult(reservation.id, ReleaseStatus.ALREADY_RELEASED)
        if reservation.status != ReservationStatus.ACTIVE.value:
            raise InvalidTransitionError(
                "Reservation", str(reservation_id), reservation.status, "release",
            )

        for line in self._lock_order(list(reservation.lines)):
            self._cancellation.raise_if_cancelled("release")
            original = self._session.get(LedgerEntry, line.ledger_entry_id)
            self._ledger.reverse_reservation(original, actor_id=actor_id)

        reservation.status = ReservationStatus.RELEASED.value
        reservation.released_at = self._clock.now()
        reservation.updated_by_id = actor_id
        self._flush_reservation(reservation)

        logger.info(
            "reservation_released",
            extra={
                "reservation_id": str(reservation.id),
                "line_count": len(reservation.lines),
            },
        )
        return ReleaseResult(
            reservation.id,
            ReleaseStatus.RELEASED,
            tuple(line.to_dto() for line in reservation.lines),
        )

    def consume(
        self,
        reservation_id: UUID,
        *,
        actor_id: UUID,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
    ) -> Reservation:
        """
        Turn held stock into a shipment.

        Each line writes a Sale entry that lowers on-hand and allocated by
        the reserved quantity.
        """
        reservation = self._lock_reservation(reservation_id)
        if reservation.status != ReservationStatus.ACTIVE.value:
            raise InvalidTransitionError(
                "Reservation", str(reservation_id), reservation.status, "consume",
            )

        for line in self._lock_order(list(reservation.lines)):
            self._cancellation.raise_if_cancelled("consume")
            self._ledger.record_movement(
                LedgerEntryType.SALE,
                line.variant_id,
                line.location_id,
                -line.quantity,
                allocated_change=-line.quantity,
                actor_id=actor_id,
                reference_type=reference_type or reservation.reference_type,
                reference_id=reference_id or reservation.reference_id,
            )

        reservation.status = ReservationStatus.CONSUMED.value
        reservation.consumed_at = self._clock.now()
        reservation.updated_by_id = actor_id
        self._flush_reservation(reservation)

        logger.info(
            "reservation_consumed",
            extra={"reservation_id": str(reservation.id)},
        )
        return reservation
