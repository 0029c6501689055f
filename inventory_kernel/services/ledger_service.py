"""
LedgerService -- single writer of stock snapshots and ledger entries.

Responsibility:
    Every change to a (variant, location) snapshot goes through
    ``record_movement``, which mutates the snapshot and appends exactly one
    LedgerEntry in the caller's transaction.  Also hosts the recovery
    procedure that rebuilds snapshots from the ledger.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by AllocationService, ProcurementService, MovementService.
    Reads go through selectors/stock_selector.py.

Invariants enforced:
    - Reconciliation: the snapshot delta equals the ledger entry's
      (quantity_change, allocated_change), written together or not at all.
    - 0 <= allocated <= on_hand after every movement.
    - Snapshots are locked (``SELECT ... FOR UPDATE``) before they are read
      for a read-modify-write, and their version counter is checked on flush.

Failure modes:
    - NegativeStockError: the movement would drive on-hand below zero.
    - InsufficientStockError: allocated would exceed on-hand.
    - DataIntegrityError: allocated would fall below zero (release of stock
      that is not held).
    - OptimisticLockError: the snapshot row changed underneath us; the unit
      of work retries.

Audit relevance:
    Entries carry actor_id, reference_type/reference_id back to the source
    document, and a ledger-wide monotonic seq.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryType
from inventory_kernel.domain.quantities import ZERO
from inventory_kernel.exceptions import (
    DataIntegrityError,
    InsufficientStockError,
    LocationNotFoundError,
    NegativeStockError,
    OptimisticLockError,
    VariantNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.stock import LedgerEntry, StockSnapshot
from inventory_kernel.models.warehouse import Location
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService:
    """
    Ledger Store + Stock Snapshot writer.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT decide which location to draw from; callers plan that.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)

    # ------------------------------------------------------------------
    # Snapshot locking
    # ------------------------------------------------------------------

    def _select_snapshot(self, variant_id: UUID, location_id: UUID) -> StockSnapshot | None:
        return self._session.execute(
            select(StockSnapshot)
            .where(
                StockSnapshot.variant_id == variant_id,
                StockSnapshot.location_id == location_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_snapshot(
        self,
        variant_id: UUID,
        location_id: UUID,
        *,
        create: bool = True,
    ) -> StockSnapshot | None:
        """
        Load the snapshot row for update, creating a zero row on first use.

        Postconditions:
            The row is locked until the transaction ends (PostgreSQL).  On
            SQLite the IMMEDIATE transaction already holds the write lock.
        """
        snapshot = self._select_snapshot(variant_id, location_id)
        if snapshot is not None or not create:
            return snapshot

        location = self._session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))

        savepoint = self._session.begin_nested()
        try:
            snapshot = StockSnapshot(
                variant_id=variant_id,
                location_id=location_id,
                warehouse_id=location.warehouse_id,
                quantity_on_hand=ZERO,
                quantity_allocated=ZERO,
                updated_at=self._clock.now(),
            )
            self._session.add(snapshot)
            self._session.flush()
            savepoint.commit()
            logger.debug(
                "snapshot_created",
                extra={"variant_id": str(variant_id), "location_id": str(location_id)},
            )
            return snapshot
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "snapshot_create_race_retry",
                extra={"variant_id": str(variant_id), "location_id": str(location_id)},
            )
            snapshot = self._select_snapshot(variant_id, location_id)
            if snapshot is None:
                raise
            return snapshot

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _default_unit_cost(self, variant_id: UUID) -> Decimal:
        variant = self._session.get(ProductVariant, variant_id)
        if variant is None:
            raise VariantNotFoundError(str(variant_id))
        return variant.cost_price

    def record_movement(
        self,
        entry_type: LedgerEntryType,
        variant_id: UUID,
        location_id: UUID,
        quantity_change: Decimal,
        *,
        actor_id: UUID,
        allocated_change: Decimal = ZERO,
        unit_cost: Decimal | None = None,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        reverses_entry_id: UUID | None = None,
        notes: str | None = None,
        snapshot: StockSnapshot | None = None,
    ) -> tuple[LedgerEntry, StockSnapshot]:
        """
        Apply one movement to the snapshot and append its ledger entry.

        Args:
            snapshot: An already-locked snapshot for this key, if the caller
                holds one.

        Returns:
            (entry, snapshot) after flush.
        """
        if snapshot is None:
            snapshot = self.lock_snapshot(variant_id, location_id)

        new_on_hand = snapshot.quantity_on_hand + quantity_change
        new_allocated = snapshot.quantity_allocated + allocated_change

        if new_on_hand < ZERO:
            raise NegativeStockError(
                str(variant_id), str(location_id),
                snapshot.quantity_on_hand, quantity_change,
            )
        if new_allocated < ZERO:
            raise DataIntegrityError(
                f"Allocated quantity for variant {variant_id} at location "
                f"{location_id} would become negative ({new_allocated})"
            )
        if new_allocated > new_on_hand:
            raise InsufficientStockError(
                str(variant_id),
                requested=max(allocated_change, -quantity_change),
                available=snapshot.quantity_available,
                scope=f"location {location_id}",
            )

        now = self._clock.now()
        snapshot.quantity_on_hand = new_on_hand
        snapshot.quantity_allocated = new_allocated
        snapshot.updated_at = now

        entry = LedgerEntry(
            seq=self._sequences.next_value(SequenceService.LEDGER_ENTRY),
            occurred_at=now,
            entry_type=entry_type.value,
            variant_id=variant_id,
            location_id=location_id,
            warehouse_id=snapshot.warehouse_id,
            quantity_change=quantity_change,
            allocated_change=allocated_change,
            unit_cost=unit_cost if unit_cost is not None else self._default_unit_cost(variant_id),
            reference_type=reference_type,
            reference_id=reference_id,
            reverses_entry_id=reverses_entry_id,
            notes=notes,
            actor_id=actor_id,
        )
        self._session.add(entry)

        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("StockSnapshot", str(snapshot.id)) from exc

        logger.info(
            "ledger_entry_recorded",
            extra={
                "seq": entry.seq,
                "entry_type": entry_type.value,
                "variant_id": str(variant_id),
                "location_id": str(location_id),
                "quantity_change": str(quantity_change),
                "allocated_change": str(allocated_change),
                "reference_type": reference_type,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return entry, snapshot

    def record_reservation(
        self,
        variant_id: UUID,
        location_id: UUID,
        quantity: Decimal,
        *,
        actor_id: UUID,
        reference_type: str | None,
        reference_id: UUID | None,
        snapshot: StockSnapshot | None = None,
    ) -> tuple[LedgerEntry, StockSnapshot]:
        """Hold ``quantity`` at a location: allocated += quantity, on-hand untouched."""
        return self.record_movement(
            LedgerEntryType.ALLOCATION,
            variant_id,
            location_id,
            ZERO,
            allocated_change=quantity,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            snapshot=snapshot,
        )

    def reverse_reservation(
        self,
        original: LedgerEntry,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> tuple[LedgerEntry, StockSnapshot]:
        """Append the compensating entry for an Allocation entry."""
        return self.record_movement(
            LedgerEntryType.ALLOCATION,
            original.variant_id,
            original.location_id,
            ZERO,
            allocated_change=-original.allocated_change,
            unit_cost=original.unit_cost,
            actor_id=actor_id,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            reverses_entry_id=original.id,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def rebuild_snapshots(self) -> int:
        """
        Recompute every snapshot from the ledger.

        Equivalent to zeroing all snapshots and replaying the ledger from
        empty.  Missing snapshots are created; snapshots with no ledger
        history are zeroed.

        Returns:
            Number of snapshot rows whose values changed or were created.
        """
        totals = {
            (row.variant_id, row.location_id): row
            for row in self._session.execute(
                select(
                    LedgerEntry.variant_id,
                    LedgerEntry.location_id,
                    LedgerEntry.warehouse_id,
                    func.coalesce(func.sum(LedgerEntry.quantity_change), 0).label("on_hand"),
                    func.coalesce(func.sum(LedgerEntry.allocated_change), 0).label("allocated"),
                ).group_by(
                    LedgerEntry.variant_id,
                    LedgerEntry.location_id,
                    LedgerEntry.warehouse_id,
                )
            )
        }

        snapshots = self._session.execute(
            select(StockSnapshot)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        now = self._clock.now()
        fixed = 0
        seen: set[tuple[UUID, UUID]] = set()
        for snapshot in snapshots:
            key = (snapshot.variant_id, snapshot.location_id)
            seen.add(key)
            row = totals.get(key)
            on_hand = Decimal(row.on_hand) if row else ZERO
            allocated = Decimal(row.allocated) if row else ZERO
            if snapshot.quantity_on_hand != on_hand or snapshot.quantity_allocated != allocated:
                logger.warning(
                    "snapshot_rebuilt",
                    extra={
                        "variant_id": str(snapshot.variant_id),
                        "location_id": str(snapshot.location_id),
                        "old_on_hand": str(snapshot.quantity_on_hand),
                        "new_on_hand": str(on_hand),
                        "old_allocated": str(snapshot.quantity_allocated),
                        "new_allocated": str(allocated),
                    },
                )
                snapshot.quantity_on_hand = on_hand
                snapshot.quantity_allocated = allocated
                snapshot.updated_at = now
                fixed += 1

        for key, row in totals.items():
            if key in seen:
                continue
            self._session.add(
                StockSnapshot(
                    variant_id=row.variant_id,
                    location_id=row.location_id,
                    warehouse_id=row.warehouse_id,
                    quantity_on_hand=Decimal(row.on_hand),
                    quantity_allocated=Decimal(row.allocated),
                    updated_at=now,
                )
            )
            fixed += 1

        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("StockSnapshot", "*") from exc

        logger.info(
            "snapshots_rebuilt",
            extra={"snapshots_checked": len(snapshots), "snapshots_fixed": fixed},
        )
        return fixed
