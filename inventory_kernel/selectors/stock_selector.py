"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only stock queries: availability, snapshots, ledger
    history and balances, reconciliation, and low-stock reporting.
Architecture position: Kernel > Selectors.  Used by the orchestrator for
    reads and by tests to verify ledger/snapshot consistency.

Invariants enforced:
    - Availability reads the latest committed snapshot: every snapshot query
      runs with ``populate_existing`` so an identity-map copy loaded earlier
      in the session is refreshed, never served stale.
    - Reconciliation: for every (variant, location) key,
      quantity_on_hand == SUM(quantity_change) and
      quantity_allocated == SUM(allocated_change).  Keys present in the
      ledger but missing a snapshot count as drift.

Failure modes:
    - LedgerIntegrityError from verify_reconciliation() when any key drifts.
      The ledger is authoritative; the fix is LedgerService.rebuild_snapshots().

Audit relevance:
    ledger_history() is the full, ordered movement trail for a key.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.dtos import (
    LedgerEntryDTO,
    LowStockItem,
    ReconciliationReport,
    ReservationDTO,
    StockLevel,
)
from inventory_kernel.domain.quantities import ZERO
from inventory_kernel.exceptions import LedgerIntegrityError, ReservationNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.reservation import Reservation
from inventory_kernel.models.stock import LedgerEntry, StockSnapshot
from inventory_kernel.models.warehouse import Location, Warehouse
from inventory_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.stock")


class StockSelector(BaseSelector):
    """Availability, ledger and reconciliation queries."""

    def _snapshot_query(
        self,
        variant_id: UUID | None = None,
        location_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        active_only: bool = False,
    ):
        stmt = select(StockSnapshot)
        if active_only:
            stmt = (
                stmt.join(Location, Location.id == StockSnapshot.location_id)
                .join(Warehouse, Warehouse.id == StockSnapshot.warehouse_id)
                .where(
                    Location.is_active.is_(True),
                    Location.is_deleted.is_(False),
                    Warehouse.is_active.is_(True),
                    Warehouse.is_deleted.is_(False),
                )
            )
        if variant_id is not None:
            stmt = stmt.where(StockSnapshot.variant_id == variant_id)
        if location_id is not None:
            stmt = stmt.where(StockSnapshot.location_id == location_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockSnapshot.warehouse_id == warehouse_id)
        return stmt.execution_options(populate_existing=True)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def get_available_quantity(
        self,
        variant_id: UUID,
        location_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        active_only: bool = True,
    ) -> Decimal:
        """
        on_hand - allocated for a variant.

        Summed across every matching location when ``location_id`` is not
        given.  With ``active_only`` inactive or soft-deleted locations and
        warehouses are left out.  A key with no snapshot has nothing
        available.
        """
        snapshots = self.session.execute(
            self._snapshot_query(variant_id, location_id, warehouse_id, active_only)
        ).scalars().all()
        return sum((s.quantity_available for s in snapshots), ZERO)

    def get_snapshot(self, variant_id: UUID, location_id: UUID) -> StockLevel | None:
        snapshot = self.session.execute(
            self._snapshot_query(variant_id, location_id)
        ).scalar_one_or_none()
        return snapshot.to_dto() if snapshot is not None else None

    def list_snapshots(
        self,
        variant_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        active_only: bool = True,
    ) -> list[StockLevel]:
        snapshots = self.session.execute(
            self._snapshot_query(
                variant_id, warehouse_id=warehouse_id, active_only=active_only,
            ).order_by(StockSnapshot.variant_id, StockSnapshot.location_id)
        ).scalars().all()
        return [s.to_dto() for s in snapshots]

    def get_reservation(self, reservation_id: UUID) -> ReservationDTO:
        reservation = self.session.get(Reservation, reservation_id, populate_existing=True)
        if reservation is None:
            raise ReservationNotFoundError(str(reservation_id))
        return reservation.to_dto()

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def ledger_history(
        self, variant_id: UUID, location_id: UUID | None = None,
    ) -> list[LedgerEntryDTO]:
        """All movements for a variant (optionally one location), in seq order."""
        stmt = select(LedgerEntry).where(LedgerEntry.variant_id == variant_id)
        if location_id is not None:
            stmt = stmt.where(LedgerEntry.location_id == location_id)
        entries = self.session.execute(stmt.order_by(LedgerEntry.seq)).scalars().all()
        return [e.to_dto() for e in entries]

    def ledger_balance(
        self, variant_id: UUID, location_id: UUID,
    ) -> tuple[Decimal, Decimal]:
        """(SUM(quantity_change), SUM(allocated_change)) for one key."""
        row = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerEntry.quantity_change), 0),
                func.coalesce(func.sum(LedgerEntry.allocated_change), 0),
            ).where(
                LedgerEntry.variant_id == variant_id,
                LedgerEntry.location_id == location_id,
            )
        ).one()
        return Decimal(row[0]), Decimal(row[1])

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def verify_reconciliation(
        self,
        variant_id: UUID | None = None,
        location_id: UUID | None = None,
    ) -> ReconciliationReport:
        """
        Compare every snapshot with the ledger sums for its key.

        Returns:
            ReconciliationReport with the number of keys checked.

        Raises:
            LedgerIntegrityError: one or more keys drifted; ``drifts`` lists
                each key with expected (ledger) and actual (snapshot) values.
        """
        sums = select(
            LedgerEntry.variant_id,
            LedgerEntry.location_id,
            func.coalesce(func.sum(LedgerEntry.quantity_change), 0).label("on_hand"),
            func.coalesce(func.sum(LedgerEntry.allocated_change), 0).label("allocated"),
        ).group_by(LedgerEntry.variant_id, LedgerEntry.location_id)
        if variant_id is not None:
            sums = sums.where(LedgerEntry.variant_id == variant_id)
        if location_id is not None:
            sums = sums.where(LedgerEntry.location_id == location_id)

        expected = {
            (row.variant_id, row.location_id): (Decimal(row.on_hand), Decimal(row.allocated))
            for row in self.session.execute(sums)
        }
        snapshots = self.session.execute(
            self._snapshot_query(variant_id, location_id)
        ).scalars().all()

        drifts: list[dict] = []
        keys: set[tuple[UUID, UUID]] = set()
        for snapshot in snapshots:
            key = (snapshot.variant_id, snapshot.location_id)
            keys.add(key)
            on_hand, allocated = expected.get(key, (ZERO, ZERO))
            if snapshot.quantity_on_hand != on_hand or snapshot.quantity_allocated != allocated:
                drifts.append(
                    _drift(key, on_hand, allocated,
                           snapshot.quantity_on_hand, snapshot.quantity_allocated)
                )

        for key, (on_hand, allocated) in expected.items():
            if key in keys:
                continue
            keys.add(key)
            if on_hand != ZERO or allocated != ZERO:
                drifts.append(_drift(key, on_hand, allocated, None, None))

        if drifts:
            logger.critical(
                "reconciliation_drift_detected",
                extra={"drift_count": len(drifts), "keys_checked": len(keys)},
            )
            raise LedgerIntegrityError(drifts)

        logger.info("reconciliation_verified", extra={"keys_checked": len(keys)})
        return ReconciliationReport(keys_checked=len(keys))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def low_stock(self, warehouse_id: UUID | None = None) -> list[LowStockItem]:
        """
        Active variants at or below reorder point, one row per warehouse.

        On-hand is summed over the locations of each warehouse; stock in
        another warehouse does not cover a shortfall.
        """
        on_hand = func.sum(StockSnapshot.quantity_on_hand)
        stmt = (
            select(
                ProductVariant.id,
                ProductVariant.sku,
                StockSnapshot.warehouse_id,
                on_hand.label("on_hand"),
                ProductVariant.reorder_point,
                ProductVariant.reorder_quantity,
            )
            .join(ProductVariant, ProductVariant.id == StockSnapshot.variant_id)
            .where(
                ProductVariant.is_active.is_(True),
                ProductVariant.is_deleted.is_(False),
            )
            .group_by(
                ProductVariant.id,
                ProductVariant.sku,
                StockSnapshot.warehouse_id,
                ProductVariant.reorder_point,
                ProductVariant.reorder_quantity,
            )
            .having(on_hand <= ProductVariant.reorder_point)
            .order_by(on_hand, ProductVariant.sku)
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockSnapshot.warehouse_id == warehouse_id)

        return [
            LowStockItem(
                variant_id=row.id,
                sku=row.sku,
                warehouse_id=row.warehouse_id,
                quantity_on_hand=Decimal(row.on_hand),
                reorder_point=row.reorder_point,
                reorder_quantity=row.reorder_quantity,
            )
            for row in self.session.execute(stmt)
        ]


def _drift(
    key: tuple[UUID, UUID],
    ledger_on_hand: Decimal,
    ledger_allocated: Decimal,
    snapshot_on_hand: Decimal | None,
    snapshot_allocated: Decimal | None,
) -> dict:
    return {
        "variant_id": str(key[0]),
        "location_id": str(key[1]),
        "ledger_on_hand": str(ledger_on_hand),
        "ledger_allocated": str(ledger_allocated),
        "snapshot_on_hand": None if snapshot_on_hand is None else str(snapshot_on_hand),
        "snapshot_allocated": None if snapshot_allocated is None else str(snapshot_allocated),
    }
