"""
Module: inventory_kernel.models.stock
Responsibility: ORM models for the stock snapshot (mutable, derived) and the
    stock ledger (append-only, source of truth).
Architecture position: Kernel > Models.  Written only by
    services/ledger_service.py.

Invariants enforced:
    - One StockSnapshot per (variant, location); never deleted.
    - 0 <= quantity_allocated <= quantity_on_hand (CHECK constraints).
    - StockSnapshot carries a version counter; a concurrent writer that read
      an older version fails its UPDATE with StaleDataError.
    - LedgerEntry rows are immutable (db/immutability.py) and carry a unique,
      strictly monotonic seq.
    - Reconciliation: for every key, quantity_on_hand == SUM(quantity_change)
      and quantity_allocated == SUM(allocated_change).

Audit relevance:
    The ledger is retained indefinitely.  Snapshots may be rebuilt from it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.dtos import LedgerEntryDTO, LedgerEntryType, StockLevel


class StockSnapshot(Base):
    """
    Cached (on_hand, allocated) pair for one variant at one location.

    Guarantees:
        - Exists from the first movement on the key onwards.
        - version increments on every UPDATE (optimistic lock).
    """

    __tablename__ = "stock_snapshots"

    __table_args__ = (
        UniqueConstraint("variant_id", "location_id", name="uq_snapshot_variant_location"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_snapshot_on_hand_non_negative"),
        CheckConstraint("quantity_allocated >= 0", name="ck_snapshot_allocated_non_negative"),
        CheckConstraint(
            "quantity_allocated <= quantity_on_hand",
            name="ck_snapshot_allocated_within_on_hand",
        ),
        Index("idx_snapshot_warehouse_variant", "warehouse_id", "variant_id"),
    )

    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )

    quantity_on_hand: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    quantity_allocated: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def quantity_available(self) -> Decimal:
        return self.quantity_on_hand - self.quantity_allocated

    def to_dto(self) -> StockLevel:
        return StockLevel(
            variant_id=self.variant_id,
            location_id=self.location_id,
            warehouse_id=self.warehouse_id,
            quantity_on_hand=self.quantity_on_hand,
            quantity_allocated=self.quantity_allocated,
        )

    def __repr__(self) -> str:
        return (
            f"<StockSnapshot variant={self.variant_id} location={self.location_id} "
            f"on_hand={self.quantity_on_hand} allocated={self.quantity_allocated}>"
        )


class LedgerEntry(Base):
    """
    One immutable stock movement.

    quantity_change is the physical on-hand delta; allocated_change is the
    reservation delta.  Allocation entries move only allocated_change; a
    release appends a compensating entry pointing at the original through
    reverses_entry_id.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_seq"),
        Index("idx_ledger_key", "variant_id", "location_id"),
        Index("idx_ledger_reference", "reference_type", "reference_id"),
        Index("idx_ledger_occurred_at", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    # LedgerEntryType stored as string
    entry_type: Mapped[str] = mapped_column(String(50), nullable=False)

    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )

    quantity_change: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    allocated_change: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Originating document (order, purchase_order, adjustment, transfer, reservation)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reverses_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self) -> LedgerEntryDTO:
        return LedgerEntryDTO(
            id=self.id,
            seq=self.seq,
            occurred_at=self.occurred_at,
            entry_type=LedgerEntryType(self.entry_type),
            variant_id=self.variant_id,
            location_id=self.location_id,
            warehouse_id=self.warehouse_id,
            quantity_change=self.quantity_change,
            allocated_change=self.allocated_change,
            unit_cost=self.unit_cost,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            reverses_entry_id=self.reverses_entry_id,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.seq} {self.entry_type} qty={self.quantity_change} "
            f"alloc={self.allocated_change}>"
        )
