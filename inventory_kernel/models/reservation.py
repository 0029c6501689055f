"""
Module: inventory_kernel.models.reservation
Responsibility: ORM models for stock reservations held against orders or
    ad-hoc references.
Architecture position: Kernel > Models.  Written only by
    services/allocation_service.py.

Invariants enforced:
    - A reservation is ACTIVE until it is RELEASED (stock handed back) or
      CONSUMED (stock shipped).  Both are terminal.
    - Each ReservationLine names the Allocation ledger entry that created it.
    - version counter detects a concurrent release/consume of the same row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import (
    ReservationDTO,
    ReservationLineDTO,
    ReservationStatus,
)


class Reservation(TrackedBase):
    """Header of a multi-line stock reservation within one warehouse."""

    __tablename__ = "reservations"

    __table_args__ = (
        Index("idx_reservation_order", "order_id"),
        Index("idx_reservation_reference", "reference_type", "reference_id"),
        Index("idx_reservation_status", "status"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # ReservationStatus stored as string
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ReservationStatus.ACTIVE.value,
    )
    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    consumed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["ReservationLine"]] = relationship(
        cascade="all, delete-orphan",
        order_by="ReservationLine.line_no",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value

    def to_dto(self) -> ReservationDTO:
        return ReservationDTO(
            id=self.id,
            warehouse_id=self.warehouse_id,
            status=ReservationStatus(self.status),
            order_id=self.order_id,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<Reservation {self.id} status={self.status} lines={len(self.lines)}>"


class ReservationLine(Base):
    """Quantity of one variant held at one location."""

    __tablename__ = "reservation_lines"

    __table_args__ = (
        Index("idx_reservation_line_reservation", "reservation_id"),
    )

    reservation_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("reservations.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    ledger_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )

    def to_dto(self) -> ReservationLineDTO:
        return ReservationLineDTO(
            variant_id=self.variant_id,
            location_id=self.location_id,
            quantity=self.quantity,
            ledger_entry_id=self.ledger_entry_id,
        )
