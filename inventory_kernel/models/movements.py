"""
Module: inventory_kernel.models.movements
Responsibility: ORM models for manual stock adjustments and inter-warehouse
    transfer orders.
Architecture position: Kernel > Models.  Written by
    services/movement_service.py.

Invariants enforced:
    - adjustment_number and transfer_number are unique.
    - StockAdjustment is append-only (db/immutability.py).
    - A TransferOrder is persisted only once every line has been applied, so
      its status is always COMPLETED.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import (
    AdjustmentDTO,
    AdjustmentReasonCode,
    TransferDTO,
    TransferLineDTO,
    TransferStatus,
)


class StockAdjustment(TrackedBase):
    """A manual correction of on-hand at one location."""

    __tablename__ = "stock_adjustments"

    __table_args__ = (
        UniqueConstraint("adjustment_number", name="uq_adjustment_number"),
        Index("idx_adjustment_key", "variant_id", "location_id"),
        Index("idx_adjustment_reason", "reason_code"),
    )

    adjustment_number: Mapped[str] = mapped_column(String(50), nullable=False)
    adjusted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )

    # Signed delta
    quantity_adjusted: Mapped[Decimal] = mapped_column(nullable=False)

    # AdjustmentReasonCode stored as string
    reason_code: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    adjusted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    ledger_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )

    def to_dto(self, quantity_on_hand: Decimal) -> AdjustmentDTO:
        return AdjustmentDTO(
            id=self.id,
            adjustment_number=self.adjustment_number,
            variant_id=self.variant_id,
            location_id=self.location_id,
            quantity_adjusted=self.quantity_adjusted,
            reason_code=AdjustmentReasonCode(self.reason_code),
            adjusted_by=self.adjusted_by,
            ledger_entry_id=self.ledger_entry_id,
            quantity_on_hand=quantity_on_hand,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<StockAdjustment {self.adjustment_number} delta={self.quantity_adjusted}>"


class TransferOrder(TrackedBase):
    """Stock moved between two warehouses in one atomic step."""

    __tablename__ = "transfer_orders"

    __table_args__ = (
        UniqueConstraint("transfer_number", name="uq_transfer_number"),
        Index("idx_transfer_from", "from_warehouse_id"),
        Index("idx_transfer_to", "to_warehouse_id"),
    )

    transfer_number: Mapped[str] = mapped_column(String(50), nullable=False)
    transfer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    from_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )
    to_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )

    # TransferStatus stored as string
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=TransferStatus.COMPLETED.value,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["TransferOrderLine"]] = relationship(
        cascade="all, delete-orphan",
        order_by="TransferOrderLine.line_no",
        lazy="selectin",
    )

    def to_dto(self) -> TransferDTO:
        return TransferDTO(
            id=self.id,
            transfer_number=self.transfer_number,
            from_warehouse_id=self.from_warehouse_id,
            to_warehouse_id=self.to_warehouse_id,
            status=TransferStatus(self.status),
            transfer_date=self.transfer_date,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<TransferOrder {self.transfer_number}>"


class TransferOrderLine(Base):
    __tablename__ = "transfer_order_lines"

    __table_args__ = (
        Index("idx_transfer_line_order", "transfer_order_id"),
    )

    transfer_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("transfer_orders.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    from_location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    to_location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    outbound_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )
    inbound_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )

    def to_dto(self) -> TransferLineDTO:
        return TransferLineDTO(
            id=self.id,
            variant_id=self.variant_id,
            quantity=self.quantity,
            from_location_id=self.from_location_id,
            to_location_id=self.to_location_id,
        )
