"""
Module: inventory_kernel.models.purchasing
Responsibility: ORM models for purchase orders and goods receipt notes.
Architecture position: Kernel > Models.  Mutated by
    services/procurement_service.py.

Invariants enforced:
    - po_number and grn_number are unique.
    - 0 <= quantity_received <= quantity_ordered per line (CHECK).
    - PurchaseOrder status moves only through PURCHASE_ORDER_WORKFLOW.
    - GoodsReceiptNote and GoodsReceiptLine are append-only
      (db/immutability.py); a delivery is corrected by a new document.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, SoftDeleteMixin, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import (
    GoodsReceiptDTO,
    GoodsReceiptLineDTO,
    PurchaseOrderDTO,
    PurchaseOrderLineDTO,
)
from inventory_kernel.domain.workflows import (
    ALL_LINES_RECEIVED,
    HAS_LINES,
    LINES_OUTSTANDING,
    PURCHASE_ORDER_WORKFLOW,
    PurchaseOrderStatus,
    Transition,
)


class PurchaseOrder(TrackedBase, SoftDeleteMixin):
    """Purchase order header."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_po_number"),
        Index("idx_po_vendor", "vendor_id"),
        Index("idx_po_status", "status"),
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Cross-aggregate reference (no FK)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Default receiving warehouse
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )

    _status: Mapped[str] = mapped_column(
        "status", String(50), nullable=False, default=PurchaseOrderStatus.DRAFT.value,
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.line_no",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs):
        kwargs.setdefault("_status", PURCHASE_ORDER_WORKFLOW.initial_state)
        kwargs.setdefault("total_amount", Decimal("0"))
        super().__init__(**kwargs)

    @property
    def status(self) -> str:
        return self._status

    def facts(self) -> frozenset[str]:
        facts = set()
        if self.lines:
            facts.add(HAS_LINES.name)
            if all(l.quantity_received >= l.quantity_ordered for l in self.lines):
                facts.add(ALL_LINES_RECEIVED.name)
            else:
                facts.add(LINES_OUTSTANDING.name)
        return frozenset(facts)

    def apply_transition(self, action: str) -> Transition:
        transition = PURCHASE_ORDER_WORKFLOW.transition(
            self._status, action, facts=self.facts(), entity_id=self.id,
        )
        self._status = transition.to_state
        return transition

    def add_line(
        self, variant_id: UUID, quantity_ordered: Decimal, unit_price: Decimal,
    ) -> "PurchaseOrderLine":
        self.apply_transition("add_line")
        line = PurchaseOrderLine(
            line_no=len(self.lines) + 1,
            variant_id=variant_id,
            quantity_ordered=quantity_ordered,
            quantity_received=Decimal("0"),
            unit_price=unit_price,
            line_total=quantity_ordered * unit_price,
        )
        self.lines.append(line)
        self.total_amount = sum((l.line_total for l in self.lines), Decimal("0"))
        return line

    def line_by_id(self, line_id: UUID) -> "PurchaseOrderLine | None":
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def to_dto(self) -> PurchaseOrderDTO:
        return PurchaseOrderDTO(
            id=self.id,
            po_number=self.po_number,
            vendor_id=self.vendor_id,
            warehouse_id=self.warehouse_id,
            status=self._status,
            total_amount=self.total_amount,
            order_date=self.order_date,
            expected_delivery_date=self.expected_delivery_date,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} status={self._status}>"


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_no", name="uq_po_line_no"),
        CheckConstraint("quantity_received >= 0", name="ck_po_line_received_non_negative"),
        CheckConstraint(
            "quantity_received <= quantity_ordered",
            name="ck_po_line_received_within_ordered",
        ),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    quantity_ordered: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    @property
    def quantity_outstanding(self) -> Decimal:
        return self.quantity_ordered - self.quantity_received

    def to_dto(self) -> PurchaseOrderLineDTO:
        return PurchaseOrderLineDTO(
            id=self.id,
            line_no=self.line_no,
            variant_id=self.variant_id,
            quantity_ordered=self.quantity_ordered,
            quantity_received=self.quantity_received,
            unit_price=self.unit_price,
            line_total=self.line_total,
        )


class GoodsReceiptNote(TrackedBase):
    """One physical delivery against a purchase order."""

    __tablename__ = "goods_receipt_notes"

    __table_args__ = (
        UniqueConstraint("grn_number", name="uq_grn_number"),
        Index("idx_grn_purchase_order", "purchase_order_id"),
    )

    grn_number: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_orders.id"), nullable=False,
    )
    received_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivery_note_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    received_by: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["GoodsReceiptLine"]] = relationship(
        order_by="GoodsReceiptLine.line_no",
        lazy="selectin",
    )

    def to_dto(self, purchase_order_status: str) -> GoodsReceiptDTO:
        return GoodsReceiptDTO(
            id=self.id,
            grn_number=self.grn_number,
            purchase_order_id=self.purchase_order_id,
            received_date=self.received_date,
            received_by=self.received_by,
            purchase_order_status=purchase_order_status,
            delivery_note_number=self.delivery_note_number,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<GoodsReceiptNote {self.grn_number}>"


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"

    __table_args__ = (
        Index("idx_grn_line_note", "goods_receipt_note_id"),
        Index("idx_grn_line_po_line", "purchase_order_line_id"),
    )

    goods_receipt_note_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("goods_receipt_notes.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_order_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_order_lines.id"), nullable=False,
    )
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False,
    )
    quantity_received: Mapped[Decimal] = mapped_column(nullable=False)
    ledger_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )

    def to_dto(self) -> GoodsReceiptLineDTO:
        return GoodsReceiptLineDTO(
            id=self.id,
            purchase_order_line_id=self.purchase_order_line_id,
            variant_id=self.variant_id,
            location_id=self.location_id,
            quantity_received=self.quantity_received,
            ledger_entry_id=self.ledger_entry_id,
        )
