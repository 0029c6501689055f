"""
Module: inventory_kernel.models.order
Responsibility: ORM models for sales orders and their lines.
Architecture position: Kernel > Models.  Mutated by services/order_service.py.

Invariants enforced:
    - order_number is unique.
    - status is written only through ``apply_transition``, which consults
      ORDER_WORKFLOW.  There is no public setter.
    - total_amount == SUM(line_total), recomputed on every add_line.
    - version counter: a concurrent transition on the same order fails its
      UPDATE instead of overwriting the winner.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, SoftDeleteMixin, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import OrderDTO, OrderLineDTO
from inventory_kernel.domain.workflows import (
    HAS_LINES,
    ORDER_WORKFLOW,
    OrderStatus,
    Transition,
)


class Order(TrackedBase, SoftDeleteMixin):
    """Sales order header."""

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        Index("idx_order_customer", "customer_id"),
        Index("idx_order_status", "status"),
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Cross-aggregate reference (no FK)
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False,
    )

    _status: Mapped[str] = mapped_column(
        "status", String(50), nullable=False, default=OrderStatus.DRAFT.value,
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Active or historical reservation backing this order
    reservation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["OrderLine"]] = relationship(
        cascade="all, delete-orphan",
        order_by="OrderLine.line_no",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs):
        kwargs.setdefault("_status", ORDER_WORKFLOW.initial_state)
        kwargs.setdefault("total_amount", Decimal("0"))
        super().__init__(**kwargs)

    @property
    def status(self) -> str:
        return self._status

    def facts(self) -> frozenset[str]:
        return frozenset({HAS_LINES.name}) if self.lines else frozenset()

    def apply_transition(self, action: str) -> Transition:
        """Move to the workflow's target state for ``action`` or raise."""
        transition = ORDER_WORKFLOW.transition(
            self._status, action, facts=self.facts(), entity_id=self.id,
        )
        self._status = transition.to_state
        return transition

    def add_line(self, variant_id: UUID, quantity: Decimal, unit_price: Decimal) -> "OrderLine":
        self.apply_transition("add_line")
        line = OrderLine(
            line_no=len(self.lines) + 1,
            variant_id=variant_id,
            quantity=quantity,
            unit_price=unit_price,
            line_total=quantity * unit_price,
        )
        self.lines.append(line)
        self.total_amount = sum((l.line_total for l in self.lines), Decimal("0"))
        return line

    def quantities_by_variant(self) -> dict[UUID, Decimal]:
        """Ordered quantity per variant, in first-seen line order."""
        totals: dict[UUID, Decimal] = {}
        for line in self.lines:
            totals[line.variant_id] = totals.get(line.variant_id, Decimal("0")) + line.quantity
        return totals

    def to_dto(self) -> OrderDTO:
        return OrderDTO(
            id=self.id,
            order_number=self.order_number,
            customer_id=self.customer_id,
            warehouse_id=self.warehouse_id,
            status=self._status,
            total_amount=self.total_amount,
            order_date=self.order_date,
            notes=self.notes,
            reservation_id=self.reservation_id,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self._status}>"


class OrderLine(Base):
    """One ordered variant."""

    __tablename__ = "order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_order_line_no"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    variant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("product_variants.id"), nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    def to_dto(self) -> OrderLineDTO:
        return OrderLineDTO(
            id=self.id,
            line_no=self.line_no,
            variant_id=self.variant_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_total=self.line_total,
        )
