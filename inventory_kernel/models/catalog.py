"""
Module: inventory_kernel.models.catalog
Responsibility: ORM model for sellable product variants (SKU master data).
Architecture position: Kernel > Models.  Referenced by id from every stock,
    ledger, order and purchasing row.

Invariants enforced:
    - sku is unique system-wide.
    - Prices and reorder thresholds are Decimal (Numeric(38,9)), never float.
"""

from decimal import Decimal

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import SoftDeleteMixin, TrackedBase
from inventory_kernel.domain.dtos import VariantDTO


class ProductVariant(TrackedBase, SoftDeleteMixin):
    """A specific sellable SKU."""

    __tablename__ = "product_variants"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_variant_sku"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)

    cost_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sales_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Low-stock threshold: on-hand at or below this triggers replenishment
    reorder_point: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reorder_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> VariantDTO:
        return VariantDTO(
            id=self.id,
            sku=self.sku,
            barcode=self.barcode,
            cost_price=self.cost_price,
            sales_price=self.sales_price,
            reorder_point=self.reorder_point,
            reorder_quantity=self.reorder_quantity,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku}>"
