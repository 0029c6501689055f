"""
Module: inventory_kernel.models.warehouse
Responsibility: ORM models for warehouses and their bin locations.
Architecture position: Kernel > Models.  Locations reference their warehouse
    by FK id only; a warehouse holds no collection of locations.

Invariants enforced:
    - Warehouse code is unique; location code is unique per warehouse.
    - Only locations that are active, not deleted, outside the quarantine
      zone and inside a nettable, active warehouse take part in allocation
      (see ``allocatable_location_filter``).
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import SoftDeleteMixin, TrackedBase, UUIDString
from inventory_kernel.domain.dtos import LocationDTO, WarehouseDTO, ZoneType


class Warehouse(TrackedBase, SoftDeleteMixin):
    """A physical site holding stock."""

    __tablename__ = "warehouses"

    __table_args__ = (
        UniqueConstraint("code", name="uq_warehouse_code"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Non-nettable warehouses (e.g. returns, repair) never satisfy allocations
    is_nettable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> WarehouseDTO:
        return WarehouseDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            address=self.address,
            is_nettable=self.is_nettable,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}>"


class Location(TrackedBase, SoftDeleteMixin):
    """A bin location within a warehouse."""

    __tablename__ = "locations"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_location_warehouse_code"),
        Index("idx_location_warehouse", "warehouse_id"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)

    # ZoneType stored as string
    zone_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ZoneType.BULK_STORAGE.value,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> LocationDTO:
        return LocationDTO(
            id=self.id,
            warehouse_id=self.warehouse_id,
            code=self.code,
            zone_type=ZoneType(self.zone_type),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<Location {self.code} zone={self.zone_type}>"


def allocatable_location_filter():
    """WHERE-clause terms selecting locations that may satisfy allocations."""
    return (
        Location.is_active.is_(True),
        Location.is_deleted.is_(False),
        Location.zone_type != ZoneType.QUARANTINE.value,
        Warehouse.is_active.is_(True),
        Warehouse.is_deleted.is_(False),
        Warehouse.is_nettable.is_(True),
    )
