"""
Inventory Kernel DTOs (``inventory_kernel.domain.dtos``).

Responsibility
--------------
Frozen value objects exchanged across the kernel boundary: input line specs
supplied by callers, and result records returned from every operation.  ORM
rows never leave the unit of work; callers receive these instead.

Architecture
------------
Layer: **Domain** -- pure data, no I/O.  ORM models convert themselves with
``to_dto()``.

Invariants
----------
- ``StockLevel`` enforces ``0 <= quantity_allocated <= quantity_on_hand``.
- All quantities and money use ``Decimal`` -- never ``float``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from inventory_kernel.domain.events import DomainEvent

T = TypeVar("T")


class LedgerEntryType(str, Enum):
    """Kind of stock movement recorded in the ledger."""
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    ALLOCATION = "allocation"
    RETURN = "return"


class ZoneType(str, Enum):
    RECEIVING = "receiving"
    BULK_STORAGE = "bulk_storage"
    PICKING = "picking"
    PACKING = "packing"
    SHIPPING = "shipping"
    QUARANTINE = "quarantine"


class AdjustmentReasonCode(str, Enum):
    DAMAGED = "damaged"
    EXPIRED = "expired"
    LOST = "lost"
    FOUND = "found"
    CYCLE_COUNT_CORRECTION = "cycle_count_correction"
    OTHER = "other"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"


class ReleaseStatus(str, Enum):
    RELEASED = "released"
    ALREADY_RELEASED = "already_released"


class TransferStatus(str, Enum):
    COMPLETED = "completed"


# -----------------------------------------------------------------------------
# Master data
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class VariantDTO:
    id: UUID
    sku: str
    barcode: str | None
    cost_price: Decimal
    sales_price: Decimal
    reorder_point: Decimal
    reorder_quantity: Decimal
    is_active: bool


@dataclass(frozen=True)
class WarehouseDTO:
    id: UUID
    code: str
    name: str
    address: str | None
    is_nettable: bool
    is_active: bool


@dataclass(frozen=True)
class LocationDTO:
    id: UUID
    warehouse_id: UUID
    code: str
    zone_type: ZoneType
    is_active: bool


# -----------------------------------------------------------------------------
# Stock and ledger
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StockLevel:
    """Snapshot of one (variant, location) key."""
    variant_id: UUID
    location_id: UUID
    warehouse_id: UUID
    quantity_on_hand: Decimal
    quantity_allocated: Decimal

    def __post_init__(self) -> None:
        if self.quantity_on_hand < 0:
            raise ValueError("quantity_on_hand cannot be negative")
        if self.quantity_allocated < 0:
            raise ValueError("quantity_allocated cannot be negative")
        if self.quantity_allocated > self.quantity_on_hand:
            raise ValueError("quantity_allocated cannot exceed quantity_on_hand")

    @property
    def quantity_available(self) -> Decimal:
        return self.quantity_on_hand - self.quantity_allocated


@dataclass(frozen=True)
class LedgerEntryDTO:
    id: UUID
    seq: int
    occurred_at: datetime
    entry_type: LedgerEntryType
    variant_id: UUID
    location_id: UUID
    warehouse_id: UUID
    quantity_change: Decimal
    allocated_change: Decimal
    unit_cost: Decimal
    reference_type: str | None = None
    reference_id: UUID | None = None
    reverses_entry_id: UUID | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReconciliationReport:
    """Outcome of a clean reconciliation pass."""
    keys_checked: int


@dataclass(frozen=True)
class LowStockItem:
    variant_id: UUID
    sku: str
    warehouse_id: UUID | None
    quantity_on_hand: Decimal
    reorder_point: Decimal
    reorder_quantity: Decimal


# -----------------------------------------------------------------------------
# Reservations
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationRequest:
    """One variant/quantity pair of a multi-line allocation."""
    variant_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class ReservationLineDTO:
    variant_id: UUID
    location_id: UUID
    quantity: Decimal
    ledger_entry_id: UUID


@dataclass(frozen=True)
class ReservationDTO:
    id: UUID
    warehouse_id: UUID
    status: ReservationStatus
    order_id: UUID | None
    reference_type: str | None
    reference_id: UUID | None
    lines: tuple[ReservationLineDTO, ...] = ()

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), Decimal("0"))

    def quantity_for(self, variant_id: UUID) -> Decimal:
        return sum(
            (line.quantity for line in self.lines if line.variant_id == variant_id),
            Decimal("0"),
        )


@dataclass(frozen=True)
class ReleaseResult:
    reservation_id: UUID
    status: ReleaseStatus
    released_lines: tuple[ReservationLineDTO, ...] = ()


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderLineSpec:
    variant_id: UUID
    quantity: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class OrderLineDTO:
    id: UUID
    line_no: int
    variant_id: UUID
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderDTO:
    id: UUID
    order_number: str
    customer_id: UUID
    warehouse_id: UUID
    status: str
    total_amount: Decimal
    order_date: datetime
    notes: str | None = None
    reservation_id: UUID | None = None
    lines: tuple[OrderLineDTO, ...] = ()


# -----------------------------------------------------------------------------
# Procurement
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseOrderLineSpec:
    variant_id: UUID
    quantity_ordered: Decimal
    unit_price: Decimal


@dataclass(frozen=True)
class PurchaseOrderLineDTO:
    id: UUID
    line_no: int
    variant_id: UUID
    quantity_ordered: Decimal
    quantity_received: Decimal
    unit_price: Decimal
    line_total: Decimal

    @property
    def quantity_outstanding(self) -> Decimal:
        return self.quantity_ordered - self.quantity_received


@dataclass(frozen=True)
class PurchaseOrderDTO:
    id: UUID
    po_number: str
    vendor_id: UUID
    warehouse_id: UUID
    status: str
    total_amount: Decimal
    order_date: datetime
    expected_delivery_date: date | None = None
    notes: str | None = None
    lines: tuple[PurchaseOrderLineDTO, ...] = ()


@dataclass(frozen=True)
class ReceiptLineSpec:
    """One delivered line of a goods receipt."""
    purchase_order_line_id: UUID
    variant_id: UUID
    location_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class GoodsReceiptLineDTO:
    id: UUID
    purchase_order_line_id: UUID
    variant_id: UUID
    location_id: UUID
    quantity_received: Decimal
    ledger_entry_id: UUID


@dataclass(frozen=True)
class GoodsReceiptDTO:
    id: UUID
    grn_number: str
    purchase_order_id: UUID
    received_date: datetime
    received_by: str
    purchase_order_status: str
    delivery_note_number: str | None = None
    notes: str | None = None
    lines: tuple[GoodsReceiptLineDTO, ...] = ()


# -----------------------------------------------------------------------------
# Adjustments and transfers
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AdjustmentDTO:
    id: UUID
    adjustment_number: str
    variant_id: UUID
    location_id: UUID
    quantity_adjusted: Decimal
    reason_code: AdjustmentReasonCode
    adjusted_by: UUID
    ledger_entry_id: UUID
    quantity_on_hand: Decimal
    notes: str | None = None


@dataclass(frozen=True)
class TransferLineSpec:
    """
    One line of an inter-warehouse transfer.

    Locations are optional: the source is planned greedily across the source
    warehouse and the destination defaults to its receiving location.
    """
    variant_id: UUID
    quantity: Decimal
    from_location_id: UUID | None = None
    to_location_id: UUID | None = None


@dataclass(frozen=True)
class TransferLineDTO:
    id: UUID
    variant_id: UUID
    quantity: Decimal
    from_location_id: UUID
    to_location_id: UUID


@dataclass(frozen=True)
class TransferDTO:
    id: UUID
    transfer_number: str
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    status: TransferStatus
    transfer_date: datetime
    notes: str | None = None
    lines: tuple[TransferLineDTO, ...] = ()


# -----------------------------------------------------------------------------
# Operation envelope
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Committed result plus the events drained after commit."""
    value: T
    events: tuple[DomainEvent, ...] = field(default_factory=tuple)

    def event_kinds(self) -> tuple[Any, ...]:
        return tuple(e.kind for e in self.events)
