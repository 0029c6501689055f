"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from inventory_kernel.models.catalog import ProductVariant
from inventory_kernel.models.warehouse import Location, Warehouse, allocatable_location_filter
from inventory_kernel.models.stock import LedgerEntry, StockSnapshot
from inventory_kernel.models.reservation import Reservation, ReservationLine
from inventory_kernel.models.order import Order, OrderLine
from inventory_kernel.models.purchasing import (
    GoodsReceiptLine,
    GoodsReceiptNote,
    PurchaseOrder,
    PurchaseOrderLine,
)
from inventory_kernel.models.movements import StockAdjustment, TransferOrder, TransferOrderLine
from inventory_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "GoodsReceiptLine",
    "GoodsReceiptNote",
    "LedgerEntry",
    "Location",
    "Order",
    "OrderLine",
    "ProductVariant",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "Reservation",
    "ReservationLine",
    "SequenceCounter",
    "StockAdjustment",
    "StockSnapshot",
    "TransferOrder",
    "TransferOrderLine",
    "Warehouse",
    "allocatable_location_filter",
]
