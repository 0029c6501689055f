"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock operations fail for a small number of well-understood reasons, and the
caller has to react differently to each of them: retry on contention, show the
user an availability problem, page someone on ledger drift. Callers must be
able to catch by TYPE and read structured attributes, never parse messages.

Every exception:
  1. Is a subclass of InventoryKernelError.
  2. Carries a class-level ``code`` (machine-readable, API-safe).
  3. Stores its context as attributes (survives logging and serialization).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- NegativeStockError
    |
    +-- ReceiptError
    |   +-- OverReceiptError
    |   +-- ReceiptLineMismatchError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |   +-- ContentionError
    |   +-- OptimisticLockError
    |   +-- OperationCancelledError
    |
    +-- NotFoundError
    |   +-- OrderNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- PurchaseOrderLineNotFoundError
    |   +-- VariantNotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- LocationNotFoundError
    |   +-- ReservationNotFoundError
    |
    +-- DataIntegrityError
    |   +-- LedgerIntegrityError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|---------------------------------------
Workflow     | INVALID_TRANSITION         | Guard violated for order/PO/reservation
Stock        | INSUFFICIENT_STOCK         | Allocation/transfer cannot be satisfied
             | NEGATIVE_STOCK             | Adjustment would drive on-hand below 0
Receipt      | OVER_RECEIPT               | Received would exceed ordered
             | RECEIPT_LINE_MISMATCH      | GRN line variant differs from PO line
Concurrency  | CONFLICT                   | Lost a concurrent transition on a document
             | CONTENTION                 | Retry budget exhausted (Busy)
             | OPTIMISTIC_LOCK_CONFLICT   | Row version changed underneath us
             | OPERATION_CANCELLED        | Caller cancelled or deadline expired
Lookup       | *_NOT_FOUND                | Referenced row absent (or inactive)
Integrity    | LEDGER_INTEGRITY_VIOLATION | Snapshot differs from ledger sum (fatal)
Immutability | IMMUTABILITY_VIOLATION     | UPDATE/DELETE of an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRY ONLY CONCURRENCY FAILURES:

    try:
        engine.allocate_order(order_id)
    except (ConflictError, ContentionError):
        schedule_retry()
    except InsufficientStockError as e:
        show_shortage(e.variant_id, e.requested, e.available)

2. ALREADY RELEASED IS NOT AN ERROR: ``release()`` returns a result whose
   status is ALREADY_RELEASED; nothing is raised.

3. LEDGER INTEGRITY ERRORS ARE FATAL: stop writing and run the snapshot
   rebuild (ledger replay) out of band.
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Workflow exceptions


class WorkflowError(InventoryKernelError):
    """Base exception for workflow state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """A workflow guard rejected the attempted transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {entity_type} {entity_id} in state '{current_state}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Stock exceptions


class StockError(InventoryKernelError):
    """Base exception for stock quantity errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what is available."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        variant_id: str,
        requested: Decimal,
        available: Decimal,
        scope: str,
    ):
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        self.scope = scope
        super().__init__(
            f"Insufficient stock for variant {variant_id} in {scope}: "
            f"requested {requested}, available {available}"
        )


class NegativeStockError(StockError):
    """An adjustment would drive on-hand below zero."""

    code: str = "NEGATIVE_STOCK"

    def __init__(
        self,
        variant_id: str,
        location_id: str,
        on_hand: Decimal,
        delta: Decimal,
    ):
        self.variant_id = variant_id
        self.location_id = location_id
        self.on_hand = on_hand
        self.delta = delta
        super().__init__(
            f"Adjustment of {delta} would drive on-hand for variant {variant_id} "
            f"at location {location_id} below zero (on hand {on_hand})"
        )


# Receipt exceptions


class ReceiptError(InventoryKernelError):
    """Base exception for goods receipt errors."""

    code: str = "RECEIPT_ERROR"


class OverReceiptError(ReceiptError):
    """Receipt would push a purchase order line past its ordered quantity."""

    code: str = "OVER_RECEIPT"

    def __init__(
        self,
        purchase_order_line_id: str,
        ordered: Decimal,
        already_received: Decimal,
        receiving: Decimal,
    ):
        self.purchase_order_line_id = purchase_order_line_id
        self.ordered = ordered
        self.already_received = already_received
        self.receiving = receiving
        super().__init__(
            f"Over-receipt on purchase order line {purchase_order_line_id}: "
            f"ordered {ordered}, received {already_received}, receiving {receiving}"
        )


class ReceiptLineMismatchError(ReceiptError):
    """Goods receipt line variant does not match its purchase order line."""

    code: str = "RECEIPT_LINE_MISMATCH"

    def __init__(self, purchase_order_line_id: str, expected_variant_id: str, variant_id: str):
        self.purchase_order_line_id = purchase_order_line_id
        self.expected_variant_id = expected_variant_id
        self.variant_id = variant_id
        super().__init__(
            f"Receipt line for purchase order line {purchase_order_line_id} names "
            f"variant {variant_id}, expected {expected_variant_id}"
        )


# Concurrency exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """A concurrent transition on the same document won the race."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Conflicting concurrent update on {entity_type} {entity_id}"
        )


class ContentionError(ConcurrencyError):
    """Contention on stock rows outlasted the retry budget (Busy)."""

    code: str = "CONTENTION"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Operation {operation} abandoned after {attempts} attempt(s) "
            "due to contention"
        )


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class OperationCancelledError(ConcurrencyError):
    """The caller cancelled the operation or its deadline passed."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Operation {operation} cancelled: {reason}")


# Lookup exceptions


class NotFoundError(InventoryKernelError):
    """Base exception for missing referenced rows."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type: str = "Order"


class PurchaseOrderNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_NOT_FOUND"
    entity_type: str = "PurchaseOrder"


class PurchaseOrderLineNotFoundError(NotFoundError):
    code: str = "PURCHASE_ORDER_LINE_NOT_FOUND"
    entity_type: str = "PurchaseOrderLine"


class VariantNotFoundError(NotFoundError):
    code: str = "VARIANT_NOT_FOUND"
    entity_type: str = "ProductVariant"


class WarehouseNotFoundError(NotFoundError):
    code: str = "WAREHOUSE_NOT_FOUND"
    entity_type: str = "Warehouse"


class LocationNotFoundError(NotFoundError):
    code: str = "LOCATION_NOT_FOUND"
    entity_type: str = "Location"


class ReservationNotFoundError(NotFoundError):
    code: str = "RESERVATION_NOT_FOUND"
    entity_type: str = "Reservation"


# Integrity exceptions


class DataIntegrityError(InventoryKernelError):
    """Base exception for integrity faults that need out-of-band repair."""

    code: str = "DATA_INTEGRITY_ERROR"


class LedgerIntegrityError(DataIntegrityError):
    """
    Snapshot quantities drifted from the ledger.

    Not an ordinary error path: the ledger is the source of truth and the
    snapshot must be rebuilt by replaying it.
    """

    code: str = "LEDGER_INTEGRITY_VIOLATION"

    def __init__(self, drifts: list[dict]):
        self.drifts = drifts
        super().__init__(
            f"Reconciliation invariant violated for {len(drifts)} stock key(s)"
        )


# Immutability exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
