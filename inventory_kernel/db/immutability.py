"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The stock ledger is the audit source of truth: on-hand quantity is defined as
the sum of its movements, and snapshots are rebuilt from it.  A ledger row
that changes after the fact silently rewrites history.  Corrections are new
rows (a compensating entry, a new adjustment, a new receipt), never edits.

SQLAlchemy fires events before UPDATE/DELETE reach the database.  The
listeners below intercept those events and raise ImmutabilityViolationError,
aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() --------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule                  | Why
------------------|-----------------------|------------------------------------
LedgerEntry       | no UPDATE, no DELETE  | Ledger is append-only
StockAdjustment   | no UPDATE, no DELETE  | Audit record of a manual correction
GoodsReceiptNote  | no UPDATE, no DELETE  | Records a physical delivery
GoodsReceiptLine  | no UPDATE, no DELETE  | Part of the delivery record
StockSnapshot     | no DELETE             | Zeroed, never removed

Bulk ``session.execute(update(...))`` bypasses ORM events; the kernel never
issues one against these tables.
"""

from sqlalchemy import event

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_ledger_entry_immutability(mapper, connection, target):
    _block("LedgerEntry", target, "UPDATE", "Ledger entries are immutable")


def _check_ledger_entry_delete(mapper, connection, target):
    _block("LedgerEntry", target, "DELETE", "Ledger entries cannot be deleted")


def _check_adjustment_immutability(mapper, connection, target):
    _block(
        "StockAdjustment", target, "UPDATE",
        "Stock adjustments are immutable; record a new adjustment instead",
    )


def _check_adjustment_delete(mapper, connection, target):
    _block("StockAdjustment", target, "DELETE", "Stock adjustments cannot be deleted")


def _check_receipt_immutability(mapper, connection, target):
    _block(
        type(target).__name__, target, "UPDATE",
        "Goods receipts are immutable once recorded",
    )


def _check_receipt_delete(mapper, connection, target):
    _block(type(target).__name__, target, "DELETE", "Goods receipts cannot be deleted")


def _check_snapshot_delete(mapper, connection, target):
    _block(
        "StockSnapshot", target, "DELETE",
        "Stock snapshots are zeroed, never deleted",
    )


def _listeners():
    from inventory_kernel.models.movements import StockAdjustment
    from inventory_kernel.models.purchasing import GoodsReceiptLine, GoodsReceiptNote
    from inventory_kernel.models.stock import LedgerEntry, StockSnapshot

    return (
        (LedgerEntry, "before_update", _check_ledger_entry_immutability),
        (LedgerEntry, "before_delete", _check_ledger_entry_delete),
        (StockAdjustment, "before_update", _check_adjustment_immutability),
        (StockAdjustment, "before_delete", _check_adjustment_delete),
        (GoodsReceiptNote, "before_update", _check_receipt_immutability),
        (GoodsReceiptNote, "before_delete", _check_receipt_delete),
        (GoodsReceiptLine, "before_update", _check_receipt_immutability),
        (GoodsReceiptLine, "before_delete", _check_receipt_delete),
        (StockSnapshot, "before_delete", _check_snapshot_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable and before any write.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to tamper with history to
    verify detection.
    """
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
