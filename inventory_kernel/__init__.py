"""
Inventory Kernel

Stock ledger and allocation engine with:
- Append-only ledger of every stock quantity change
- Per-location stock snapshots reconciled against the ledger
- Oversell-safe allocation under concurrent access
- Order and purchase-order lifecycle state machines
"""

__version__ = "0.1.0"
