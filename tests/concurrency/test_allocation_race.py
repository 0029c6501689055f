"""
Concurrent allocation against a single stock key.

N threads each try to reserve one unit against S units on hand.  Exactly S
succeed, the rest fail with InsufficientStockError (or ContentionError if
the retry budget runs out), and allocated never exceeds on-hand.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from inventory_kernel.config import EngineConfig
from inventory_kernel.exceptions import ContentionError, InsufficientStockError

pytestmark = pytest.mark.slow_locks

STOCK = 5
THREADS = 12


@pytest.fixture
def engine_config(database_url):
    return EngineConfig(
        database_url=database_url, max_retries=10, retry_backoff_seconds=0.01,
    )


def test_no_oversell_under_concurrent_allocation(
    engine, site, variant, put_stock, query, test_actor_id,
):
    put_stock(variant, site["A-01"], STOCK)
    barrier = threading.Barrier(THREADS)

    def grab(_):
        barrier.wait()
        try:
            engine.allocate(variant, site.warehouse_id, 1, actor_id=test_actor_id)
        except InsufficientStockError:
            return "short"
        except ContentionError:
            return "busy"
        return "ok"

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        outcomes = list(pool.map(grab, range(THREADS)))

    assert outcomes.count("ok") == STOCK
    assert outcomes.count("short") + outcomes.count("busy") == THREADS - STOCK

    snap = query(lambda s: s.get_snapshot(variant, site["A-01"]))
    assert snap.quantity_allocated == Decimal(outcomes.count("ok"))
    assert snap.quantity_available == Decimal("0")
    engine.verify_reconciliation()


def test_concurrent_release_is_applied_once(
    engine, site, variant, put_stock, query, test_actor_id,
):
    put_stock(variant, site["A-01"], 3)
    reservation = engine.allocate(variant, site.warehouse_id, 3, actor_id=test_actor_id).value
    barrier = threading.Barrier(4)

    def release(_):
        barrier.wait()
        return engine.release(reservation.id, actor_id=test_actor_id).value.status

    with ThreadPoolExecutor(max_workers=4) as pool:
        statuses = [s.value for s in pool.map(release, range(4))]

    assert statuses.count("released") == 1
    assert statuses.count("already_released") == 3
    assert engine.get_available_quantity(variant) == Decimal("3")
    engine.verify_reconciliation()
