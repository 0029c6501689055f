"""
Ledger/snapshot reconciliation, snapshot rebuild and append-only enforcement.
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import select, text

from inventory_kernel.domain.dtos import AdjustmentReasonCode, ZoneType
from inventory_kernel.exceptions import (
    ImmutabilityViolationError,
    InsufficientStockError,
    LedgerIntegrityError,
    NegativeStockError,
)
from inventory_kernel.models import LedgerEntry, StockAdjustment


def tamper(session_factory, sql: str) -> None:
    """Write straight to the database, bypassing the ledger."""
    with session_factory() as sess:
        sess.execute(text(sql))
        sess.commit()


class TestReconciliation:

    def test_clean_after_mixed_operations(
        self, engine, site, variant, put_stock, query, test_actor_id,
    ):
        put_stock(variant, site["A-01"], 10)
        put_stock(variant, site["A-02"], 4)
        reservation = engine.allocate(variant, site.warehouse_id, 12, actor_id=test_actor_id).value
        engine.release(reservation.id, actor_id=test_actor_id)
        engine.apply_adjustment(
            variant, site["A-02"], -1, AdjustmentReasonCode.DAMAGED, actor_id=test_actor_id,
        )

        report = engine.verify_reconciliation()
        assert report.keys_checked == 2
        assert query(lambda s: s.ledger_balance(variant, site["A-02"])) == (Decimal("3"), Decimal("0"))

    def test_drift_is_fatal_and_rebuild_repairs_it(
        self, engine, site, variant, put_stock, session_factory, query, test_actor_id,
    ):
        put_stock(variant, site["A-01"], 10)
        tamper(session_factory, "UPDATE stock_snapshots SET quantity_on_hand = 13")

        with pytest.raises(LedgerIntegrityError) as exc_info:
            engine.verify_reconciliation()
        (drift,) = exc_info.value.drifts
        assert drift["location_id"] == str(site["A-01"])

        fixed = engine.rebuild_snapshots(actor_id=test_actor_id).value
        assert fixed == 1
        assert query(lambda s: s.get_snapshot(variant, site["A-01"])).quantity_on_hand == Decimal("10")
        engine.verify_reconciliation()

        assert engine.rebuild_snapshots(actor_id=test_actor_id).value == 0

    def test_scoped_check_ignores_other_keys(
        self, engine, site, variant, put_stock, session_factory, test_actor_id,
    ):
        put_stock(variant, site["A-01"], 10)
        put_stock(variant, site["A-02"], 10)
        tamper(
            session_factory,
            f"UPDATE stock_snapshots SET quantity_allocated = 1 "
            f"WHERE location_id = '{site['A-02']}'",
        )

        engine.verify_reconciliation(variant, site["A-01"])
        with pytest.raises(LedgerIntegrityError):
            engine.verify_reconciliation(variant, site["A-02"])

    def test_reconciled_after_random_adjustments(
        self, engine, site, variant, test_actor_id,
    ):
        @settings(
            max_examples=15,
            deadline=None,
            suppress_health_check=[HealthCheck.function_scoped_fixture],
        )
        @given(st.lists(st.integers(min_value=-20, max_value=20).filter(bool), max_size=8))
        def run(deltas):
            for delta in deltas:
                try:
                    engine.apply_adjustment(
                        variant, site["A-01"], delta, AdjustmentReasonCode.OTHER,
                        actor_id=test_actor_id,
                    )
                except (NegativeStockError, InsufficientStockError):
                    pass
            engine.verify_reconciliation()
            assert engine.get_available_quantity(variant, site["A-01"]) >= 0

        run()


class TestAppendOnly:

    def test_ledger_entry_cannot_be_updated(
        self, engine, site, variant, put_stock, session_factory,
    ):
        put_stock(variant, site["A-01"], 5)
        with session_factory() as sess:
            entry = sess.execute(select(LedgerEntry)).scalars().one()
            entry.quantity_change = Decimal("50")
            with pytest.raises(ImmutabilityViolationError):
                sess.flush()
            sess.rollback()

    def test_ledger_entry_cannot_be_deleted(
        self, engine, site, variant, put_stock, session_factory,
    ):
        put_stock(variant, site["A-01"], 5)
        with session_factory() as sess:
            entry = sess.execute(select(LedgerEntry)).scalars().one()
            sess.delete(entry)
            with pytest.raises(ImmutabilityViolationError) as exc_info:
                sess.flush()
            assert exc_info.value.entity_type == "LedgerEntry"
            sess.rollback()

    def test_adjustment_cannot_be_edited(
        self, engine, site, variant, put_stock, session_factory,
    ):
        put_stock(variant, site["A-01"], 5)
        with session_factory() as sess:
            adjustment = sess.execute(select(StockAdjustment)).scalars().one()
            adjustment.notes = "rewritten"
            with pytest.raises(ImmutabilityViolationError):
                sess.flush()
            sess.rollback()


class TestLowStock:

    def test_reports_variants_at_or_below_reorder_point(
        self, engine, site, make_variant, put_stock,
    ):
        low = make_variant("LOW", reorder_point=Decimal("5"), reorder_quantity=Decimal("20"))
        ok = make_variant("OK", reorder_point=Decimal("5"))
        put_stock(low, site["A-01"], 3)
        put_stock(low, site["A-02"], 2)
        put_stock(ok, site["A-01"], 6)

        items = engine.low_stock(site.warehouse_id)
        assert [i.sku for i in items] == ["LOW"]
        assert items[0].quantity_on_hand == Decimal("5")
        assert items[0].reorder_quantity == Decimal("20")

    def test_each_warehouse_is_judged_on_its_own_stock(
        self, engine, site, make_site, make_variant, put_stock,
    ):
        east = make_site("EAST", {"E-01": ZoneType.BULK_STORAGE})
        item = make_variant("SPLIT", reorder_point=Decimal("5"))
        put_stock(item, site["A-01"], 2)
        put_stock(item, east["E-01"], 40)

        items = engine.low_stock()
        assert [(i.sku, i.warehouse_id) for i in items] == [("SPLIT", site.warehouse_id)]
        assert items[0].quantity_on_hand == Decimal("2")
        assert engine.low_stock(east.warehouse_id) == []
