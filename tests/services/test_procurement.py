"""Purchase order approval flow and goods receipt against the stock ledger."""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.domain.dtos import (
    LedgerEntryType,
    PurchaseOrderLineSpec,
    ReceiptLineSpec,
)
from inventory_kernel.domain.events import EventKind
from inventory_kernel.domain.workflows import PurchaseOrderStatus
from inventory_kernel.exceptions import (
    InvalidTransitionError,
    LocationNotFoundError,
    OverReceiptError,
    PurchaseOrderLineNotFoundError,
    ReceiptLineMismatchError,
)


@pytest.fixture
def approved_po(engine, site, variant, test_actor_id):
    """An approved PO for 20 units of ``variant`` at 3.25 each."""
    po = engine.create_purchase_order(
        uuid4(),
        site.warehouse_id,
        actor_id=test_actor_id,
        lines=[PurchaseOrderLineSpec(variant, Decimal("20"), Decimal("3.25"))],
    ).value
    engine.submit_purchase_order(po.id, actor_id=test_actor_id)
    engine.request_approval(po.id, actor_id=test_actor_id)
    return engine.approve_purchase_order(po.id, actor_id=test_actor_id).value


def receipt(po, location_id, quantity, variant_id=None):
    line = po.lines[0]
    return ReceiptLineSpec(
        purchase_order_line_id=line.id,
        variant_id=variant_id or line.variant_id,
        location_id=location_id,
        quantity=Decimal(str(quantity)),
    )


class TestApprovalFlow:

    def test_create_numbers_and_totals(self, engine, site, variant, test_actor_id):
        po = engine.create_purchase_order(
            uuid4(),
            site.warehouse_id,
            actor_id=test_actor_id,
            lines=[PurchaseOrderLineSpec(variant, Decimal("4"), Decimal("2.50"))],
        ).value
        assert po.po_number == "PO-000001"
        assert po.status == PurchaseOrderStatus.DRAFT.value
        assert po.total_amount == Decimal("10.00")

    def test_submit_requires_lines(self, engine, site, test_actor_id):
        po = engine.create_purchase_order(uuid4(), site.warehouse_id, actor_id=test_actor_id).value
        with pytest.raises(InvalidTransitionError):
            engine.submit_purchase_order(po.id, actor_id=test_actor_id)

    def test_reject_returns_to_draft_with_note(self, engine, site, variant, test_actor_id):
        po = engine.create_purchase_order(
            uuid4(),
            site.warehouse_id,
            actor_id=test_actor_id,
            lines=[PurchaseOrderLineSpec(variant, Decimal("1"), Decimal("1"))],
        ).value
        engine.submit_purchase_order(po.id, actor_id=test_actor_id)
        engine.request_approval(po.id, actor_id=test_actor_id)

        rejected = engine.reject_purchase_order(
            po.id, actor_id=test_actor_id, reason="price too high",
        ).value
        assert rejected.status == PurchaseOrderStatus.DRAFT.value
        assert "Rejected: price too high" in rejected.notes

        engine.add_purchase_order_line(
            po.id, PurchaseOrderLineSpec(variant, Decimal("2"), Decimal("1")), actor_id=test_actor_id,
        )
        assert len(engine.get_purchase_order(po.id).lines) == 2

    def test_approve_without_request_rejected(self, engine, site, variant, test_actor_id):
        po = engine.create_purchase_order(
            uuid4(),
            site.warehouse_id,
            actor_id=test_actor_id,
            lines=[PurchaseOrderLineSpec(variant, Decimal("1"), Decimal("1"))],
        ).value
        engine.submit_purchase_order(po.id, actor_id=test_actor_id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.approve_purchase_order(po.id, actor_id=test_actor_id)
        assert exc_info.value.current_state == PurchaseOrderStatus.SUBMITTED.value

    def test_cancel_approved(self, engine, approved_po, test_actor_id):
        cancelled = engine.cancel_purchase_order(approved_po.id, actor_id=test_actor_id).value
        assert cancelled.status == PurchaseOrderStatus.CANCELLED.value


class TestGoodsReceipt:

    def test_partial_then_full_then_over_receipt(
        self, engine, site, variant, approved_po, query, test_actor_id,
    ):
        first = engine.receive_goods(
            approved_po.id,
            [receipt(approved_po, site["RCV"], 12)],
            received_by="dock-1",
            actor_id=test_actor_id,
            delivery_note_number="DN-1",
        )
        assert first.value.grn_number == "GRN-000001"
        assert first.value.purchase_order_status == PurchaseOrderStatus.PARTIALLY_RECEIVED.value
        assert first.event_kinds() == (EventKind.GOODS_RECEIVED,)
        assert engine.get_available_quantity(variant, site["RCV"]) == Decimal("12")

        second = engine.receive_goods(
            approved_po.id,
            [receipt(approved_po, site["RCV"], 8)],
            received_by="dock-1",
            actor_id=test_actor_id,
        )
        assert second.value.purchase_order_status == PurchaseOrderStatus.CLOSED.value
        assert second.event_kinds() == (
            EventKind.GOODS_RECEIVED,
            EventKind.PURCHASE_ORDER_CLOSED,
        )

        po = engine.get_purchase_order(approved_po.id)
        assert po.lines[0].quantity_received == Decimal("20")
        assert po.lines[0].quantity_outstanding == Decimal("0")

        with pytest.raises(OverReceiptError) as exc_info:
            engine.receive_goods(
                approved_po.id,
                [receipt(approved_po, site["RCV"], 1)],
                received_by="dock-1",
                actor_id=test_actor_id,
            )
        assert exc_info.value.already_received == Decimal("20")
        assert engine.get_available_quantity(variant, site["RCV"]) == Decimal("20")

        purchases = [
            e for e in query(lambda s: s.ledger_history(variant))
            if e.entry_type == LedgerEntryType.PURCHASE
        ]
        assert [e.quantity_change for e in purchases] == [Decimal("12"), Decimal("8")]
        assert all(e.unit_cost == Decimal("3.25") for e in purchases)
        engine.verify_reconciliation()

    def test_over_receipt_applies_nothing(
        self, engine, site, variant, approved_po, query, test_actor_id,
    ):
        engine.receive_goods(
            approved_po.id,
            [receipt(approved_po, site["RCV"], 12)],
            received_by="dock-1",
            actor_id=test_actor_id,
        )
        with pytest.raises(OverReceiptError) as exc_info:
            engine.receive_goods(
                approved_po.id,
                [receipt(approved_po, site["RCV"], 9)],
                received_by="dock-1",
                actor_id=test_actor_id,
            )
        err = exc_info.value
        assert err.ordered == Decimal("20")
        assert err.already_received == Decimal("12")
        assert err.receiving == Decimal("9")

        po = engine.get_purchase_order(approved_po.id)
        assert po.status == PurchaseOrderStatus.PARTIALLY_RECEIVED.value
        assert po.lines[0].quantity_received == Decimal("12")
        assert engine.get_available_quantity(variant) == Decimal("12")

    def test_split_lines_for_same_po_line_are_summed(
        self, engine, site, approved_po, test_actor_id,
    ):
        with pytest.raises(OverReceiptError):
            engine.receive_goods(
                approved_po.id,
                [
                    receipt(approved_po, site["RCV"], 15),
                    receipt(approved_po, site["A-01"], 6),
                ],
                received_by="dock-1",
                actor_id=test_actor_id,
            )

    def test_receipt_into_two_locations(self, engine, site, variant, approved_po, test_actor_id):
        result = engine.receive_goods(
            approved_po.id,
            [receipt(approved_po, site["RCV"], 15), receipt(approved_po, site["A-01"], 5)],
            received_by="dock-1",
            actor_id=test_actor_id,
        )
        assert result.value.purchase_order_status == PurchaseOrderStatus.CLOSED.value
        assert len(result.value.lines) == 2
        assert engine.get_available_quantity(variant, site["A-01"]) == Decimal("5")

    def test_wrong_variant_rejected(self, engine, site, make_variant, approved_po, test_actor_id):
        other = make_variant()
        with pytest.raises(ReceiptLineMismatchError):
            engine.receive_goods(
                approved_po.id,
                [receipt(approved_po, site["RCV"], 1, variant_id=other)],
                received_by="dock-1",
                actor_id=test_actor_id,
            )

    def test_unknown_po_line_rejected(self, engine, site, variant, approved_po, test_actor_id):
        bogus = ReceiptLineSpec(uuid4(), variant, site["RCV"], Decimal("1"))
        with pytest.raises(PurchaseOrderLineNotFoundError):
            engine.receive_goods(
                approved_po.id, [bogus], received_by="dock-1", actor_id=test_actor_id,
            )

    def test_unknown_location_rejected(self, engine, approved_po, test_actor_id):
        with pytest.raises(LocationNotFoundError):
            engine.receive_goods(
                approved_po.id,
                [receipt(approved_po, uuid4(), 1)],
                received_by="dock-1",
                actor_id=test_actor_id,
            )

    def test_receive_before_approval_rejected(self, engine, site, variant, test_actor_id):
        po = engine.create_purchase_order(
            uuid4(),
            site.warehouse_id,
            actor_id=test_actor_id,
            lines=[PurchaseOrderLineSpec(variant, Decimal("5"), Decimal("1"))],
        ).value
        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.receive_goods(
                po.id, [receipt(po, site["RCV"], 5)], received_by="dock-1", actor_id=test_actor_id,
            )
        assert exc_info.value.action == "receive"

    def test_empty_receipt_rejected(self, engine, approved_po, test_actor_id):
        with pytest.raises(ValueError):
            engine.receive_goods(approved_po.id, [], received_by="dock-1", actor_id=test_actor_id)
