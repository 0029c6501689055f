"""
Order and purchase-order state machines.

The transition function is pure: every illegal action raises
InvalidTransitionError carrying the current state and the attempted action,
and never returns a no-op transition.
"""

import pytest

from inventory_kernel.domain.workflows import (
    ALL_LINES_RECEIVED,
    HAS_LINES,
    LINES_OUTSTANDING,
    ORDER_HOLDS_ALLOCATION,
    ORDER_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
    OrderStatus,
    PurchaseOrderStatus,
)
from inventory_kernel.exceptions import InvalidTransitionError

HAS = frozenset({HAS_LINES.name})


class TestOrderWorkflow:

    def test_happy_path(self):
        state = ORDER_WORKFLOW.initial_state
        assert state == OrderStatus.DRAFT.value
        for action, expected in [
            ("confirm", OrderStatus.CONFIRMED),
            ("allocate", OrderStatus.ALLOCATED),
            ("pick", OrderStatus.PICKED),
            ("pack", OrderStatus.PACKED),
            ("ship", OrderStatus.SHIPPED),
            ("invoice", OrderStatus.INVOICED),
        ]:
            state = ORDER_WORKFLOW.transition(state, action, facts=HAS).to_state
            assert state == expected.value

    def test_confirm_requires_a_line(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            ORDER_WORKFLOW.transition(OrderStatus.DRAFT.value, "confirm")
        err = exc_info.value
        assert err.current_state == "draft"
        assert err.action == "confirm"
        assert "guard not satisfied" in err.reason

    def test_add_line_only_in_draft(self):
        t = ORDER_WORKFLOW.transition(OrderStatus.DRAFT.value, "add_line")
        assert t.to_state == OrderStatus.DRAFT.value
        with pytest.raises(InvalidTransitionError):
            ORDER_WORKFLOW.transition(OrderStatus.CONFIRMED.value, "add_line", facts=HAS)

    @pytest.mark.parametrize("state", ["draft", "confirmed", "allocated", "picked", "packed"])
    def test_cancel_allowed_before_shipment(self, state):
        t = ORDER_WORKFLOW.transition(state, "cancel", facts=HAS)
        assert t.to_state == OrderStatus.CANCELLED.value

    @pytest.mark.parametrize("state", ["shipped", "invoiced", "cancelled"])
    def test_cancel_rejected_after_shipment(self, state):
        with pytest.raises(InvalidTransitionError) as exc_info:
            ORDER_WORKFLOW.transition(state, "cancel", facts=HAS)
        assert exc_info.value.current_state == state

    def test_terminal_states(self):
        assert ORDER_WORKFLOW.is_terminal(OrderStatus.INVOICED.value)
        assert ORDER_WORKFLOW.is_terminal(OrderStatus.CANCELLED.value)
        assert not ORDER_WORKFLOW.is_terminal(OrderStatus.SHIPPED.value)

    def test_terminal_state_reason(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            ORDER_WORKFLOW.transition("invoiced", "pick")
        assert exc_info.value.reason == "terminal state"

    def test_cannot_skip_states(self):
        with pytest.raises(InvalidTransitionError):
            ORDER_WORKFLOW.transition("confirmed", "ship", facts=HAS)

    def test_enum_state_is_accepted(self):
        t = ORDER_WORKFLOW.transition(OrderStatus.ALLOCATED, "pick")
        assert t.to_state == "picked"

    def test_holds_allocation_states(self):
        assert ORDER_HOLDS_ALLOCATION == {"allocated", "picked", "packed"}

    def test_actions_from_draft(self):
        assert ORDER_WORKFLOW.actions_from("draft") == ("add_line", "confirm", "cancel")


class TestPurchaseOrderWorkflow:

    def test_approval_path(self):
        state = PURCHASE_ORDER_WORKFLOW.initial_state
        for action in ("submit", "request_approval", "approve"):
            state = PURCHASE_ORDER_WORKFLOW.transition(state, action, facts=HAS).to_state
        assert state == PurchaseOrderStatus.APPROVED.value

    def test_reject_returns_to_draft(self):
        t = PURCHASE_ORDER_WORKFLOW.transition("pending_approval", "reject")
        assert t.to_state == PurchaseOrderStatus.DRAFT.value

    def test_receive_partial_then_close(self):
        outstanding = frozenset({HAS_LINES.name, LINES_OUTSTANDING.name})
        complete = frozenset({HAS_LINES.name, ALL_LINES_RECEIVED.name})
        t = PURCHASE_ORDER_WORKFLOW.transition("approved", "receive", facts=outstanding)
        assert t.to_state == "partially_received"
        t = PURCHASE_ORDER_WORKFLOW.transition(t.to_state, "receive", facts=complete)
        assert t.to_state == "closed"

    def test_receive_from_draft_rejected(self):
        with pytest.raises(InvalidTransitionError):
            PURCHASE_ORDER_WORKFLOW.transition(
                "draft", "receive", facts=frozenset({LINES_OUTSTANDING.name}),
            )

    @pytest.mark.parametrize(
        "state",
        ["draft", "submitted", "pending_approval", "approved", "partially_received"],
    )
    def test_cancel_from_open_states(self, state):
        t = PURCHASE_ORDER_WORKFLOW.transition(state, "cancel")
        assert t.to_state == "cancelled"

    @pytest.mark.parametrize("state", ["closed", "cancelled"])
    def test_closed_and_cancelled_are_terminal(self, state):
        assert PURCHASE_ORDER_WORKFLOW.is_terminal(state)
        with pytest.raises(InvalidTransitionError):
            PURCHASE_ORDER_WORKFLOW.transition(state, "cancel")
