"""
Order and Purchase Order Workflows.

Declarative state machines for sales-order fulfilment and vendor procurement.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The ORM ``status`` columns are only
    ever written with the result of ``Workflow.transition``; services never
    assign a status literal.

Invariants enforced:
    - A transition fires only if (state, action) is listed and, when the
      transition carries a guard, the guard's fact is present.
    - Terminal states (no outgoing transitions) reject every action.
    - A rejected transition raises InvalidTransitionError naming the current
      state and the attempted action; it never silently no-ops.
"""

from dataclasses import dataclass
from enum import Enum

from inventory_kernel.exceptions import InvalidTransitionError
from inventory_kernel.logging_config import get_logger

logger = get_logger("domain.workflows")


class OrderStatus(str, Enum):
    """Sales order lifecycle states."""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    ALLOCATED = "allocated"
    PICKED = "picked"
    PACKED = "packed"
    SHIPPED = "shipped"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PARTIALLY_RECEIVED = "partially_received"
    CLOSED = "closed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Guard:
    """A condition for a transition."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    entity_type: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Actions available from ``state``, in declaration order, deduplicated."""
        seen: list[str] = []
        for t in self.transitions:
            if t.from_state == state and t.action not in seen:
                seen.append(t.action)
        return tuple(seen)

    def is_terminal(self, state: str) -> bool:
        return not any(t.from_state == state for t in self.transitions)

    def transition(
        self,
        state: str,
        action: str,
        *,
        facts: frozenset[str] = frozenset(),
        entity_id: object = "",
    ) -> Transition:
        """
        Resolve ``action`` from ``state`` against the transition table.

        Args:
            state: Current state value.
            action: Attempted action name.
            facts: Names of guards that currently hold.
            entity_id: Used only to label the error.

        Returns:
            The first matching Transition whose guard (if any) holds.

        Raises:
            InvalidTransitionError: No listed transition, or every candidate's
                guard is unsatisfied.
        """
        state = getattr(state, "value", state)
        candidates = [
            t for t in self.transitions
            if t.from_state == state and t.action == action
        ]
        if not candidates:
            reason = "terminal state" if self.is_terminal(state) else None
            raise InvalidTransitionError(
                self.entity_type, str(entity_id), state, action, reason,
            )

        for candidate in candidates:
            if candidate.guard is None or candidate.guard.name in facts:
                return candidate

        unmet = ", ".join(c.guard.description for c in candidates if c.guard)
        raise InvalidTransitionError(
            self.entity_type, str(entity_id), state, action,
            f"guard not satisfied ({unmet})",
        )


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Document has at least one line",
)

LINES_OUTSTANDING = Guard(
    name="lines_outstanding",
    description="At least one line is not fully received",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every line is fully received",
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

_O = OrderStatus

ORDER_WORKFLOW = Workflow(
    name="sales_order",
    description="Sales order fulfilment",
    entity_type="Order",
    initial_state=_O.DRAFT.value,
    states=tuple(s.value for s in OrderStatus),
    transitions=(
        Transition(_O.DRAFT.value, _O.DRAFT.value, action="add_line"),
        Transition(_O.DRAFT.value, _O.CONFIRMED.value, action="confirm", guard=HAS_LINES),
        Transition(_O.CONFIRMED.value, _O.ALLOCATED.value, action="allocate"),
        Transition(_O.ALLOCATED.value, _O.PICKED.value, action="pick"),
        Transition(_O.PICKED.value, _O.PACKED.value, action="pack"),
        Transition(_O.PACKED.value, _O.SHIPPED.value, action="ship"),
        Transition(_O.SHIPPED.value, _O.INVOICED.value, action="invoice"),
        Transition(_O.DRAFT.value, _O.CANCELLED.value, action="cancel"),
        Transition(_O.CONFIRMED.value, _O.CANCELLED.value, action="cancel"),
        Transition(_O.ALLOCATED.value, _O.CANCELLED.value, action="cancel"),
        Transition(_O.PICKED.value, _O.CANCELLED.value, action="cancel"),
        Transition(_O.PACKED.value, _O.CANCELLED.value, action="cancel"),
    ),
)

# States in which the order holds an active reservation.
ORDER_HOLDS_ALLOCATION = frozenset({
    _O.ALLOCATED.value, _O.PICKED.value, _O.PACKED.value,
})


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

_P = PurchaseOrderStatus

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Vendor procurement and goods receipt",
    entity_type="PurchaseOrder",
    initial_state=_P.DRAFT.value,
    states=tuple(s.value for s in PurchaseOrderStatus),
    transitions=(
        Transition(_P.DRAFT.value, _P.DRAFT.value, action="add_line"),
        Transition(_P.DRAFT.value, _P.SUBMITTED.value, action="submit", guard=HAS_LINES),
        Transition(_P.SUBMITTED.value, _P.PENDING_APPROVAL.value, action="request_approval"),
        Transition(_P.PENDING_APPROVAL.value, _P.APPROVED.value, action="approve"),
        Transition(_P.PENDING_APPROVAL.value, _P.DRAFT.value, action="reject"),
        Transition(
            _P.APPROVED.value, _P.PARTIALLY_RECEIVED.value,
            action="receive", guard=LINES_OUTSTANDING,
        ),
        Transition(
            _P.APPROVED.value, _P.CLOSED.value,
            action="receive", guard=ALL_LINES_RECEIVED,
        ),
        Transition(
            _P.PARTIALLY_RECEIVED.value, _P.PARTIALLY_RECEIVED.value,
            action="receive", guard=LINES_OUTSTANDING,
        ),
        Transition(
            _P.PARTIALLY_RECEIVED.value, _P.CLOSED.value,
            action="receive", guard=ALL_LINES_RECEIVED,
        ),
        Transition(_P.DRAFT.value, _P.CANCELLED.value, action="cancel"),
        Transition(_P.SUBMITTED.value, _P.CANCELLED.value, action="cancel"),
        Transition(_P.PENDING_APPROVAL.value, _P.CANCELLED.value, action="cancel"),
        Transition(_P.APPROVED.value, _P.CANCELLED.value, action="cancel"),
        Transition(_P.PARTIALLY_RECEIVED.value, _P.CANCELLED.value, action="cancel"),
    ),
)

RECEIVABLE_PO_STATES = frozenset({
    _P.APPROVED.value, _P.PARTIALLY_RECEIVED.value,
})

logger.debug(
    "workflows_registered",
    extra={
        "workflows": [ORDER_WORKFLOW.name, PURCHASE_ORDER_WORKFLOW.name],
        "transition_count": (
            len(ORDER_WORKFLOW.transitions) + len(PURCHASE_ORDER_WORKFLOW.transitions)
        ),
    },
)
