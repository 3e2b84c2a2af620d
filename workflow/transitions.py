"""
Purchase Order transition table.

The graph is branching, not a chain: most states can step forward, step back
one stage, or be cancelled, and a cancelled PO can be reopened as a draft.
Both draft-exit edges (draft -> sent, draft -> awaiting_invoice) have an
external side effect: the supplier is notified before the move is committed.

LINEAR_ORDER is the fixed stepper used for Back/Next affordances. It is a
view over the table, not a second source of truth: stepper moves still go
through StatusTransitionController.request_transition().
"""
from enum import Enum
from typing import NamedTuple, Optional

from models.purchase_order import POStatus


class Direction(str, Enum):
    FORWARD = "forward"
    BACK = "back"
    CANCEL = "cancel"


class Transition(NamedTuple):
    target: POStatus
    direction: Direction
    label: str
    primary: bool = False


S = POStatus

TRANSITIONS: dict[POStatus, tuple[Transition, ...]] = {
    S.DRAFT: (
        Transition(S.AWAITING_INVOICE, Direction.FORWARD, "Send to Supplier", primary=True),
        Transition(S.SENT, Direction.FORWARD, "Mark as Sent"),
        Transition(S.CANCELLED, Direction.CANCEL, "Cancel Order"),
    ),
    S.SENT: (
        Transition(S.AWAITING_INVOICE, Direction.FORWARD, "Awaiting Invoice", primary=True),
        Transition(S.DRAFT, Direction.BACK, "Back to Draft"),
        Transition(S.CANCELLED, Direction.CANCEL, "Cancel Order"),
    ),
    S.AWAITING_INVOICE: (
        Transition(S.INVOICE_RECEIVED, Direction.FORWARD, "Invoice Received", primary=True),
        Transition(S.SENT, Direction.BACK, "Back to Sent"),
        Transition(S.CANCELLED, Direction.CANCEL, "Cancel Order"),
    ),
    S.INVOICE_RECEIVED: (
        Transition(S.CONFIRMED, Direction.FORWARD, "Confirm Order", primary=True),
        Transition(S.AWAITING_INVOICE, Direction.BACK, "Back to Awaiting"),
        Transition(S.CANCELLED, Direction.CANCEL, "Cancel Order"),
    ),
    S.CONFIRMED: (
        Transition(S.PRODUCTION_COMPLETE, Direction.FORWARD, "Production Complete", primary=True),
        Transition(S.INVOICE_RECEIVED, Direction.BACK, "Back to Invoice Received"),
        Transition(S.CANCELLED, Direction.CANCEL, "Cancel Order"),
    ),
    S.PRODUCTION_COMPLETE: (
        Transition(S.READY_TO_SHIP, Direction.FORWARD, "Ready to Ship", primary=True),
        Transition(S.CONFIRMED, Direction.BACK, "Back to Confirmed"),
    ),
    S.READY_TO_SHIP: (
        Transition(S.RECEIVED, Direction.FORWARD, "Mark as Received", primary=True),
        Transition(S.PARTIALLY_RECEIVED, Direction.FORWARD, "Partial Receipt"),
        Transition(S.PRODUCTION_COMPLETE, Direction.BACK, "Back to Production Complete"),
    ),
    S.PARTIALLY_RECEIVED: (
        Transition(S.RECEIVED, Direction.FORWARD, "Mark as Received", primary=True),
        Transition(S.PRODUCTION_COMPLETE, Direction.BACK, "Back to Production Complete"),
    ),
    S.RECEIVED: (
        Transition(S.PRODUCTION_COMPLETE, Direction.BACK, "Revert to Production Complete"),
        Transition(S.PARTIALLY_RECEIVED, Direction.BACK, "Revert to Partial"),
    ),
    S.CANCELLED: (
        Transition(S.DRAFT, Direction.BACK, "Reopen as Draft"),
    ),
}

# Edges whose commit waits on a successful supplier notification
NOTIFY_SUPPLIER_EDGES: frozenset[tuple[POStatus, POStatus]] = frozenset({
    (S.DRAFT, S.SENT),
    (S.DRAFT, S.AWAITING_INVOICE),
})

LINEAR_ORDER: tuple[POStatus, ...] = (
    S.DRAFT,
    S.SENT,
    S.AWAITING_INVOICE,
    S.INVOICE_RECEIVED,
    S.CONFIRMED,
    S.PRODUCTION_COMPLETE,
    S.READY_TO_SHIP,
    S.RECEIVED,
)

_missing = set(POStatus) - set(TRANSITIONS)
if _missing:
    raise RuntimeError(f"Transition table has no entry for: {sorted(s.value for s in _missing)}")


def allowed_transitions(status: POStatus) -> tuple[Transition, ...]:
    return TRANSITIONS[POStatus(status)]


def find_transition(current: POStatus, target: POStatus) -> Optional[Transition]:
    for transition in allowed_transitions(current):
        if transition.target == target:
            return transition
    return None


def is_allowed(current: POStatus, target: POStatus) -> bool:
    return find_transition(current, target) is not None


def requires_supplier_notification(current: POStatus, target: POStatus) -> bool:
    return (POStatus(current), POStatus(target)) in NOTIFY_SUPPLIER_EDGES


def all_edges() -> list[tuple[POStatus, POStatus]]:
    """Every (from, to) pair in the table."""
    return [(src, t.target) for src, edges in TRANSITIONS.items() for t in edges]


def adjacent_steps(status: POStatus) -> tuple[Optional[POStatus], Optional[POStatus]]:
    """
    (previous, next) neighbours of status in LINEAR_ORDER.
    Statuses off the stepper (partially-received, cancelled) have neither.
    """
    if status not in LINEAR_ORDER:
        return None, None
    idx = LINEAR_ORDER.index(status)
    prev_step = LINEAR_ORDER[idx - 1] if idx > 0 else None
    next_step = LINEAR_ORDER[idx + 1] if idx + 1 < len(LINEAR_ORDER) else None
    return prev_step, next_step
