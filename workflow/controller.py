"""
Status transition controller for Purchase Orders.

request_transition() is the only way a PO's status changes. It validates the
move against the transition table, notifies the supplier on the draft-exit
send edges, and returns a new PurchaseOrder with the status set and exactly
one history entry appended. The input order is never mutated, so a failure at
any point leaves the caller holding the untouched original.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional, Union

from models.purchase_order import POStatus, PurchaseOrder, StatusHistoryEntry
from models.submission import InvoiceSubmission
from .effective_status import resolve
from .errors import InvalidTransition, SendError, ValidationError
from .notifier import SupplierNotifier
from .transitions import LINEAR_ORDER, adjacent_steps, find_transition, requires_supplier_notification

logger = logging.getLogger(__name__)


class Adjacent(NamedTuple):
    previous: Optional[POStatus]
    next: Optional[POStatus]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusTransitionController:
    """
    Usage:
        controller = StatusTransitionController(notifier)
        order = controller.request_transition(order, POStatus.AWAITING_INVOICE)
    """

    def __init__(
        self,
        notifier: Optional[SupplierNotifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.notifier = notifier
        self.clock = clock

    def request_transition(
        self,
        order: PurchaseOrder,
        target: Union[POStatus, str],
        note: Optional[str] = None,
        submission: Optional[InvoiceSubmission] = None,
    ) -> PurchaseOrder:
        """
        Validate and apply one status change.

        Raises InvalidTransition if the edge is not in the table and
        SendError if the supplier notification fails. When a submission is
        given the edge is checked from the effective status.
        """
        current = resolve(order, submission)
        try:
            target = POStatus(target)
        except ValueError:
            raise InvalidTransition(current, target) from None

        if find_transition(current, target) is None:
            raise InvalidTransition(current, target)

        if requires_supplier_notification(current, target):
            self._notify_supplier(order)

        history = [*order.status_history, StatusHistoryEntry(status=target, timestamp=self.clock(), note=note)]

        logger.info("PO %s: %s -> %s", order.po_number, current.value, target.value)
        return order.model_copy(update={"status": target, "status_history": history}, deep=True)

    def request_step(
        self,
        order: PurchaseOrder,
        step: Union[int, POStatus, str],
        note: Optional[str] = None,
        submission: Optional[InvoiceSubmission] = None,
    ) -> PurchaseOrder:
        """
        Stepper navigation. A step is either an index into LINEAR_ORDER or a
        status; either way it is applied through request_transition(), so a
        step the table does not allow raises InvalidTransition.
        """
        if isinstance(step, int):
            if not 0 <= step < len(LINEAR_ORDER):
                raise InvalidTransition(resolve(order, submission), f"step {step}")
            step = LINEAR_ORDER[step]
        return self.request_transition(order, step, note=note, submission=submission)

    def compute_adjacent(
        self,
        order: PurchaseOrder,
        submission: Optional[InvoiceSubmission] = None,
    ) -> Adjacent:
        return Adjacent(*adjacent_steps(resolve(order, submission)))

    def resend_notification(
        self,
        order: PurchaseOrder,
        submission: Optional[InvoiceSubmission] = None,
    ) -> None:
        """Send the supplier notification again for an order awaiting its invoice."""
        if resolve(order, submission) != POStatus.AWAITING_INVOICE:
            raise ValidationError("Can only resend for orders awaiting invoice", field="status")
        self._notify_supplier(order)
        logger.info("PO %s: supplier notification resent", order.po_number)

    def _notify_supplier(self, order: PurchaseOrder) -> None:
        if self.notifier is None:
            raise SendError("No supplier notifier configured")
        try:
            self.notifier.notify(order)
        except SendError:
            logger.warning("PO %s left in %s: supplier notification failed",
                           order.po_number, order.status.value)
            raise
