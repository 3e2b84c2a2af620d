"""
Effective status of a Purchase Order.

A supplier invoice approved by the review workflow makes an
invoice_received PO behave as confirmed straight away, without waiting for
anyone to write the order record. Anything that needs "the current status"
(available transitions, labels, reporting) must go through resolve() rather
than read order.status, or the two views drift apart.
"""
from typing import Optional

from models.purchase_order import POStatus, PurchaseOrder
from models.submission import InvoiceSubmission, ReviewStatus
from .transitions import Transition, allowed_transitions


def resolve(order: PurchaseOrder, submission: Optional[InvoiceSubmission] = None) -> POStatus:
    if (
        order.status == POStatus.INVOICE_RECEIVED
        and submission is not None
        and submission.review_status == ReviewStatus.APPROVED
    ):
        return POStatus.CONFIRMED
    return order.status


def available_transitions(
    order: PurchaseOrder,
    submission: Optional[InvoiceSubmission] = None,
) -> tuple[Transition, ...]:
    return allowed_transitions(resolve(order, submission))
