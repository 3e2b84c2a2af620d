from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, computed_field

from .money import ZERO, Money


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"


class InvoiceSubmission(BaseModel):
    """
    A supplier-submitted invoice awaiting (or past) internal review.

    The review workflow that owns this record lives outside the core; the
    workflow only reads it to work out a PO's effective status.
    variance_amount = submitted_total - expected PO total.
    """
    purchase_order_id: str
    review_status: ReviewStatus = ReviewStatus.PENDING
    submitted_total: Money
    variance_amount: Money = ZERO
    reviewer_notes: Optional[str] = None

    @property
    def expected_total(self) -> Decimal:
        return self.submitted_total - self.variance_amount

    @computed_field
    @property
    def variance_percentage(self) -> float:
        expected = self.expected_total
        if expected == 0:
            return 0.0
        return round(float(self.variance_amount / expected * 100), 2)
