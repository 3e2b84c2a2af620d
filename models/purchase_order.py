from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from .money import ZERO, Money, to_money


class POStatus(str, Enum):
    """Lifecycle states of a Purchase Order. Values are the persisted strings."""
    DRAFT = "draft"
    SENT = "sent"
    AWAITING_INVOICE = "awaiting_invoice"
    INVOICE_RECEIVED = "invoice_received"
    CONFIRMED = "confirmed"
    PRODUCTION_COMPLETE = "production_complete"
    READY_TO_SHIP = "ready-to-ship"
    PARTIALLY_RECEIVED = "partially-received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusHistoryEntry(BaseModel):
    """
    One immutable row of a PO's status history.
    Field names are read directly by the PDF export and audit tooling.
    """
    model_config = {"frozen": True}

    status: POStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    note: Optional[str] = None


class POLineItem(BaseModel):
    """A single line item on a Purchase Order."""
    sku: str
    description: Optional[str] = None
    quantity: int = Field(ge=0)
    unit_cost: Money

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return to_money(self.quantity * self.unit_cost)


class PurchaseOrder(BaseModel):
    """
    A Purchase Order placed with a supplier.

    status and status_history only ever change through
    StatusTransitionController; a cancelled PO is kept, never deleted.
    version is the optimistic-locking counter maintained by the Database.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    po_number: str
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_email: Optional[str] = None
    order_date: date = Field(default_factory=date.today)
    expected_date: Optional[date] = None
    total: Money = ZERO
    currency: str = "USD"
    status: POStatus = POStatus.DRAFT
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    line_items: List[POLineItem] = Field(default_factory=list)
    notes: Optional[str] = None
    version: int = 0

    @property
    def line_items_total(self) -> Decimal:
        """Sum of line subtotals; compare against total to spot manual edits."""
        return sum((item.subtotal for item in self.line_items), ZERO)
