"""
Invoice, payment schedule and payment models.

Invoice-level paid_amount, balance and status are computed fields: they are
derived from the schedule and payment list on every read and are written to
JSON for reporting only, never read back as truth.
"""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from .money import ZERO, Money


class PaymentTrigger(str, Enum):
    """Business event that makes a milestone due."""
    PO_CONFIRMED = "po-confirmed"
    INSPECTION_PASSED = "inspection-passed"
    CUSTOMS_CLEARED = "customs-cleared"
    SHIPMENT_DEPARTED = "shipment-departed"
    GOODS_RECEIVED = "goods-received"
    MANUAL = "manual"
    UPFRONT = "upfront"


class TriggerStatus(str, Enum):
    PENDING = "pending"
    TRIGGERED = "triggered"
    OVERDUE = "overdue"      # derived on read, never stored


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, Enum):
    WIRE_TRANSFER = "wire-transfer"
    CREDIT_CARD = "credit-card"
    PAYPAL = "paypal"
    CHECK = "check"
    OTHER = "other"


class PaymentMilestone(BaseModel):
    """One milestone of a reusable payment terms template (e.g. 30% deposit)."""
    name: str
    percentage: float = Field(gt=0, le=100)
    trigger: PaymentTrigger
    offset_days: int = Field(default=0, ge=0)   # days after the trigger the payment is due


class PaymentTermsTemplate(BaseModel):
    """Reusable payment schedule, e.g. "Standard 30/70"."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str
    description: Optional[str] = None
    milestones: List[PaymentMilestone] = Field(default_factory=list)
    is_active: bool = True


class AttachmentRef(BaseModel):
    """Opaque reference returned by an AttachmentStore. Content is never inspected."""
    model_config = {"frozen": True}

    id: str
    name: str
    size: int = 0
    storage_path: Optional[str] = None


class PaymentScheduleItem(BaseModel):
    """
    A single milestone on an invoice's payment schedule.

    Only pending/triggered are persisted in trigger_status; use
    effective_trigger_status() for the overdue-aware value.
    Field names are read directly by the PDF export and audit tooling.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    sort_order: int
    milestone_name: str
    percentage: float
    amount: Money
    trigger: PaymentTrigger
    trigger_status: TriggerStatus = TriggerStatus.PENDING
    trigger_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    offset_days: int = 0
    paid_amount: Money = ZERO
    paid_date: Optional[dt.date] = None

    @property
    def is_paid(self) -> bool:
        return self.paid_amount >= self.amount

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.amount - self.paid_amount)

    def is_overdue(self, today: Optional[dt.date] = None) -> bool:
        """
        Unpaid and either triggered or past its due date. Evaluated against
        the clock on every call.
        """
        if self.is_paid:
            return False
        today = today or dt.date.today()
        if self.trigger_status == TriggerStatus.TRIGGERED:
            return True
        return self.due_date is not None and self.due_date < today

    def effective_trigger_status(self, today: Optional[dt.date] = None) -> TriggerStatus:
        if self.is_overdue(today):
            return TriggerStatus.OVERDUE
        return self.trigger_status


class PaymentAllocation(BaseModel):
    """How much of a payment landed on one schedule item."""
    model_config = {"frozen": True}

    schedule_item_id: str
    amount: Money


class Payment(BaseModel):
    """A record of cash movement. Immutable once recorded."""
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid4().hex)
    amount: Money
    date: dt.date
    method: PaymentMethod = PaymentMethod.WIRE_TRANSFER
    reference: str
    notes: Optional[str] = None
    attachments: List[AttachmentRef] = Field(default_factory=list)
    allocations: List[PaymentAllocation] = Field(default_factory=list)


class NewPayment(BaseModel):
    """Payment details submitted by a caller; validated by record_payment()."""
    amount: Money
    date: dt.date = Field(default_factory=dt.date.today)
    method: PaymentMethod = PaymentMethod.WIRE_TRANSFER
    reference: str = ""
    notes: Optional[str] = None
    attachments: List[AttachmentRef] = Field(default_factory=list)


class Invoice(BaseModel):
    """
    An invoice owed to a supplier, optionally split into payment milestones.

    Mutated only through milestone trigger events and record_payment().
    Schedule items are never removed.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    invoice_number: str
    invoice_date: dt.date = Field(default_factory=dt.date.today)
    description: Optional[str] = None
    purchase_order_id: Optional[str] = None
    currency: str = "USD"
    amount: Money
    payment_schedule: List[PaymentScheduleItem] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)
    payment_terms_template_id: Optional[str] = None
    version: int = 0

    @computed_field
    @property
    def paid_amount(self) -> Decimal:
        if self.payment_schedule:
            return sum((item.paid_amount for item in self.payment_schedule), ZERO)
        return sum((p.amount for p in self.payments), ZERO)

    @computed_field
    @property
    def balance(self) -> Decimal:
        return self.amount - self.paid_amount

    def status_on(self, today: Optional[dt.date] = None) -> PaymentStatus:
        paid = self.paid_amount
        if self.balance <= 0:
            return PaymentStatus.PAID
        if 0 < paid < self.amount:
            return PaymentStatus.PARTIAL
        if any(item.is_overdue(today) for item in self.payment_schedule):
            return PaymentStatus.OVERDUE
        return PaymentStatus.UNPAID

    @computed_field
    @property
    def status(self) -> PaymentStatus:
        return self.status_on()

    def sorted_schedule(self) -> List[PaymentScheduleItem]:
        return sorted(self.payment_schedule, key=lambda item: item.sort_order)


class InvoiceSummary(BaseModel):
    """Aggregate figures across a set of invoices."""
    invoice_count: int = 0
    total_invoiced: Money = ZERO
    total_paid: Money = ZERO
    total_outstanding: Money = ZERO
    overdue_count: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
