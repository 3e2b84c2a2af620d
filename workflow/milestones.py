"""
Payment milestone engine.

Builds an invoice's payment schedule from a terms template, fires milestone
triggers, and allocates incoming payments across milestones.

Allocation is FIFO by sort_order: each payment fills the earliest unpaid
milestone first and spills into the next one. Every function here returns a
new Invoice and leaves its input untouched, so a ValidationError part-way
through can never leave a payment half-applied.

Invoice-level paid_amount / balance / status are computed fields on the
Invoice model itself (see models/invoice.py).
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from config import DEFAULT_PERCENTAGE_TOLERANCE
from models.invoice import (
    Invoice, InvoiceSummary, NewPayment, Payment, PaymentAllocation, PaymentMilestone,
    PaymentScheduleItem, PaymentStatus, PaymentTrigger, TriggerStatus,
)
from models.money import ZERO, to_money
from models.purchase_order import POStatus
from .errors import ValidationError

logger = logging.getLogger(__name__)

# PO statuses whose arrival fires an invoice milestone trigger
TRIGGER_FOR_STATUS: dict[POStatus, PaymentTrigger] = {
    POStatus.CONFIRMED: PaymentTrigger.PO_CONFIRMED,
    POStatus.RECEIVED: PaymentTrigger.GOODS_RECEIVED,
}


# ------------------------------------------------------------------
# Schedule construction
# ------------------------------------------------------------------

def check_percentages(
    percentages: Iterable[float],
    tolerance: float = DEFAULT_PERCENTAGE_TOLERANCE,
) -> None:
    """Raise ValidationError unless the percentages add up to 100 (± tolerance)."""
    total = sum(percentages)
    if abs(total - 100) > tolerance:
        raise ValidationError(
            f"Milestone percentages add up to {total:g}%, expected 100%",
            field="payment_schedule",
        )


def build_schedule(
    amount: Decimal,
    milestones: Sequence[PaymentMilestone],
    invoice_date: date,
    tolerance: float = DEFAULT_PERCENTAGE_TOLERANCE,
) -> list[PaymentScheduleItem]:
    """
    Turn a terms template into schedule items for an invoice of `amount`.

    Amounts are rounded to cents with the last milestone taking the rounding
    remainder, so the item amounts always add up to the invoice amount.
    Upfront milestones are triggered on the invoice date.
    """
    if not milestones:
        return []
    check_percentages((m.percentage for m in milestones), tolerance)

    amount = to_money(amount)
    items: list[PaymentScheduleItem] = []
    allocated = ZERO
    for idx, milestone in enumerate(milestones):
        if idx == len(milestones) - 1:
            item_amount = amount - allocated
        else:
            item_amount = to_money(amount * Decimal(str(milestone.percentage)) / 100)
        allocated += item_amount

        item = PaymentScheduleItem(
            sort_order=idx + 1,
            milestone_name=milestone.name,
            percentage=milestone.percentage,
            amount=item_amount,
            trigger=milestone.trigger,
            offset_days=milestone.offset_days,
        )
        if milestone.trigger == PaymentTrigger.UPFRONT:
            item.trigger_status = TriggerStatus.TRIGGERED
            item.trigger_date = invoice_date
            item.due_date = invoice_date + timedelta(days=milestone.offset_days)
        items.append(item)
    return items


def create_invoice(
    invoice_number: str,
    amount: Decimal,
    milestones: Optional[Sequence[PaymentMilestone]] = None,
    invoice_date: Optional[date] = None,
    tolerance: float = DEFAULT_PERCENTAGE_TOLERANCE,
    **fields,
) -> Invoice:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Invoice amount must be greater than zero", field="amount")
    invoice_date = invoice_date or date.today()
    schedule = build_schedule(amount, milestones or [], invoice_date, tolerance)
    return Invoice(
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        amount=amount,
        payment_schedule=schedule,
        **fields,
    )


# ------------------------------------------------------------------
# Trigger events
# ------------------------------------------------------------------

def fire_trigger(
    invoice: Invoice,
    trigger: PaymentTrigger,
    when: Optional[date] = None,
) -> Invoice:
    """
    Mark every pending milestone keyed on `trigger` as triggered and stamp
    its trigger and due dates. Already-triggered milestones keep their
    original dates, so firing the same event twice is harmless.
    """
    trigger = PaymentTrigger(trigger)
    when = when or date.today()
    updated = invoice.model_copy(deep=True)
    fired = 0
    for item in updated.payment_schedule:
        if item.trigger != trigger or item.trigger_status != TriggerStatus.PENDING:
            continue
        item.trigger_status = TriggerStatus.TRIGGERED
        item.trigger_date = when
        item.due_date = when + timedelta(days=item.offset_days)
        fired += 1

    if fired:
        logger.info("Invoice %s: %s fired %d milestone(s)",
                    invoice.invoice_number, trigger.value, fired)
    return updated


# ------------------------------------------------------------------
# Payments
# ------------------------------------------------------------------

def validate_payment(invoice: Invoice, payment: NewPayment) -> Decimal:
    amount = to_money(payment.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero", field="amount")
    if amount > invoice.balance:
        raise ValidationError(
            f"Payment of {amount} exceeds the outstanding balance of {invoice.balance}",
            field="amount",
        )
    if not payment.reference or not payment.reference.strip():
        raise ValidationError("A payment reference is required", field="reference")
    return amount


def record_payment(invoice: Invoice, payment: NewPayment) -> Invoice:
    """
    Apply a payment to an invoice and return the updated copy.

    With a schedule, the amount is spread FIFO over milestones by sort_order;
    paid_date is stamped on each milestone the payment completes. Without a
    schedule it counts directly towards the invoice. A Payment record is
    appended in both cases.
    """
    amount = validate_payment(invoice, payment)
    updated = invoice.model_copy(deep=True)

    remaining = amount
    allocations: list[PaymentAllocation] = []
    for item in updated.sorted_schedule():
        if remaining <= 0:
            break
        outstanding = item.amount - item.paid_amount
        if outstanding <= 0:
            continue
        applied = min(remaining, outstanding)
        item.paid_amount = item.paid_amount + applied
        if item.is_paid:
            item.paid_date = payment.date
        remaining -= applied
        allocations.append(PaymentAllocation(schedule_item_id=item.id, amount=applied))

    if updated.payment_schedule and remaining > 0:
        # Schedule amounts do not cover the invoice amount; refuse rather than drop money
        raise ValidationError(
            f"Payment of {amount} exceeds the outstanding milestone amounts",
            field="amount",
        )

    record = Payment(
        amount=amount,
        date=payment.date,
        method=payment.method,
        reference=payment.reference.strip(),
        notes=payment.notes,
        attachments=list(payment.attachments),
        allocations=allocations,
    )
    updated.payments = [*updated.payments, record]

    logger.info("Invoice %s: recorded %s (%s), balance now %s",
                invoice.invoice_number, amount, record.reference, updated.balance)
    return updated


# ------------------------------------------------------------------
# Reporting
# ------------------------------------------------------------------

def summarize_invoices(invoices: Iterable[Invoice], today: Optional[date] = None) -> InvoiceSummary:
    summary = InvoiceSummary()
    by_status: dict[str, int] = {s.value: 0 for s in PaymentStatus}
    for invoice in invoices:
        status = invoice.status_on(today)
        by_status[status.value] += 1
        summary.invoice_count += 1
        summary.total_invoiced += invoice.amount
        summary.total_paid += invoice.paid_amount
        summary.total_outstanding += max(ZERO, invoice.balance)
        if status == PaymentStatus.OVERDUE:
            summary.overdue_count += 1
    summary.by_status = by_status
    return summary
