from .money import Money, to_money
from .purchase_order import PurchaseOrder, POLineItem, POStatus, StatusHistoryEntry
from .submission import InvoiceSubmission, ReviewStatus
from .invoice import (
    AttachmentRef, Invoice, InvoiceSummary, NewPayment, Payment, PaymentAllocation, PaymentMethod,
    PaymentMilestone, PaymentScheduleItem, PaymentStatus, PaymentTermsTemplate,
    PaymentTrigger, TriggerStatus,
)
from .inventory_loss import (
    InventoryLoss, InventoryLossSummary, LossType, ReimbursementEvent, ReimbursementStatus,
)

__all__ = [
    "Money", "to_money",
    "PurchaseOrder", "POLineItem", "POStatus", "StatusHistoryEntry",
    "InvoiceSubmission", "ReviewStatus",
    "AttachmentRef", "Invoice", "InvoiceSummary", "NewPayment", "Payment", "PaymentAllocation", "PaymentMethod",
    "PaymentMilestone", "PaymentScheduleItem", "PaymentStatus", "PaymentTermsTemplate",
    "PaymentTrigger", "TriggerStatus",
    "InventoryLoss", "InventoryLossSummary", "LossType", "ReimbursementEvent",
    "ReimbursementStatus",
]
