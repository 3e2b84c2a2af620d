"""
Workflow service: persisted read-modify-write around the pure engines.

Each public method loads one entity, runs the relevant engine on an
in-memory copy, and saves it back under the version it read. A failed
validation, transition or supplier notification raises before anything is
written; a concurrent writer surfaces as ConcurrentModification.

Moving a PO into confirmed or received also fires the matching milestone
trigger on every invoice linked to that PO. Each invoice is saved in its own
write after the PO write has committed; an invoice that fails to update is
logged and skipped, and the committed transition is still returned.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Union

from config import Config
from models.inventory_loss import InventoryLoss, InventoryLossSummary, ReimbursementStatus
from models.invoice import (
    Invoice, InvoiceSummary, NewPayment, PaymentMilestone, PaymentTermsTemplate, PaymentTrigger,
)
from models.purchase_order import POStatus, PurchaseOrder
from models.submission import InvoiceSubmission
from . import milestones, reimbursement
from .attachments import AttachmentStore, LocalAttachmentStore
from .controller import Adjacent, StatusTransitionController
from .database import Database
from .effective_status import available_transitions, resolve
from .errors import NotFound, ValidationError, WorkflowError
from .notifier import SupplierNotifier, build_notifier
from .transitions import Transition

logger = logging.getLogger(__name__)


class WorkflowService:
    """
    Usage:
        service = WorkflowService.from_config(Config())
        order = service.transition(order_id, "sent")
    """

    def __init__(
        self,
        db: Database,
        notifier: Optional[SupplierNotifier] = None,
        attachments: Optional[AttachmentStore] = None,
        config: Optional[Config] = None,
    ) -> None:
        self.db = db
        self.config = config or Config()
        self.controller = StatusTransitionController(notifier)
        self.attachments = attachments

    @classmethod
    def from_config(cls, config: Config) -> "WorkflowService":
        config.ensure_output_dir()
        return cls(
            db=Database(config.db_path),
            notifier=build_notifier(config),
            attachments=LocalAttachmentStore(config.attachments_dir),
            config=config,
        )

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def create_purchase_order(self, order: PurchaseOrder, actor: str = "system") -> PurchaseOrder:
        if order.status != POStatus.DRAFT or order.status_history:
            raise ValidationError("New purchase orders start in draft with no history", field="status")
        return self.db.insert_purchase_order(order, actor=actor)

    def get_purchase_order(self, order_id: str) -> PurchaseOrder:
        order = self.db.get_purchase_order(order_id)
        if order is None:
            raise NotFound(f"Purchase order not found: {order_id}")
        return order

    def get_submission(self, order_id: str) -> Optional[InvoiceSubmission]:
        return self.db.get(order_id)

    def effective_status(self, order_id: str) -> POStatus:
        order = self.get_purchase_order(order_id)
        return resolve(order, self.get_submission(order_id))

    def available_transitions(self, order_id: str) -> tuple[Transition, ...]:
        order = self.get_purchase_order(order_id)
        return available_transitions(order, self.get_submission(order_id))

    def adjacent(self, order_id: str) -> Adjacent:
        order = self.get_purchase_order(order_id)
        return self.controller.compute_adjacent(order, self.get_submission(order_id))

    def transition(
        self,
        order_id: str,
        target: Union[POStatus, str],
        note: Optional[str] = None,
        actor: str = "system",
    ) -> PurchaseOrder:
        order = self.get_purchase_order(order_id)
        submission = self.get_submission(order_id)
        updated = self.controller.request_transition(order, target, note=note, submission=submission)
        return self._commit_transition(order, updated, submission, actor)

    def step(
        self,
        order_id: str,
        step: Union[int, POStatus, str],
        note: Optional[str] = None,
        actor: str = "system",
    ) -> PurchaseOrder:
        order = self.get_purchase_order(order_id)
        submission = self.get_submission(order_id)
        updated = self.controller.request_step(order, step, note=note, submission=submission)
        return self._commit_transition(order, updated, submission, actor)

    def _commit_transition(
        self,
        order: PurchaseOrder,
        updated: PurchaseOrder,
        submission: Optional[InvoiceSubmission],
        actor: str,
    ) -> PurchaseOrder:
        effective = resolve(order, submission)
        detail = {"from": order.status.value, "to": updated.status.value}
        if effective != order.status:
            detail["effective_from"] = effective.value
        saved = self.db.save_purchase_order(
            updated,
            expected_version=order.version,
            action="status_changed",
            actor=actor,
            detail=detail,
        )
        entered = [updated.status]
        if effective != order.status:
            entered.insert(0, effective)
        for status in entered:
            trigger = milestones.TRIGGER_FOR_STATUS.get(status)
            if trigger is not None:
                self._fire_linked_triggers(order, trigger, actor)
        return saved

    def _fire_linked_triggers(self, order: PurchaseOrder, trigger: PaymentTrigger, actor: str) -> None:
        # The PO write has committed; one failing invoice must not block the rest.
        for invoice in self.db.list_invoices(purchase_order_id=order.id):
            try:
                self.fire_trigger(invoice.id, trigger, actor=actor)
            except WorkflowError as e:
                logger.error("Failed to fire %s on invoice %s for PO %s: %s",
                             trigger.value, invoice.invoice_number, order.po_number, e, exc_info=True)

    def resend_to_supplier(self, order_id: str, actor: str = "system") -> PurchaseOrder:
        """Re-send the supplier notification; the order itself is not changed."""
        order = self.get_purchase_order(order_id)
        self.controller.resend_notification(order, self.get_submission(order_id))
        self.db.log_audit(
            "purchase_order", order.id, "supplier_notified", actor=actor,
            detail={"status": order.status.value, "resend": True},
        )
        return order

    # ------------------------------------------------------------------
    # Invoices & payments
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        invoice_number: str,
        amount: Decimal,
        milestone_terms: Union[PaymentTermsTemplate, Iterable[PaymentMilestone], None] = None,
        invoice_date: Optional[date] = None,
        purchase_order_id: Optional[str] = None,
        actor: str = "system",
        **fields,
    ) -> Invoice:
        """
        milestone_terms is either a saved PaymentTermsTemplate or an ad-hoc list
        of milestones. Inactive templates are refused.
        """
        if purchase_order_id is not None:
            self.get_purchase_order(purchase_order_id)
        if isinstance(milestone_terms, PaymentTermsTemplate):
            if not milestone_terms.is_active:
                raise ValidationError(
                    f"Payment terms '{milestone_terms.name}' are inactive",
                    field="payment_terms_template_id",
                )
            fields["payment_terms_template_id"] = milestone_terms.id
            milestone_terms = milestone_terms.milestones
        invoice = milestones.create_invoice(
            invoice_number,
            amount,
            list(milestone_terms or []),
            invoice_date=invoice_date,
            tolerance=self.config.percentage_tolerance,
            purchase_order_id=purchase_order_id,
            currency=fields.pop("currency", self.config.default_currency),
            **fields,
        )
        return self.db.insert_invoice(invoice, actor=actor)

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.db.get_invoice(invoice_id)
        if invoice is None:
            raise NotFound(f"Invoice not found: {invoice_id}")
        return invoice

    def fire_trigger(
        self,
        invoice_id: str,
        trigger: Union[PaymentTrigger, str],
        when: Optional[date] = None,
        actor: str = "system",
    ) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        updated = milestones.fire_trigger(invoice, PaymentTrigger(trigger), when)
        return self.db.save_invoice(
            updated,
            expected_version=invoice.version,
            action="trigger_fired",
            actor=actor,
            detail={"trigger": PaymentTrigger(trigger).value},
        )

    def record_payment(
        self,
        invoice_id: str,
        payment: NewPayment,
        files: Iterable[tuple[str, bytes]] = (),
        actor: str = "system",
    ) -> Invoice:
        """
        Record a payment; files are (name, bytes) pairs stored as attachments.
        The payment is validated before any attachment is written.
        """
        invoice = self.get_invoice(invoice_id)
        milestones.validate_payment(invoice, payment)

        files = list(files)
        if files:
            if self.attachments is None:
                raise ValidationError("No attachment store configured", field="attachments")
            refs = [self.attachments.put(data, name) for name, data in files]
            payment = payment.model_copy(update={"attachments": [*payment.attachments, *refs]})

        updated = milestones.record_payment(invoice, payment)
        return self.db.save_invoice(
            updated,
            expected_version=invoice.version,
            action="payment_recorded",
            actor=actor,
            detail={"amount": str(updated.payments[-1].amount),
                    "reference": updated.payments[-1].reference},
        )

    def invoice_summary(self, today: Optional[date] = None) -> InvoiceSummary:
        return milestones.summarize_invoices(self.db.list_invoices(), today)

    # ------------------------------------------------------------------
    # Inventory losses & reimbursements
    # ------------------------------------------------------------------

    def create_loss(self, loss: InventoryLoss, actor: str = "system") -> InventoryLoss:
        if loss.reimbursement_history or loss.reimbursement_amount or loss.reimbursement_status != ReimbursementStatus.NONE:
            raise ValidationError(
                "New inventory losses start unreimbursed; use the reimbursement operations",
                field="reimbursement_status",
            )
        return self.db.insert_loss(loss, actor=actor)

    def get_loss(self, loss_id: str) -> InventoryLoss:
        loss = self.db.get_loss(loss_id)
        if loss is None:
            raise NotFound(f"Inventory loss not found: {loss_id}")
        return loss

    def record_reimbursement(
        self,
        loss_id: str,
        amount: Decimal,
        reimbursement_date: Optional[date] = None,
        reference: Optional[str] = None,
        actor: str = "system",
    ) -> InventoryLoss:
        loss = self.get_loss(loss_id)
        updated = reimbursement.record_reimbursement(loss, amount, reimbursement_date, reference)
        return self.db.save_loss(
            updated,
            expected_version=loss.version,
            action="reimbursement_recorded",
            actor=actor,
            detail={"amount": str(updated.reimbursement_amount),
                    "status": updated.reimbursement_status.value},
        )

    def open_claim(self, loss_id: str, claim_reference: str, actor: str = "system") -> InventoryLoss:
        loss = self.get_loss(loss_id)
        updated = reimbursement.open_claim(loss, claim_reference)
        return self.db.save_loss(
            updated,
            expected_version=loss.version,
            action="claim_opened",
            actor=actor,
            detail={"claim_reference": updated.claim_reference},
        )

    def deny_reimbursement(
        self,
        loss_id: str,
        reference: Optional[str] = None,
        actor: str = "system",
    ) -> InventoryLoss:
        loss = self.get_loss(loss_id)
        updated = reimbursement.deny_reimbursement(loss, reference)
        return self.db.save_loss(
            updated,
            expected_version=loss.version,
            action="reimbursement_denied",
            actor=actor,
            detail={"reference": reference},
        )

    def loss_summary(self) -> InventoryLossSummary:
        return reimbursement.summarize_losses(self.db.list_losses())
