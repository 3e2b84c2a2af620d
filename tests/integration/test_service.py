"""
Integration tests for WorkflowService: engines + persistence + audit.
"""
import json
from datetime import date
from decimal import Decimal

import pytest

from models import (
    InvoiceSubmission, NewPayment, POStatus, PaymentStatus, PaymentTermsTemplate, PaymentTrigger,
    ReimbursementStatus, ReviewStatus, TriggerStatus,
)
from workflow.errors import ConcurrentModification, InvalidTransition, NotFound, SendError, ValidationError
from workflow.service import WorkflowService


def _advance(service, order_id, *statuses):
    order = None
    for status in statuses:
        order = service.transition(order_id, status)
    return order


@pytest.mark.integration
class TestPurchaseOrderWorkflow:
    """Purchase order lifecycle through the service."""

    def test_send_to_supplier_persists(self, service, recording_notifier, sample_order):
        service.create_purchase_order(sample_order)

        updated = service.transition(sample_order.id, "sent", note="emailed")

        assert recording_notifier.sent == [sample_order.id]
        assert updated.version == 2
        loaded = service.get_purchase_order(sample_order.id)
        assert loaded.status == POStatus.SENT
        assert [(h.status, h.note) for h in loaded.status_history] == [(POStatus.SENT, "emailed")]

    def test_invalid_transition_writes_nothing(self, service, sample_order):
        service.create_purchase_order(sample_order)

        with pytest.raises(InvalidTransition):
            service.transition(sample_order.id, "confirmed")

        loaded = service.get_purchase_order(sample_order.id)
        assert loaded.status == POStatus.DRAFT
        assert loaded.version == 1
        assert [e["action"] for e in service.db.get_audit_log("purchase_order", sample_order.id)] == ["created"]

    def test_failed_notification_writes_nothing(self, test_db, test_config, failing_notifier, sample_order):
        service = WorkflowService(test_db, notifier=failing_notifier, config=test_config)
        service.create_purchase_order(sample_order)

        with pytest.raises(SendError):
            service.transition(sample_order.id, POStatus.SENT)

        assert service.get_purchase_order(sample_order.id).status == POStatus.DRAFT

    def test_new_orders_must_start_in_draft(self, service, sample_order):
        with pytest.raises(ValidationError):
            service.create_purchase_order(sample_order.model_copy(update={"status": POStatus.SENT}))

    def test_unknown_order_raises_not_found(self, service):
        with pytest.raises(NotFound):
            service.transition("missing", "sent")

    def test_stale_writer_loses(self, service, sample_order):
        service.create_purchase_order(sample_order)
        stale = service.get_purchase_order(sample_order.id)
        service.transition(sample_order.id, POStatus.SENT)

        updated = service.controller.request_transition(stale, POStatus.CANCELLED)
        with pytest.raises(ConcurrentModification):
            service.db.save_purchase_order(updated, expected_version=stale.version)
        assert service.get_purchase_order(sample_order.id).status == POStatus.SENT

    def test_step_goes_through_transition_table(self, service, sample_order):
        service.create_purchase_order(sample_order)

        assert service.step(sample_order.id, 1).status == POStatus.SENT
        with pytest.raises(InvalidTransition):
            service.step(sample_order.id, 5)
        assert service.adjacent(sample_order.id).next == POStatus.AWAITING_INVOICE

    def test_approved_submission_changes_effective_status(self, service, sample_order):
        service.create_purchase_order(sample_order)
        _advance(service, sample_order.id, "sent", "awaiting_invoice", "invoice_received")
        service.db.upsert_submission(InvoiceSubmission(
            purchase_order_id=sample_order.id,
            review_status=ReviewStatus.APPROVED,
            submitted_total=Decimal("1000"),
        ))

        assert service.effective_status(sample_order.id) == POStatus.CONFIRMED
        assert service.get_purchase_order(sample_order.id).status == POStatus.INVOICE_RECEIVED
        assert POStatus.PRODUCTION_COMPLETE in {t.target for t in service.available_transitions(sample_order.id)}

        order = service.transition(sample_order.id, POStatus.PRODUCTION_COMPLETE)
        assert [h.status for h in order.status_history] == [
            POStatus.SENT, POStatus.AWAITING_INVOICE, POStatus.INVOICE_RECEIVED, POStatus.PRODUCTION_COMPLETE,
        ]
        last = service.db.get_audit_log("purchase_order", sample_order.id)[-1]
        assert json.loads(last["detail"]) == {
            "from": "invoice_received", "to": "production_complete", "effective_from": "confirmed",
        }

    def test_resend_to_supplier_only_writes_audit(self, service, recording_notifier, sample_order):
        service.create_purchase_order(sample_order)
        service.transition(sample_order.id, POStatus.AWAITING_INVOICE)

        order = service.resend_to_supplier(sample_order.id, actor="alice")

        assert recording_notifier.sent == [sample_order.id, sample_order.id]
        assert order.version == 2
        assert service.get_purchase_order(sample_order.id).version == 2
        last = service.db.get_audit_log("purchase_order", sample_order.id)[-1]
        assert (last["action"], last["actor"]) == ("supplier_notified", "alice")

    def test_resend_requires_awaiting_invoice(self, service, recording_notifier, sample_order):
        service.create_purchase_order(sample_order)
        with pytest.raises(ValidationError):
            service.resend_to_supplier(sample_order.id)
        assert recording_notifier.sent == []
        assert len(service.db.get_audit_log("purchase_order", sample_order.id)) == 1

    def test_failed_resend_writes_nothing(self, test_db, test_config, failing_notifier, sample_order):
        service = WorkflowService(test_db, notifier=failing_notifier, config=test_config)
        service.create_purchase_order(sample_order)
        test_db.save_purchase_order(
            sample_order.model_copy(update={"status": POStatus.AWAITING_INVOICE}), expected_version=1,
        )

        with pytest.raises(SendError):
            service.resend_to_supplier(sample_order.id)
        assert [e["action"] for e in test_db.get_audit_log("purchase_order", sample_order.id)] == [
            "created", "status_changed",
        ]


@pytest.mark.integration
class TestInvoiceWorkflow:
    """Invoices, triggers and payments through the service."""

    def test_po_status_fires_linked_invoice_triggers(self, service, sample_order, deposit_terms):
        service.create_purchase_order(sample_order)
        invoice = service.create_invoice(
            "INV-1", Decimal("1000"), deposit_terms, purchase_order_id=sample_order.id,
        )
        _advance(service, sample_order.id, "sent", "awaiting_invoice", "invoice_received", "confirmed")

        deposit, balance = service.get_invoice(invoice.id).sorted_schedule()
        assert deposit.trigger_status == TriggerStatus.TRIGGERED
        assert deposit.trigger_date == date.today()
        assert balance.trigger_status == TriggerStatus.PENDING
        actions = [e["action"] for e in service.db.get_audit_log("invoice", invoice.id)]
        assert actions == ["created", "trigger_fired"]

    def test_leaving_approved_invoice_received_fires_confirmed_trigger(self, service, sample_order, deposit_terms):
        service.create_purchase_order(sample_order)
        invoice = service.create_invoice(
            "INV-11", Decimal("1000"), deposit_terms, purchase_order_id=sample_order.id,
        )
        _advance(service, sample_order.id, "sent", "awaiting_invoice", "invoice_received")
        service.db.upsert_submission(InvoiceSubmission(
            purchase_order_id=sample_order.id,
            review_status=ReviewStatus.APPROVED,
            submitted_total=Decimal("1000"),
        ))

        service.transition(sample_order.id, POStatus.PRODUCTION_COMPLETE)

        deposit, balance = service.get_invoice(invoice.id).sorted_schedule()
        assert deposit.trigger_status == TriggerStatus.TRIGGERED
        assert balance.trigger_status == TriggerStatus.PENDING

    def test_failed_invoice_trigger_keeps_committed_transition(self, service, sample_order, deposit_terms,
                                                              monkeypatch):
        service.create_purchase_order(sample_order)
        stale = service.create_invoice("INV-12", Decimal("1000"), deposit_terms, purchase_order_id=sample_order.id)
        fresh = service.create_invoice("INV-13", Decimal("500"), deposit_terms, purchase_order_id=sample_order.id)
        _advance(service, sample_order.id, "sent", "awaiting_invoice", "invoice_received")

        save_invoice = service.db.save_invoice

        def save_or_conflict(invoice, expected_version, **kwargs):
            if invoice.id == stale.id:
                raise ConcurrentModification("invoice", invoice.id, expected_version)
            return save_invoice(invoice, expected_version, **kwargs)

        monkeypatch.setattr(service.db, "save_invoice", save_or_conflict)

        order = service.transition(sample_order.id, POStatus.CONFIRMED)

        assert order.status == POStatus.CONFIRMED
        assert service.get_purchase_order(sample_order.id).status == POStatus.CONFIRMED
        assert service.get_invoice(stale.id).sorted_schedule()[0].trigger_status == TriggerStatus.PENDING
        assert service.get_invoice(fresh.id).sorted_schedule()[0].trigger_status == TriggerStatus.TRIGGERED

    def test_invoice_from_terms_template(self, service, deposit_terms):
        terms = PaymentTermsTemplate(name="Standard 30/70", milestones=deposit_terms)
        invoice = service.create_invoice("INV-9", Decimal("2000"), terms)

        assert invoice.payment_terms_template_id == terms.id
        assert [i.amount for i in invoice.sorted_schedule()] == [Decimal("600.00"), Decimal("1400.00")]

    def test_inactive_terms_template_is_rejected(self, service, deposit_terms):
        terms = PaymentTermsTemplate(name="Old terms", milestones=deposit_terms, is_active=False)
        with pytest.raises(ValidationError):
            service.create_invoice("INV-10", Decimal("2000"), terms)

    def test_invoice_for_unknown_po_is_rejected(self, service, deposit_terms):
        with pytest.raises(NotFound):
            service.create_invoice("INV-2", Decimal("100"), deposit_terms, purchase_order_id="missing")

    def test_invoice_uses_configured_currency(self, service, test_config):
        test_config.default_currency = "AUD"
        assert service.create_invoice("INV-3", Decimal("100")).currency == "AUD"

    def test_manual_trigger_and_payment(self, service, deposit_terms):
        invoice = service.create_invoice("INV-4", Decimal("1000"), deposit_terms)
        service.fire_trigger(invoice.id, PaymentTrigger.PO_CONFIRMED, date(2024, 1, 1))

        paid = service.record_payment(
            invoice.id, NewPayment(amount=Decimal("300"), reference="WIRE-1", date=date(2024, 1, 5)),
        )

        assert paid.status == PaymentStatus.PARTIAL
        assert paid.balance == Decimal("700.00")
        assert service.get_invoice(invoice.id).sorted_schedule()[0].is_paid

    def test_payment_attachments_are_stored(self, service, test_config):
        invoice = service.create_invoice("INV-5", Decimal("100"))

        paid = service.record_payment(
            invoice.id,
            NewPayment(amount=Decimal("100"), reference="WIRE-2"),
            files=[("slip.pdf", b"%PDF-1.4 bank slip")],
        )

        ref = paid.payments[0].attachments[0]
        assert ref.name == "slip.pdf"
        assert (test_config.attachments_dir / ref.storage_path).read_bytes() == b"%PDF-1.4 bank slip"

    def test_rejected_payment_stores_no_attachment(self, service, test_config):
        invoice = service.create_invoice("INV-6", Decimal("100"))

        with pytest.raises(ValidationError):
            service.record_payment(
                invoice.id,
                NewPayment(amount=Decimal("500"), reference="WIRE-3"),
                files=[("slip.pdf", b"data")],
            )

        assert list(test_config.attachments_dir.rglob("*.pdf")) == []
        assert service.get_invoice(invoice.id).version == 1

    def test_invoice_summary(self, service):
        service.create_invoice("INV-7", Decimal("100"))
        invoice = service.create_invoice("INV-8", Decimal("50"))
        service.record_payment(invoice.id, NewPayment(amount=Decimal("50"), reference="WIRE-4"))

        summary = service.invoice_summary()
        assert summary.invoice_count == 2
        assert summary.total_paid == Decimal("50.00")
        assert summary.total_outstanding == Decimal("100.00")


@pytest.mark.integration
class TestLossWorkflow:
    """Inventory losses and reimbursements through the service."""

    def test_reimbursement_lifecycle(self, service, sample_loss):
        service.create_loss(sample_loss)

        service.open_claim(sample_loss.id, "CASE-1")
        partial = service.record_reimbursement(sample_loss.id, Decimal("60"), reference="CASE-1")

        assert partial.reimbursement_status == ReimbursementStatus.PARTIAL
        assert partial.net_loss == Decimal("40.00")
        assert partial.version == 3
        actions = [e["action"] for e in service.db.get_audit_log("inventory_loss", sample_loss.id)]
        assert actions == ["created", "claim_opened", "reimbursement_recorded"]

    def test_denied_claim(self, service, sample_loss):
        service.create_loss(sample_loss)
        denied = service.deny_reimbursement(sample_loss.id, "CASE-2")
        assert service.get_loss(sample_loss.id).reimbursement_status == ReimbursementStatus.DENIED
        assert denied.net_loss == Decimal("100.00")

    def test_over_reimbursement_writes_nothing(self, service, sample_loss):
        service.create_loss(sample_loss)
        with pytest.raises(ValidationError):
            service.record_reimbursement(sample_loss.id, Decimal("100.01"))
        assert service.get_loss(sample_loss.id).version == 1

    def test_loss_summary(self, service, sample_loss):
        service.create_loss(sample_loss)
        service.record_reimbursement(sample_loss.id, Decimal("60"))

        summary = service.loss_summary()
        assert summary.total_cost == Decimal("100.00")
        assert summary.total_net_loss == Decimal("40.00")
        assert summary.pending_reimbursements == 1

    @pytest.mark.parametrize("update", [
        {"reimbursement_amount": Decimal("500")},
        {"reimbursement_status": ReimbursementStatus.COMPLETE},
        {"reimbursement_status": ReimbursementStatus.PENDING},
    ])
    def test_new_losses_start_unreimbursed(self, service, sample_loss, update):
        with pytest.raises(ValidationError):
            service.create_loss(sample_loss.model_copy(update=update))
        assert service.db.get_loss(sample_loss.id) is None
