"""
Integration tests for database operations.
"""
import json
from decimal import Decimal

import pytest

from models import (
    InvoiceSubmission, POStatus, ReimbursementStatus, ReviewStatus, StatusHistoryEntry,
)
from workflow import milestones
from workflow.errors import ConcurrentModification, NotFound


@pytest.mark.integration
class TestDatabase:
    """Integration tests for Database class."""

    def test_insert_and_get_purchase_order(self, test_db, sample_order):
        stored = test_db.insert_purchase_order(sample_order)

        assert stored.version == 1
        loaded = test_db.get_purchase_order(sample_order.id)
        assert loaded is not None
        assert loaded.version == 1
        assert loaded.po_number == "PO-2024-001"
        assert loaded.line_items[1].subtotal == Decimal("500.00")
        assert loaded.total == Decimal("1000.00")

    def test_get_missing_returns_none(self, test_db):
        assert test_db.get_purchase_order("missing") is None
        assert test_db.get_invoice("missing") is None
        assert test_db.get_loss("missing") is None

    def test_save_bumps_version(self, test_db, sample_order):
        stored = test_db.insert_purchase_order(sample_order)
        changed = stored.model_copy(update={
            "status": POStatus.SENT,
            "status_history": [StatusHistoryEntry(status=POStatus.SENT)],
        })

        saved = test_db.save_purchase_order(changed, expected_version=stored.version)

        assert saved.version == 2
        loaded = test_db.get_purchase_order(sample_order.id)
        assert loaded.status == POStatus.SENT
        assert len(loaded.status_history) == 1

    def test_stale_version_raises_concurrent_modification(self, test_db, sample_order):
        stored = test_db.insert_purchase_order(sample_order)
        first = stored.model_copy(update={"status": POStatus.SENT})
        second = stored.model_copy(update={"status": POStatus.CANCELLED})

        test_db.save_purchase_order(first, expected_version=stored.version)
        with pytest.raises(ConcurrentModification) as exc_info:
            test_db.save_purchase_order(second, expected_version=stored.version)

        assert exc_info.value.expected_version == 1
        assert test_db.get_purchase_order(sample_order.id).status == POStatus.SENT

    def test_save_unknown_entity_raises_not_found(self, test_db, sample_order):
        with pytest.raises(NotFound):
            test_db.save_purchase_order(sample_order, expected_version=1)

    def test_list_purchase_orders_by_status(self, test_db, sample_order):
        test_db.insert_purchase_order(sample_order)
        other = sample_order.model_copy(update={"id": "other-po", "po_number": "PO-2024-002"})
        stored = test_db.insert_purchase_order(other)
        test_db.save_purchase_order(stored.model_copy(update={"status": POStatus.CANCELLED}), 1)

        assert [o.po_number for o in test_db.list_purchase_orders()] == ["PO-2024-001", "PO-2024-002"]
        assert [o.po_number for o in test_db.list_purchase_orders("cancelled")] == ["PO-2024-002"]

    def test_invoice_round_trip_keeps_schedule(self, test_db, deposit_terms):
        invoice = milestones.create_invoice("INV-1", Decimal("1000"), deposit_terms, purchase_order_id="po-1")
        test_db.insert_invoice(invoice)

        loaded = test_db.get_invoice(invoice.id)
        assert [i.amount for i in loaded.sorted_schedule()] == [Decimal("300.00"), Decimal("700.00")]
        assert loaded.balance == Decimal("1000.00")
        assert [i.id for i in test_db.list_invoices(purchase_order_id="po-1")] == [invoice.id]
        assert test_db.list_invoices(purchase_order_id="po-2") == []

    def test_list_losses_by_reimbursement_status(self, test_db, sample_loss):
        test_db.insert_loss(sample_loss)
        assert len(test_db.list_losses(ReimbursementStatus.NONE.value)) == 1
        assert test_db.list_losses(ReimbursementStatus.PENDING.value) == []

    def test_submission_upsert_and_get(self, test_db):
        assert test_db.get("po-1") is None

        submission = InvoiceSubmission(purchase_order_id="po-1", submitted_total=Decimal("100"))
        test_db.upsert_submission(submission)
        test_db.upsert_submission(submission.model_copy(update={"review_status": ReviewStatus.APPROVED}))

        assert test_db.get_submission("po-1").review_status == ReviewStatus.APPROVED


@pytest.mark.integration
class TestAuditLog:
    """Every write leaves an audit entry in the same transaction."""

    def test_create_and_update_are_audited(self, test_db, sample_order):
        stored = test_db.insert_purchase_order(sample_order, actor="alice")
        test_db.save_purchase_order(
            stored.model_copy(update={"status": POStatus.SENT}),
            expected_version=1,
            actor="alice",
            detail={"from": "draft", "to": "sent"},
        )

        log = test_db.get_audit_log("purchase_order", sample_order.id)
        assert [entry["action"] for entry in log] == ["created", "status_changed"]
        assert all(entry["actor"] == "alice" for entry in log)
        assert json.loads(log[1]["detail"]) == {"from": "draft", "to": "sent"}

    def test_failed_write_is_not_audited(self, test_db, sample_order):
        stored = test_db.insert_purchase_order(sample_order)
        test_db.save_purchase_order(stored, expected_version=1)
        with pytest.raises(ConcurrentModification):
            test_db.save_purchase_order(stored, expected_version=1)

        assert len(test_db.get_audit_log("purchase_order", sample_order.id)) == 2

    def test_log_audit_leaves_entity_unchanged(self, test_db, sample_order):
        test_db.insert_purchase_order(sample_order)
        test_db.log_audit("purchase_order", sample_order.id, "supplier_notified", actor="bob",
                          detail={"resend": True})

        log = test_db.get_audit_log("purchase_order", sample_order.id)
        assert [(entry["action"], entry["actor"]) for entry in log] == [
            ("created", "system"), ("supplier_notified", "bob"),
        ]
        assert json.loads(log[1]["detail"]) == {"resend": True}
        assert test_db.get_purchase_order(sample_order.id).version == 1

    def test_recent_audit_log(self, test_db, sample_order, sample_loss):
        test_db.insert_purchase_order(sample_order)
        test_db.insert_loss(sample_loss)

        recent = test_db.get_recent_audit_log(limit=10)
        assert {entry["entity_type"] for entry in recent} == {"purchase_order", "inventory_loss"}
