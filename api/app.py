"""
Purchase Order Workflow — FastAPI backend.

Thin HTTP surface over WorkflowService. Every mutation goes through the same
engines as the CLI, so the transition table, milestone allocation, and
reimbursement rules apply identically here.

All state lives in the SQLite database at DB_PATH (output/workflow.db).

Endpoints
---------
  GET   /api/health                                  → liveness probe
  POST  /api/purchase-orders                         → create a draft PO
  GET   /api/purchase-orders                         → list POs (supports ?status=)
  GET   /api/purchase-orders/{id}                    → PO + effective status + next steps
  POST  /api/purchase-orders/{id}/transition         → request a status change
  POST  /api/purchase-orders/{id}/step               → stepper click (index or status)
  POST  /api/purchase-orders/{id}/resend             → re-notify supplier (awaiting_invoice only)
  PUT   /api/purchase-orders/{id}/submission         → review workflow posts its outcome
  GET   /api/purchase-orders/{id}/audit              → audit trail
  POST  /api/invoices                                → create invoice (+ milestone schedule)
  GET   /api/invoices/{id}                           → invoice with schedule and payments
  POST  /api/invoices/{id}/triggers                  → fire a milestone trigger
  POST  /api/invoices/{id}/payments                  → record a payment
  GET   /api/invoices-summary                        → aggregate invoice figures
  POST  /api/losses                                  → record an inventory loss
  GET   /api/losses                                  → list losses (supports ?reimbursement_status=)
  POST  /api/losses/{id}/reimbursement               → record cumulative reimbursement
  POST  /api/losses/{id}/claim                       → mark claim filed (pending)
  POST  /api/losses/{id}/deny                        → mark claim denied
  GET   /api/losses-summary                          → aggregate loss figures

Error mapping
-------------
  NotFound                              → 404
  InvalidTransition, ConcurrentModification → 409
  ValidationError                       → 422
  SendError                             → 502
"""
import datetime as dt
import logging
from decimal import Decimal
from typing import List, Optional, Union

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from config import Config
from models import (
    InventoryLoss, InvoiceSubmission, NewPayment, PaymentMilestone, PaymentTrigger,
    POStatus, PurchaseOrder,
)
from workflow import (
    ConcurrentModification, InvalidTransition, NotFound, SendError, ValidationError,
    WorkflowError, WorkflowService,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Service (lazy — opened on first request so importing the app has no side
# effects on disk)
# ---------------------------------------------------------------------------
_service: Optional[WorkflowService] = None


def get_service() -> WorkflowService:
    global _service
    if _service is None:
        _service = WorkflowService.from_config(Config())
    return _service


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Purchase Order Workflow", redoc_url=None)

_STATUS_CODES: dict[type, int] = {
    NotFound:               404,
    InvalidTransition:      409,
    ConcurrentModification: 409,
    ValidationError:        422,
    SendError:              502,
}


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = _STATUS_CODES.get(type(exc), 400)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    return JSONResponse(status_code=status_code, content=body)


# ── Request models ───────────────────────────────────────────────────────────

class TransitionRequest(BaseModel):
    status: str
    note: Optional[str] = None
    actor: str = "api"


class StepRequest(BaseModel):
    step: Union[int, str]
    note: Optional[str] = None
    actor: str = "api"

    @field_validator("step", mode="before")
    @classmethod
    def _digits_are_indexes(cls, value):
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return value


class ResendRequest(BaseModel):
    actor: str = "api"


class InvoiceCreate(BaseModel):
    invoice_number: str
    amount: Decimal
    invoice_date: Optional[dt.date] = None
    purchase_order_id: Optional[str] = None
    description: Optional[str] = None
    milestones: List[PaymentMilestone] = Field(default_factory=list)


class TriggerRequest(BaseModel):
    trigger: PaymentTrigger
    date: Optional[dt.date] = None


class ReimbursementRequest(BaseModel):
    amount: Decimal
    date: Optional[dt.date] = None
    reference: Optional[str] = None


class ClaimRequest(BaseModel):
    claim_reference: str


class DenyRequest(BaseModel):
    reference: Optional[str] = None


def _order_view(service: WorkflowService, order: PurchaseOrder) -> dict:
    submission = service.get_submission(order.id)
    adjacent = service.controller.compute_adjacent(order, submission)
    return {
        **order.model_dump(mode="json"),
        "effective_status": service.effective_status(order.id).value,
        "available_transitions": [
            {
                "target": t.target.value,
                "direction": t.direction.value,
                "label": t.label,
                "primary": t.primary,
            }
            for t in service.available_transitions(order.id)
        ],
        "previous_step": adjacent.previous.value if adjacent.previous else None,
        "next_step": adjacent.next.value if adjacent.next else None,
    }


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    service = get_service()
    return {
        "status": "ok",
        "db_path": str(service.db.db_path),
        "db_exists": service.db.db_path.exists(),
        "supplier_notifications": bool(service.config.supplier_notify_url),
    }


# ── Purchase orders ──────────────────────────────────────────────────────────

@app.post("/api/purchase-orders", status_code=201)
def create_purchase_order(order: PurchaseOrder):
    service = get_service()
    created = service.create_purchase_order(order, actor="api")
    return _order_view(service, created)


@app.get("/api/purchase-orders")
def list_purchase_orders(status: Optional[POStatus] = Query(default=None)):
    orders = get_service().db.list_purchase_orders(status.value if status else None)
    return [o.model_dump(mode="json") for o in orders]


@app.get("/api/purchase-orders/{order_id}")
def get_purchase_order(order_id: str):
    service = get_service()
    return _order_view(service, service.get_purchase_order(order_id))


@app.post("/api/purchase-orders/{order_id}/transition")
def transition_purchase_order(order_id: str, body: TransitionRequest):
    service = get_service()
    order = service.transition(order_id, body.status, note=body.note, actor=body.actor)
    return _order_view(service, order)


@app.post("/api/purchase-orders/{order_id}/step")
def step_purchase_order(order_id: str, body: StepRequest):
    service = get_service()
    order = service.step(order_id, body.step, note=body.note, actor=body.actor)
    return _order_view(service, order)


@app.post("/api/purchase-orders/{order_id}/resend")
def resend_purchase_order(order_id: str, body: Optional[ResendRequest] = None):
    service = get_service()
    order = service.resend_to_supplier(order_id, actor=body.actor if body else "api")
    return _order_view(service, order)


@app.put("/api/purchase-orders/{order_id}/submission")
def put_submission(order_id: str, submission: InvoiceSubmission):
    service = get_service()
    service.get_purchase_order(order_id)
    if submission.purchase_order_id != order_id:
        raise ValidationError("Submission belongs to a different purchase order",
                              field="purchase_order_id")
    service.db.upsert_submission(submission)
    return {"effective_status": service.effective_status(order_id).value}


@app.get("/api/purchase-orders/{order_id}/audit")
def purchase_order_audit(order_id: str):
    return get_service().db.get_audit_log("purchase_order", order_id)


# ── Invoices & payments ──────────────────────────────────────────────────────

@app.post("/api/invoices", status_code=201)
def create_invoice(body: InvoiceCreate):
    invoice = get_service().create_invoice(
        body.invoice_number,
        body.amount,
        body.milestones,
        invoice_date=body.invoice_date,
        purchase_order_id=body.purchase_order_id,
        actor="api",
        description=body.description,
    )
    return invoice.model_dump(mode="json")


@app.get("/api/invoices/{invoice_id}")
def get_invoice(invoice_id: str):
    return get_service().get_invoice(invoice_id).model_dump(mode="json")


@app.post("/api/invoices/{invoice_id}/triggers")
def fire_trigger(invoice_id: str, body: TriggerRequest):
    invoice = get_service().fire_trigger(invoice_id, body.trigger, body.date, actor="api")
    return invoice.model_dump(mode="json")


@app.post("/api/invoices/{invoice_id}/payments", status_code=201)
def record_payment(invoice_id: str, payment: NewPayment):
    invoice = get_service().record_payment(invoice_id, payment, actor="api")
    return invoice.model_dump(mode="json")


@app.get("/api/invoices-summary")
def invoice_summary():
    return get_service().invoice_summary().model_dump(mode="json")


# ── Inventory losses ─────────────────────────────────────────────────────────

@app.post("/api/losses", status_code=201)
def create_loss(loss: InventoryLoss):
    return get_service().create_loss(loss, actor="api").model_dump(mode="json")


@app.get("/api/losses")
def list_losses(reimbursement_status: Optional[str] = Query(default=None)):
    losses = get_service().db.list_losses(reimbursement_status or None)
    return [loss.model_dump(mode="json") for loss in losses]


@app.post("/api/losses/{loss_id}/reimbursement")
def record_reimbursement(loss_id: str, body: ReimbursementRequest):
    loss = get_service().record_reimbursement(
        loss_id, body.amount, body.date, body.reference, actor="api",
    )
    return loss.model_dump(mode="json")


@app.post("/api/losses/{loss_id}/claim")
def open_claim(loss_id: str, body: ClaimRequest):
    return get_service().open_claim(loss_id, body.claim_reference, actor="api").model_dump(mode="json")


@app.post("/api/losses/{loss_id}/deny")
def deny_reimbursement(loss_id: str, body: DenyRequest):
    return get_service().deny_reimbursement(loss_id, body.reference, actor="api").model_dump(mode="json")


@app.get("/api/losses-summary")
def loss_summary():
    return get_service().loss_summary().model_dump(mode="json")
