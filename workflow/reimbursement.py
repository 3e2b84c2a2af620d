"""
Reimbursement ledger for inventory losses.

record_reimbursement() takes the cumulative amount recovered for a loss and
overwrites the previous figure; a second partial payout is recorded by
passing the new running total. Each call also appends a ReimbursementEvent,
so the sequence of recoveries is kept for audit.

Status is derived from the amount (none / partial / complete). pending and
denied are external decisions and are only ever set through open_claim()
and deny_reimbursement().
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from models.inventory_loss import (
    InventoryLoss, InventoryLossSummary, ReimbursementEvent, ReimbursementStatus,
)
from models.money import ZERO, to_money
from .errors import ValidationError

logger = logging.getLogger(__name__)


def derive_status(amount: Decimal, total_cost: Decimal) -> ReimbursementStatus:
    if amount == 0:
        return ReimbursementStatus.NONE
    if amount >= total_cost:
        return ReimbursementStatus.COMPLETE
    return ReimbursementStatus.PARTIAL


def record_reimbursement(
    loss: InventoryLoss,
    amount: Decimal,
    reimbursement_date: Optional[date] = None,
    reference: Optional[str] = None,
) -> InventoryLoss:
    amount = to_money(amount)
    if amount < 0:
        raise ValidationError("Reimbursement amount cannot be negative", field="amount")
    if amount > loss.total_cost:
        raise ValidationError(
            f"Reimbursement of {amount} exceeds the loss total of {loss.total_cost}",
            field="amount",
        )

    reimbursement_date = reimbursement_date or date.today()
    status = derive_status(amount, loss.total_cost)
    event = ReimbursementEvent(
        status=status, amount=amount, date=reimbursement_date, reference=reference,
    )
    updated = loss.model_copy(
        update={
            "reimbursement_amount": amount,
            "reimbursement_date": reimbursement_date,
            "reimbursement_reference": reference,
            "reimbursement_status": status,
            "reimbursement_history": [*loss.reimbursement_history, event],
        },
        deep=True,
    )
    logger.info("Loss %s: reimbursement %s (%s), net loss %s",
                loss.id, amount, status.value, updated.net_loss)
    return updated


def open_claim(
    loss: InventoryLoss,
    claim_reference: str,
    opened_on: Optional[date] = None,
) -> InventoryLoss:
    """Record that a reimbursement claim was filed and is awaiting a decision."""
    if not claim_reference or not claim_reference.strip():
        raise ValidationError("A claim reference is required", field="claim_reference")
    if loss.reimbursement_status == ReimbursementStatus.COMPLETE:
        raise ValidationError("Loss is already fully reimbursed", field="reimbursement_status")

    event = ReimbursementEvent(
        status=ReimbursementStatus.PENDING,
        amount=loss.reimbursement_amount,
        date=opened_on or date.today(),
        reference=claim_reference.strip(),
    )
    return loss.model_copy(
        update={
            "claim_reference": claim_reference.strip(),
            "reimbursement_status": ReimbursementStatus.PENDING,
            "reimbursement_history": [*loss.reimbursement_history, event],
        },
        deep=True,
    )


def deny_reimbursement(
    loss: InventoryLoss,
    reference: Optional[str] = None,
    denied_on: Optional[date] = None,
) -> InventoryLoss:
    """
    Mark the claim as denied. The recovered amount is left as recorded;
    denied cannot be inferred from an amount and is only set here.
    """
    event = ReimbursementEvent(
        status=ReimbursementStatus.DENIED,
        amount=loss.reimbursement_amount,
        date=denied_on or date.today(),
        reference=reference,
    )
    logger.info("Loss %s: reimbursement denied", loss.id)
    return loss.model_copy(
        update={
            "reimbursement_status": ReimbursementStatus.DENIED,
            "reimbursement_history": [*loss.reimbursement_history, event],
        },
        deep=True,
    )


def pending_reimbursements(losses: Iterable[InventoryLoss]) -> list[InventoryLoss]:
    """Losses still waiting on money: claims filed or partially paid."""
    return [
        loss for loss in losses
        if loss.reimbursement_status in (ReimbursementStatus.PENDING, ReimbursementStatus.PARTIAL)
    ]


def summarize_losses(losses: Iterable[InventoryLoss]) -> InventoryLossSummary:
    losses = list(losses)
    return InventoryLossSummary(
        total_losses=len(losses),
        total_units=sum(loss.quantity for loss in losses),
        total_cost=sum((loss.total_cost for loss in losses), ZERO),
        total_reimbursed=sum((loss.reimbursement_amount for loss in losses), ZERO),
        total_net_loss=sum((loss.net_loss for loss in losses), ZERO),
        pending_reimbursements=len(pending_reimbursements(losses)),
    )
