#!/usr/bin/env python3
"""
Supplyline workflow — CLI entry point.

Usage examples:
  python main.py init                                         # Create the database
  python main.py create-po PO-1001 --supplier "Acme Ltd" --line SKU-1:100:4.50
  python main.py show-po <po-id>                              # Status, history, next steps
  python main.py transition <po-id> sent                      # Notifies the supplier
  python main.py step <po-id> 4                               # Stepper click (validated)

  python main.py create-invoice INV-77 1000 --po <po-id> \\
      --milestone Deposit:30:po-confirmed --milestone Balance:70:goods-received:14
  python main.py trigger <invoice-id> inspection-passed
  python main.py pay <invoice-id> 300 --reference WIRE-123 --attach remittance.pdf

  python main.py create-loss SKU-1 damaged_inbound 10 10.00
  python main.py reimburse <loss-id> 60 --reference CASE-9
  python main.py summary
"""
import json
import logging
import sys
from contextlib import contextmanager
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from config import Config
from models import (
    InventoryLoss, LossType, NewPayment, PaymentMethod, PaymentMilestone, PaymentTrigger,
    POLineItem, POStatus, PurchaseOrder,
)
from workflow import WorkflowError, WorkflowService


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _service() -> WorkflowService:
    return WorkflowService.from_config(Config())


@contextmanager
def _workflow_errors():
    """Turn workflow failures into a one-line error and exit code 1."""
    try:
        yield
    except WorkflowError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _money(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"{value!r} is not a valid amount")


def _parse_line(raw: str) -> POLineItem:
    try:
        sku, qty, cost = raw.split(":")
        return POLineItem(sku=sku, quantity=int(qty), unit_cost=Decimal(cost))
    except (ValueError, InvalidOperation):
        raise click.BadParameter(f"Line items look like SKU:QTY:UNIT_COST, got {raw!r}")


def _parse_milestone(raw: str) -> PaymentMilestone:
    parts = raw.split(":")
    if len(parts) not in (3, 4):
        raise click.BadParameter(f"Milestones look like NAME:PERCENT:TRIGGER[:OFFSET_DAYS], got {raw!r}")
    try:
        return PaymentMilestone(
            name=parts[0],
            percentage=float(parts[1]),
            trigger=PaymentTrigger(parts[2]),
            offset_days=int(parts[3]) if len(parts) == 4 else 0,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Purchase order workflow, payment milestones, and loss reimbursements."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


@cli.command()
def init() -> None:
    """Create the database and attachment folders."""
    config = Config()
    _service()
    click.echo(f"  Database:     {config.db_path}")
    click.echo(f"  Attachments:  {config.attachments_dir}")
    notify = config.supplier_notify_url or "(not configured: sending to suppliers will fail)"
    click.echo(f"  Supplier notifications: {notify}")


# --------------------------------------------------------------------
# purchase orders
# --------------------------------------------------------------------

@cli.command("create-po")
@click.argument("po_number")
@click.option("--supplier", default=None, help="Supplier name")
@click.option("--supplier-email", default=None, help="Supplier contact email")
@click.option("--expected", default=None, type=click.DateTime(["%Y-%m-%d"]), help="Expected date")
@click.option("--line", "lines", multiple=True, help="Line item SKU:QTY:UNIT_COST (repeatable)")
@click.option("--total", default=None, help="Order total (defaults to the sum of the lines)")
def create_po(po_number, supplier, supplier_email, expected, lines, total) -> None:
    """Create a draft purchase order."""
    items = [_parse_line(raw) for raw in lines]
    order_total = _money(total) if total else sum((item.subtotal for item in items), Decimal("0"))
    order = PurchaseOrder(
        po_number=po_number,
        supplier_name=supplier,
        supplier_email=supplier_email,
        expected_date=expected.date() if expected else None,
        total=order_total,
        line_items=items,
    )
    with _workflow_errors():
        order = _service().create_purchase_order(order)
    click.echo(f"✓ Created {order.po_number} ({order.id}) in draft, total {order.total}")


@cli.command("show-po")
@click.argument("order_id")
def show_po(order_id: str) -> None:
    """Show a PO with its effective status, history, and next steps."""
    service = _service()
    with _workflow_errors():
        order = service.get_purchase_order(order_id)
        effective = service.effective_status(order_id)
        transitions = service.available_transitions(order_id)
        adjacent = service.adjacent(order_id)

    click.echo(f"\n  {order.po_number}  ({order.supplier_name or 'no supplier'})")
    label = effective.value if effective == order.status else f"{effective.value} (stored: {order.status.value})"
    click.echo(f"  Status:   {label}")
    click.echo(f"  Total:    {order.currency} {order.total}")
    if order.line_items and order.line_items_total != order.total:
        click.echo(f"  ⚠  Line items add up to {order.line_items_total}")
    click.echo("\n  History:")
    for entry in order.status_history:
        note = f"  — {entry.note}" if entry.note else ""
        click.echo(f"    {entry.timestamp:%Y-%m-%d %H:%M}  {entry.status.value}{note}")
    click.echo("\n  Next steps:")
    for t in transitions:
        marker = "→" if t.primary else " "
        click.echo(f"    {marker} {t.label:<32} [{t.direction.value}] {t.target.value}")
    click.echo(f"\n  Stepper:  back={adjacent.previous.value if adjacent.previous else '-'}"
               f"  next={adjacent.next.value if adjacent.next else '-'}\n")


@cli.command()
@click.argument("order_id")
@click.argument("status", type=click.Choice([s.value for s in POStatus]))
@click.option("--note", default=None, help="Note stored on the history entry")
def transition(order_id: str, status: str, note: str | None) -> None:
    """Move a PO to STATUS (validated against the transition table)."""
    with _workflow_errors():
        order = _service().transition(order_id, status, note=note)
    click.echo(f"✓ {order.po_number} is now {order.status.value}")


@cli.command()
@click.argument("order_id")
@click.argument("step")
def step(order_id: str, step: str) -> None:
    """Stepper navigation: STEP is a 0-based stepper index or a status name."""
    target = int(step) if step.isdigit() else step
    with _workflow_errors():
        order = _service().step(order_id, target)
    click.echo(f"✓ {order.po_number} is now {order.status.value}")


@cli.command()
@click.argument("order_id")
def resend(order_id: str) -> None:
    """Re-send the supplier notification for a PO awaiting its invoice."""
    with _workflow_errors():
        order = _service().resend_to_supplier(order_id)
    click.echo(f"✓ {order.po_number} re-sent to {order.supplier_name or 'supplier'}")


# --------------------------------------------------------------------
# invoices & payments
# --------------------------------------------------------------------

@cli.command("create-invoice")
@click.argument("invoice_number")
@click.argument("amount")
@click.option("--po", "purchase_order_id", default=None, help="Linked purchase order id")
@click.option("--milestone", "milestone_specs", multiple=True,
              help="NAME:PERCENT:TRIGGER[:OFFSET_DAYS] (repeatable)")
def create_invoice(invoice_number, amount, purchase_order_id, milestone_specs) -> None:
    """Create an invoice, optionally with a milestone payment schedule."""
    terms = [_parse_milestone(raw) for raw in milestone_specs]
    with _workflow_errors():
        invoice = _service().create_invoice(
            invoice_number, _money(amount), terms, purchase_order_id=purchase_order_id,
        )
    click.echo(f"✓ Created invoice {invoice.invoice_number} ({invoice.id}) for {invoice.amount}")
    for item in invoice.sorted_schedule():
        click.echo(f"    {item.sort_order}. {item.milestone_name:<20} {item.amount:>12}  "
                   f"[{item.trigger.value}, {item.trigger_status.value}]")


@cli.command()
@click.argument("invoice_id")
@click.argument("trigger", type=click.Choice([t.value for t in PaymentTrigger]))
@click.option("--date", "when", default=None, type=click.DateTime(["%Y-%m-%d"]))
def trigger(invoice_id: str, trigger: str, when) -> None:
    """Fire a milestone trigger event on an invoice."""
    with _workflow_errors():
        invoice = _service().fire_trigger(invoice_id, trigger, when.date() if when else None)
    click.echo(f"✓ {trigger} fired on {invoice.invoice_number}; status {invoice.status.value}")


@cli.command()
@click.argument("invoice_id")
@click.argument("amount")
@click.option("--reference", "-r", required=True, help="Transaction reference")
@click.option("--method", default=PaymentMethod.WIRE_TRANSFER.value,
              type=click.Choice([m.value for m in PaymentMethod]))
@click.option("--date", "paid_on", default=None, type=click.DateTime(["%Y-%m-%d"]))
@click.option("--notes", default=None)
@click.option("--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False))
def pay(invoice_id, amount, reference, method, paid_on, notes, attachments) -> None:
    """Record a payment against an invoice (allocated FIFO over milestones)."""
    payment = NewPayment(
        amount=_money(amount),
        date=paid_on.date() if paid_on else date.today(),
        method=PaymentMethod(method),
        reference=reference,
        notes=notes,
    )
    files = [(Path(p).name, Path(p).read_bytes()) for p in attachments]
    with _workflow_errors():
        invoice = _service().record_payment(invoice_id, payment, files=files)
    click.echo(f"✓ Payment recorded. Paid {invoice.paid_amount} of {invoice.amount}, "
               f"balance {invoice.balance} ({invoice.status.value})")
    for allocation in invoice.payments[-1].allocations:
        click.echo(f"    → {allocation.schedule_item_id}: {allocation.amount}")


# --------------------------------------------------------------------
# inventory losses
# --------------------------------------------------------------------

@cli.command("create-loss")
@click.argument("sku")
@click.argument("loss_type", type=click.Choice([t.value for t in LossType]))
@click.argument("quantity", type=int)
@click.argument("unit_cost")
@click.option("--description", default=None)
def create_loss(sku: str, loss_type: str, quantity: int, unit_cost: str, description) -> None:
    """Record an inventory loss event."""
    loss = InventoryLoss(
        sku=sku,
        loss_type=LossType(loss_type),
        quantity=quantity,
        unit_cost=_money(unit_cost),
        description=description,
    )
    with _workflow_errors():
        loss = _service().create_loss(loss)
    click.echo(f"✓ Loss {loss.id}: {loss.quantity} × {loss.unit_cost} = {loss.total_cost}")


@cli.command()
@click.argument("loss_id")
@click.argument("amount")
@click.option("--reference", "-r", default=None)
@click.option("--date", "received_on", default=None, type=click.DateTime(["%Y-%m-%d"]))
def reimburse(loss_id: str, amount: str, reference, received_on) -> None:
    """Record the cumulative amount recovered for a loss."""
    with _workflow_errors():
        loss = _service().record_reimbursement(
            loss_id, _money(amount), received_on.date() if received_on else None, reference,
        )
    click.echo(f"✓ Reimbursement {loss.reimbursement_status.value}: "
               f"{loss.reimbursement_amount} recovered, net loss {loss.net_loss}")


@cli.command()
@click.argument("loss_id")
@click.argument("claim_reference")
def claim(loss_id: str, claim_reference: str) -> None:
    """Mark a reimbursement claim as filed (pending)."""
    with _workflow_errors():
        loss = _service().open_claim(loss_id, claim_reference)
    click.echo(f"✓ Claim {loss.claim_reference} opened; status {loss.reimbursement_status.value}")


@cli.command()
@click.argument("loss_id")
@click.option("--reference", "-r", default=None)
def deny(loss_id: str, reference) -> None:
    """Mark a reimbursement claim as denied."""
    with _workflow_errors():
        loss = _service().deny_reimbursement(loss_id, reference)
    click.echo(f"✓ Reimbursement denied; net loss {loss.net_loss}")


@cli.command()
def summary() -> None:
    """Print invoice and inventory-loss totals."""
    service = _service()
    _echo_json({
        "invoices": service.invoice_summary().model_dump(mode="json"),
        "inventory_losses": service.loss_summary().model_dump(mode="json"),
    })


if __name__ == "__main__":
    cli()
