"""
SQLite persistence layer for purchase orders, invoices and inventory losses.

Each entity is stored as one row: a few denormalised columns for filtering
plus the full pydantic model serialised as JSON in `payload`. A write
replaces the whole payload in a single UPDATE, so a status change and its
history entry, or a payment and all of its milestone allocations, are
committed together or not at all.

Concurrency
-----------
Every row carries a `version`. Writers pass the version they read; the
UPDATE matches on (id, version) and bumps it. If another writer got there
first no row matches and ConcurrentModification is raised. The caller must
re-read and retry; nothing here retries on its own.

The audit entry for a write is inserted in the same transaction as the
write itself.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from models.inventory_loss import InventoryLoss
from models.invoice import Invoice
from models.purchase_order import PurchaseOrder
from models.submission import InvoiceSubmission
from .errors import ConcurrentModification, NotFound

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS purchase_orders (
    id            TEXT PRIMARY KEY,
    po_number     TEXT NOT NULL UNIQUE,
    supplier_name TEXT,
    status        TEXT NOT NULL,
    total         TEXT,
    version       INTEGER NOT NULL,
    payload       TEXT NOT NULL,          -- PurchaseOrder as JSON
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_po_status ON purchase_orders (status);

CREATE TABLE IF NOT EXISTS invoices (
    id                TEXT PRIMARY KEY,
    invoice_number    TEXT NOT NULL,
    purchase_order_id TEXT,
    amount            TEXT NOT NULL,
    version           INTEGER NOT NULL,
    payload           TEXT NOT NULL,      -- Invoice as JSON (schedule + payments)
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_invoices_po ON invoices (purchase_order_id);

CREATE TABLE IF NOT EXISTS inventory_losses (
    id                   TEXT PRIMARY KEY,
    sku                  TEXT NOT NULL,
    loss_type            TEXT NOT NULL,
    reimbursement_status TEXT NOT NULL,
    version              INTEGER NOT NULL,
    payload              TEXT NOT NULL,   -- InventoryLoss as JSON
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_losses_status ON inventory_losses (reimbursement_status);

-- Written by the external invoice review workflow; read-only to the core
CREATE TABLE IF NOT EXISTS invoice_submissions (
    purchase_order_id TEXT PRIMARY KEY,
    review_status     TEXT NOT NULL,
    payload           TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT    NOT NULL,   -- purchase_order | invoice | inventory_loss
    entity_id   TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- created | status_changed | payment_recorded |
                                    -- trigger_fired | reimbursement_recorded | ...
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_entity    ON audit_log (entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


class _Table:
    """Describes how one entity type maps onto its table."""

    def __init__(
        self,
        name: str,
        entity: str,
        model: Type[BaseModel],
        columns: dict[str, Callable[[BaseModel], object]],
    ) -> None:
        self.name = name
        self.entity = entity
        self.model = model
        self.columns = columns


_PURCHASE_ORDERS = _Table("purchase_orders", "purchase_order", PurchaseOrder, {
    "po_number":     lambda o: o.po_number,
    "supplier_name": lambda o: o.supplier_name,
    "status":        lambda o: o.status.value,
    "total":         lambda o: str(o.total),
})

_INVOICES = _Table("invoices", "invoice", Invoice, {
    "invoice_number":    lambda i: i.invoice_number,
    "purchase_order_id": lambda i: i.purchase_order_id,
    "amount":            lambda i: str(i.amount),
})

_LOSSES = _Table("inventory_losses", "inventory_loss", InventoryLoss, {
    "sku":                  lambda loss: loss.sku,
    "loss_type":            lambda loss: loss.loss_type.value,
    "reimbursement_status": lambda loss: loss.reimbursement_status.value,
})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Thin wrapper around an SQLite database file for workflow state."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Generic entity storage
    # ------------------------------------------------------------------

    def _insert(self, table: _Table, entity: M, actor: str, detail: Optional[dict]) -> M:
        stored = entity.model_copy(update={"version": 1})
        now = _now()
        cols = ["id", *table.columns, "version", "payload", "created_at", "updated_at"]
        values = [
            stored.id,
            *(getter(stored) for getter in table.columns.values()),
            stored.version,
            stored.model_dump_json(),
            now,
            now,
        ]
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO {table.name} ({', '.join(cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)})",
                values,
            )
            self._audit(conn, table.entity, stored.id, "created", actor, detail)
        logger.info("DB created %s %s", table.entity, stored.id)
        return stored

    def _update(
        self,
        table: _Table,
        entity: M,
        expected_version: int,
        action: str,
        actor: str,
        detail: Optional[dict],
    ) -> M:
        stored = entity.model_copy(update={"version": expected_version + 1})
        assignments = ", ".join(f"{col}=?" for col in table.columns)
        with self._conn() as conn:
            conn.execute(
                f"UPDATE {table.name} SET {assignments}, version=?, payload=?, updated_at=? "
                f"WHERE id=? AND version=?",
                [
                    *(getter(stored) for getter in table.columns.values()),
                    stored.version,
                    stored.model_dump_json(),
                    _now(),
                    stored.id,
                    expected_version,
                ],
            )
            if conn.execute("SELECT changes()").fetchone()[0] == 0:
                exists = conn.execute(
                    f"SELECT 1 FROM {table.name} WHERE id=?", (stored.id,)
                ).fetchone()
                if exists is None:
                    raise NotFound(f"{table.entity} not found: {stored.id}")
                raise ConcurrentModification(table.entity, stored.id, expected_version)
            self._audit(conn, table.entity, stored.id, action, actor, detail)
        logger.debug("DB updated %s %s -> v%d", table.entity, stored.id, stored.version)
        return stored

    def _get(self, table: _Table, entity_id: str):
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT payload, version FROM {table.name} WHERE id=?", (entity_id,)
            ).fetchone()
        if row is None:
            return None
        entity = table.model.model_validate_json(row["payload"])
        entity.version = row["version"]
        return entity

    def _list(self, table: _Table, where: str = "", params: tuple = ()) -> list:
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT payload, version FROM {table.name} {where} ORDER BY created_at ASC",
                params,
            ).fetchall()
        entities = []
        for row in rows:
            entity = table.model.model_validate_json(row["payload"])
            entity.version = row["version"]
            entities.append(entity)
        return entities

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def insert_purchase_order(self, order: PurchaseOrder, actor: str = "system") -> PurchaseOrder:
        return self._insert(_PURCHASE_ORDERS, order, actor, {"status": order.status.value})

    def save_purchase_order(
        self,
        order: PurchaseOrder,
        expected_version: int,
        action: str = "status_changed",
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> PurchaseOrder:
        return self._update(_PURCHASE_ORDERS, order, expected_version, action, actor, detail)

    def get_purchase_order(self, order_id: str) -> Optional[PurchaseOrder]:
        return self._get(_PURCHASE_ORDERS, order_id)

    def list_purchase_orders(self, status: Optional[str] = None) -> list[PurchaseOrder]:
        if status:
            return self._list(_PURCHASE_ORDERS, "WHERE status = ?", (status,))
        return self._list(_PURCHASE_ORDERS)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def insert_invoice(self, invoice: Invoice, actor: str = "system") -> Invoice:
        return self._insert(_INVOICES, invoice, actor, {"amount": str(invoice.amount)})

    def save_invoice(
        self,
        invoice: Invoice,
        expected_version: int,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> Invoice:
        return self._update(_INVOICES, invoice, expected_version, action, actor, detail)

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self._get(_INVOICES, invoice_id)

    def list_invoices(self, purchase_order_id: Optional[str] = None) -> list[Invoice]:
        if purchase_order_id:
            return self._list(_INVOICES, "WHERE purchase_order_id = ?", (purchase_order_id,))
        return self._list(_INVOICES)

    # ------------------------------------------------------------------
    # Inventory losses
    # ------------------------------------------------------------------

    def insert_loss(self, loss: InventoryLoss, actor: str = "system") -> InventoryLoss:
        return self._insert(_LOSSES, loss, actor, {"total_cost": str(loss.total_cost)})

    def save_loss(
        self,
        loss: InventoryLoss,
        expected_version: int,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> InventoryLoss:
        return self._update(_LOSSES, loss, expected_version, action, actor, detail)

    def get_loss(self, loss_id: str) -> Optional[InventoryLoss]:
        return self._get(_LOSSES, loss_id)

    def list_losses(self, reimbursement_status: Optional[str] = None) -> list[InventoryLoss]:
        if reimbursement_status:
            return self._list(_LOSSES, "WHERE reimbursement_status = ?", (reimbursement_status,))
        return self._list(_LOSSES)

    # ------------------------------------------------------------------
    # Invoice submissions (SubmissionFeed)
    # ------------------------------------------------------------------

    def upsert_submission(self, submission: InvoiceSubmission) -> None:
        """Store the latest review outcome for a PO. Called by the review workflow."""
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO invoice_submissions (purchase_order_id, review_status, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(purchase_order_id) DO UPDATE SET
                    review_status = excluded.review_status,
                    payload       = excluded.payload,
                    updated_at    = excluded.updated_at
                """,
                (
                    submission.purchase_order_id,
                    submission.review_status.value,
                    submission.model_dump_json(),
                    _now(),
                ),
            )

    def get(self, purchase_order_id: str) -> Optional[InvoiceSubmission]:
        """SubmissionFeed.get(): the submission linked to a PO, or None."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT payload FROM invoice_submissions WHERE purchase_order_id=?",
                (purchase_order_id,),
            ).fetchone()
        return InvoiceSubmission.model_validate_json(row["payload"]) if row else None

    get_submission = get

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def _audit(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str,
        detail: Optional[dict],
    ) -> None:
        conn.execute(
            """INSERT INTO audit_log (entity_type, entity_id, timestamp, action, actor, detail)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                entity_type,
                entity_id,
                _now(),
                action,
                actor,
                json.dumps(detail) if detail is not None else None,
            ),
        )

    def log_audit(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log for an action that changes no entity."""
        with self._conn() as conn:
            self._audit(conn, entity_type, entity_id, action, actor, detail)

    def get_audit_log(self, entity_type: str, entity_id: str) -> list[dict]:
        """Return all audit entries for one entity, oldest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE entity_type = ? AND entity_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (entity_type, entity_id),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_recent_audit_log(self, limit: int = 200, offset: int = 0) -> list[dict]:
        """Return recent audit entries across all entities, newest first."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT id, entity_type, entity_id, timestamp, action, actor, detail
                   FROM audit_log
                   ORDER BY timestamp DESC, id DESC
                   LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [dict(r) for r in rows]
