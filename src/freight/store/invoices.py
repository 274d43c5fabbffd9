"""Invoice repository with optimistic concurrency and status history."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from freight.domain.errors import ConcurrencyConflictError, InvoiceNotFoundError
from freight.domain.models import Invoice, InvoiceHistoryEntry, utc_now
from freight.domain.types import InvoiceStatus
from freight.store.database import Database
from freight.store.serializers import dumps_json, model_to_row, row_to_model, to_db

UPDATABLE_INVOICE_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "shipper_response_type",
        "shipper_counter_amount",
        "shipper_message",
        "due_date",
        "sent_at",
        "viewed_at",
        "responded_at",
        "paid_at",
        "paid_amount",
        "payment_reference",
    }
)


class InvoiceRepository:
    """Persist and retrieve invoices and their history rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def insert(self, invoice: Invoice) -> Invoice:
        """Insert a new invoice row and return it."""
        row = model_to_row(invoice)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO invoices ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
        return invoice

    def compare_and_swap(self, invoice_id: str, expected_version: int, changes: dict[str, Any]) -> Invoice:
        """Apply *changes* only if the invoice is still at *expected_version*.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist.
            ConcurrencyConflictError: If the stored version differs.
        """
        unknown = set(changes) - UPDATABLE_INVOICE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable on invoices: {sorted(unknown)}")

        assignments = [f"{name} = ?" for name in changes]
        assignments += ["version = version + 1", "updated_at = ?"]
        params: list[Any] = [to_db(v) for v in changes.values()]
        params += [to_db(utc_now()), invoice_id, expected_version]

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE invoices SET {', '.join(assignments)} WHERE id = ? AND version = ?",
                params,
            )
            if cursor.rowcount == 0:
                current = self.require(invoice_id)
                raise ConcurrencyConflictError(
                    "invoice", invoice_id, expected_version, current.version
                )
            return self.require(invoice_id)

    def append_history(
        self,
        invoice_id: str,
        actor_id: str,
        from_status: InvoiceStatus | None,
        to_status: InvoiceStatus,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Append one row to the invoice history.

        Returns:
            The row ID of the inserted entry.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invoice_history (
                    invoice_id, actor_id, from_status, to_status, reason, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice_id,
                    actor_id,
                    to_db(from_status),
                    to_status.value,
                    reason,
                    dumps_json(metadata or {}),
                    to_db(utc_now()),
                ),
            )
            return cursor.lastrowid or 0

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, invoice_id: str) -> Invoice | None:
        """Return the invoice with *invoice_id*, or ``None``."""
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        return row_to_model(row, Invoice) if row else None

    def require(self, invoice_id: str) -> Invoice:
        """Return the invoice with *invoice_id* or raise ``InvoiceNotFoundError``."""
        invoice = self.get(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def get_by_idempotency_key(self, key: str) -> Invoice | None:
        """Return the invoice created under *key*, or ``None``."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM invoices WHERE idempotency_key = ?", (key,)
            ).fetchone()
        return row_to_model(row, Invoice) if row else None

    def list_for_load(self, load_id: str) -> list[Invoice]:
        """Return every invoice for *load_id*, oldest revision first."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM invoices WHERE load_id = ? ORDER BY revision_number, created_at",
                (load_id,),
            ).fetchall()
        return [row_to_model(row, Invoice) for row in rows]

    def list_history(self, invoice_id: str) -> list[InvoiceHistoryEntry]:
        """Return an invoice's history rows in the order they were written."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM invoice_history WHERE invoice_id = ? ORDER BY id",
                (invoice_id,),
            ).fetchall()
        return [row_to_model(row, InvoiceHistoryEntry, ("metadata",)) for row in rows]

    def next_invoice_number(self, now: datetime) -> str:
        """Return the next ``INV-YYYYMM-NNNNN`` number.

        Call inside the transaction that inserts the invoice so the count
        cannot move underneath it.
        """
        with self._db.read() as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM invoices").fetchone()
        return f"INV-{now:%Y%m}-{count + 1:05d}"
