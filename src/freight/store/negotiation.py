"""Bid, negotiation message, and negotiation thread persistence.

Bid updates are guarded by the status the caller observed (``WHERE status =
?``), the bid-level equivalent of the load version check.  Message sequence
numbers are allocated inside the caller's transaction so the per-load log
stays gap-free.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from freight.domain.errors import BidNotFoundError, InvalidBidStateError
from freight.domain.models import Bid, NegotiationMessage, NegotiationThread, utc_now
from freight.domain.types import ActorRole, BidStatus, MessageType
from freight.store.database import Database
from freight.store.serializers import model_to_row, row_to_model, to_db

UPDATABLE_BID_FIELDS: frozenset[str] = frozenset(
    {"status", "counter_amount", "previous_amount", "notes"}
)


def _insert(conn: Any, table: str, row: dict[str, Any]) -> None:
    columns = ", ".join(row)
    placeholders = ", ".join("?" for _ in row)
    conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))


class BidRepository:
    """Persist and retrieve carrier bids."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, bid: Bid) -> Bid:
        """Insert a new bid row and return it."""
        with self._db.transaction() as conn:
            _insert(conn, "bids", model_to_row(bid))
        return bid

    def update(self, bid_id: str, expected_status: BidStatus, changes: dict[str, Any]) -> Bid:
        """Update a bid only if it is still in *expected_status*.

        Raises:
            BidNotFoundError: If the bid does not exist.
            InvalidBidStateError: If the bid moved on since it was read.
        """
        unknown = set(changes) - UPDATABLE_BID_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable on bids: {sorted(unknown)}")

        assignments = [f"{name} = ?" for name in changes] + ["updated_at = ?"]
        params = [to_db(v) for v in changes.values()]
        params += [to_db(utc_now()), bid_id, expected_status.value]

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE bids SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                params,
            )
            if cursor.rowcount == 0:
                current = self.require(bid_id)
                raise InvalidBidStateError(bid_id, current.status, changes.get("status", current.status))
            return self.require(bid_id)

    def get(self, bid_id: str) -> Bid | None:
        """Return the bid with *bid_id*, or ``None``."""
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM bids WHERE id = ?", (bid_id,)).fetchone()
        return row_to_model(row, Bid) if row else None

    def require(self, bid_id: str) -> Bid:
        """Return the bid with *bid_id* or raise ``BidNotFoundError``."""
        bid = self.get(bid_id)
        if bid is None:
            raise BidNotFoundError(bid_id)
        return bid

    def list_for_load(self, load_id: str, statuses: frozenset[BidStatus] | None = None) -> list[Bid]:
        """Return a load's bids in creation order, optionally filtered by status."""
        query = "SELECT * FROM bids WHERE load_id = ?"
        params: list[Any] = [load_id]
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params += sorted(s.value for s in statuses)
        query += " ORDER BY created_at, rowid"
        with self._db.read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row_to_model(row, Bid) for row in rows]


class NegotiationLog:
    """Append-only negotiation messages plus the cached per-load thread row."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(
        self,
        load_id: str,
        *,
        sender_id: str,
        sender_role: ActorRole,
        message_type: MessageType,
        bid_id: str | None = None,
        carrier_id: str | None = None,
        amount: Decimal | None = None,
        previous_amount: Decimal | None = None,
        body: str | None = None,
    ) -> NegotiationMessage:
        """Append a message with the next sequence number for *load_id*.

        Returns:
            The stored, immutable message.
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) FROM negotiation_messages WHERE load_id = ?",
                (load_id,),
            ).fetchone()
            message = NegotiationMessage(
                id=str(uuid.uuid4()),
                load_id=load_id,
                sequence=row[0] + 1,
                bid_id=bid_id,
                carrier_id=carrier_id,
                sender_id=sender_id,
                sender_role=sender_role,
                message_type=message_type,
                amount=amount,
                previous_amount=previous_amount,
                body=body,
            )
            _insert(conn, "negotiation_messages", model_to_row(message))
        return message

    def list_messages(self, load_id: str, after_sequence: int = 0) -> list[NegotiationMessage]:
        """Return messages for *load_id* in sequence order."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM negotiation_messages WHERE load_id = ? AND sequence > ? "
                "ORDER BY sequence",
                (load_id, after_sequence),
            ).fetchall()
        return [row_to_model(row, NegotiationMessage) for row in rows]

    def get_thread(self, load_id: str) -> NegotiationThread | None:
        """Return the cached thread summary, or ``None`` if no message exists yet."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM negotiation_threads WHERE load_id = ?", (load_id,)
            ).fetchone()
        return row_to_model(row, NegotiationThread, ("countered_bid_ids",)) if row else None

    def save_thread(self, thread: NegotiationThread) -> None:
        """Upsert the cached thread summary."""
        row = model_to_row(thread)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO negotiation_threads ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
