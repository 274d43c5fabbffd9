"""Convenience class for inserting admin audit entries.

Each method builds a properly structured :class:`AuditEntry` and inserts it
inside the current transaction of the shared database, so the audit row
commits or rolls back together with the action.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from freight.audit.models import AuditEntry, EventType
from freight.audit.store import insert_audit_entry

if TYPE_CHECKING:
    from freight.store.database import Database


def _money(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


class AuditLogger:
    """Typed convenience API for inserting admin audit entries.

    Args:
        db: The shared freight database.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def log(self, entry: AuditEntry) -> int:
        """Insert *entry* and return its row ID."""
        with self._db.transaction() as conn:
            return insert_audit_entry(conn, entry)

    def log_price_locked(
        self,
        actor_id: str,
        load_id: str,
        previous_price: Decimal | None,
        final_price: Decimal,
        reason: str | None = None,
    ) -> int:
        """Log an admin fixing the final price of a load.

        Args:
            actor_id: The admin who locked the price.
            load_id: The load whose price was locked.
            previous_price: The final price before the lock, if any.
            final_price: The locked final price.
            reason: Why the price was (re)locked.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.PRICE_LOCKED,
                actor_id=actor_id,
                load_id=load_id,
                reason=reason,
                before_state={"admin_final_price": _money(previous_price)},
                after_state={"admin_final_price": _money(final_price), "price_locked": "true"},
            )
        )

    def log_price_unlocked(
        self,
        actor_id: str,
        load_id: str,
        final_price: Decimal | None,
        reason: str,
    ) -> int:
        """Log an admin releasing a price lock.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.PRICE_UNLOCKED,
                actor_id=actor_id,
                load_id=load_id,
                reason=reason,
                before_state={"admin_final_price": _money(final_price), "price_locked": "true"},
                after_state={"admin_final_price": _money(final_price), "price_locked": "false"},
            )
        )

    def log_bidding_reopened(
        self,
        actor_id: str,
        load_id: str,
        from_state: str,
        revoked_bid_id: str | None,
        reason: str | None,
    ) -> int:
        """Log an admin sending a load back to open bidding.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.BIDDING_REOPENED,
                actor_id=actor_id,
                load_id=load_id,
                reason=reason,
                before_state={"status": from_state, "awarded_bid_id": revoked_bid_id},
                after_state={"status": "open_for_bid", "awarded_bid_id": None},
            )
        )

    def log_load_resolicited(self, actor_id: str, load_id: str, from_state: str) -> int:
        """Log an admin re-posting a load that ran out of open bids.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.LOAD_RESOLICITED,
                actor_id=actor_id,
                load_id=load_id,
                before_state={"status": from_state},
                after_state={"status": "posted_to_carriers"},
            )
        )

    def log_invoice_revised(
        self,
        actor_id: str,
        load_id: str,
        previous_invoice_id: str,
        invoice_id: str,
        previous_total: Decimal,
        new_total: Decimal,
        reason: str | None,
    ) -> int:
        """Log an admin issuing a revised invoice.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.INVOICE_REVISED,
                actor_id=actor_id,
                load_id=load_id,
                invoice_id=invoice_id,
                reason=reason,
                before_state={"invoice_id": previous_invoice_id, "total_amount": str(previous_total)},
                after_state={"invoice_id": invoice_id, "total_amount": str(new_total)},
            )
        )

    def log_simulated_offer(
        self,
        actor_id: str,
        load_id: str,
        amount: Decimal,
        message_type: str,
    ) -> int:
        """Log an admin market-probe offer in a negotiation thread.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.SIMULATED_OFFER,
                actor_id=actor_id,
                load_id=load_id,
                metadata={"amount": str(amount), "message_type": message_type},
            )
        )

    def log_load_cancelled(
        self,
        actor_id: str,
        load_id: str,
        from_state: str,
        expired_bids: int,
        cancelled_invoice_id: str | None,
        reason: str | None,
    ) -> int:
        """Log a load cancellation together with what it cascaded into.

        Returns:
            The row ID of the inserted audit entry.
        """
        return self.log(
            AuditEntry(
                event_type=EventType.LOAD_CANCELLED,
                actor_id=actor_id,
                load_id=load_id,
                invoice_id=cancelled_invoice_id,
                reason=reason,
                before_state={"status": from_state},
                after_state={"status": "cancelled"},
                metadata={"expired_bids": str(expired_bids)},
            )
        )
