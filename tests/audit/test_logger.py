"""Tests for the AuditLogger convenience methods."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from freight.audit.logger import AuditLogger
from freight.audit.models import AuditEntry, EventType
from freight.audit.store import query_audit_trail
from freight.store.database import Database


@pytest.fixture
def audit(db: Database) -> AuditLogger:
    return AuditLogger(db)


def _only_row(db: Database) -> dict[str, Any]:
    with db.read() as conn:
        (row,) = query_audit_trail(conn)
    return row


class TestAuditLogger:
    def test_price_locked(self, audit: AuditLogger, db: Database) -> None:
        audit.log_price_locked("admin-1", "load-1", None, Decimal("52000.00"), "fuel adjustment")

        row = _only_row(db)
        assert row["event_type"] == "price_locked"
        assert row["reason"] == "fuel adjustment"
        assert row["before_state"] == {"admin_final_price": None}
        assert row["after_state"] == {"admin_final_price": "52000.00", "price_locked": "true"}

    def test_price_unlocked(self, audit: AuditLogger, db: Database) -> None:
        audit.log_price_unlocked("admin-1", "load-1", Decimal("50000.00"), "renegotiating")

        row = _only_row(db)
        assert row["before_state"]["price_locked"] == "true"
        assert row["after_state"]["price_locked"] == "false"

    def test_bidding_reopened(self, audit: AuditLogger, db: Database) -> None:
        audit.log_bidding_reopened("admin-1", "load-1", "awarded", "bid-7", "carrier withdrew")

        row = _only_row(db)
        assert row["event_type"] == "bidding_reopened"
        assert row["before_state"] == {"status": "awarded", "awarded_bid_id": "bid-7"}
        assert row["after_state"] == {"status": "open_for_bid", "awarded_bid_id": None}

    def test_load_resolicited(self, audit: AuditLogger, db: Database) -> None:
        audit.log_load_resolicited("admin-1", "load-1", "counter_received")

        row = _only_row(db)
        assert row["before_state"] == {"status": "counter_received"}
        assert row["reason"] is None

    def test_invoice_revised(self, audit: AuditLogger, db: Database) -> None:
        audit.log_invoice_revised(
            "admin-1", "load-1", "inv-1", "inv-2", Decimal("49000.00"), Decimal("47000.00"), "agreed"
        )

        row = _only_row(db)
        assert row["invoice_id"] == "inv-2"
        assert row["before_state"] == {"invoice_id": "inv-1", "total_amount": "49000.00"}
        assert row["after_state"] == {"invoice_id": "inv-2", "total_amount": "47000.00"}

    def test_simulated_offer(self, audit: AuditLogger, db: Database) -> None:
        audit.log_simulated_offer("admin-1", "load-1", Decimal("46500.00"), "simulated_bid")

        row = _only_row(db)
        assert row["metadata"] == {"amount": "46500.00", "message_type": "simulated_bid"}

    def test_load_cancelled(self, audit: AuditLogger, db: Database) -> None:
        audit.log_load_cancelled("admin-1", "load-1", "invoice_sent", 0, "inv-1", None)

        row = _only_row(db)
        assert row["invoice_id"] == "inv-1"
        assert row["metadata"] == {"expired_bids": "0"}

    def test_returns_row_ids(self, audit: AuditLogger) -> None:
        first = audit.log(AuditEntry(event_type=EventType.PRICE_LOCKED, actor_id="a"))
        second = audit.log(AuditEntry(event_type=EventType.PRICE_LOCKED, actor_id="a"))
        assert second > first


class TestTransactionalWrites:
    def test_entry_rolls_back_with_the_action(self, audit: AuditLogger, db: Database) -> None:
        with pytest.raises(RuntimeError), db.transaction():
            audit.log_load_resolicited("admin-1", "load-1", "open_for_bid")
            raise RuntimeError("action failed")

        with db.read() as conn:
            assert query_audit_trail(conn) == []

    def test_entry_commits_with_the_action(self, audit: AuditLogger, db: Database) -> None:
        with db.transaction():
            audit.log_load_resolicited("admin-1", "load-1", "open_for_bid")

        assert _only_row(db)["event_type"] == "load_resolicited"
