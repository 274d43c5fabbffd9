"""Tests for audit trail storage and queries."""

from __future__ import annotations

import sqlite3

import pytest

from freight.audit.models import AuditEntry, EventType
from freight.audit.store import (
    init_audit_table,
    insert_audit_entry,
    query_audit_trail,
    query_state_changes,
)
from freight.domain.models import Load
from freight.domain.types import LoadStatus
from freight.store.database import Database
from freight.store.loads import LoadRepository


@pytest.fixture
def conn() -> sqlite3.Connection:
    """In-memory SQLite connection with only the audit table."""
    connection = sqlite3.connect(":memory:")
    init_audit_table(connection)
    return connection


def _entry(event_type: EventType = EventType.PRICE_LOCKED, **fields) -> AuditEntry:
    fields.setdefault("actor_id", "admin-1")
    return AuditEntry(event_type=event_type, **fields)


class TestInitAuditTable:
    def test_creates_table_and_indexes(self, conn: sqlite3.Connection) -> None:
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master")}
        assert "admin_audit_log" in names
        assert {"idx_audit_load", "idx_audit_actor", "idx_audit_timestamp"} <= names

    def test_is_idempotent(self, conn: sqlite3.Connection) -> None:
        init_audit_table(conn)


class TestInsertAuditEntry:
    def test_returns_row_id(self, conn: sqlite3.Connection) -> None:
        first = insert_audit_entry(conn, _entry())
        second = insert_audit_entry(conn, _entry())
        assert second == first + 1

    def test_json_fields_round_trip(self, conn: sqlite3.Connection) -> None:
        insert_audit_entry(
            conn,
            _entry(
                load_id="load-1",
                before_state={"admin_final_price": None},
                after_state={"admin_final_price": "50000.00", "price_locked": "true"},
                metadata={"source": "console"},
            ),
        )

        (row,) = query_audit_trail(conn)

        assert row["before_state"] == {"admin_final_price": None}
        assert row["after_state"]["price_locked"] == "true"
        assert row["metadata"] == {"source": "console"}
        assert row["timestamp"].endswith("Z")

    def test_missing_json_fields_stay_none(self, conn: sqlite3.Connection) -> None:
        insert_audit_entry(conn, _entry())
        (row,) = query_audit_trail(conn)
        assert row["before_state"] is None
        assert row["metadata"] is None


class TestQueryAuditTrail:
    @pytest.fixture(autouse=True)
    def _seed(self, conn: sqlite3.Connection) -> None:
        insert_audit_entry(conn, _entry(EventType.PRICE_LOCKED, load_id="load-1"))
        insert_audit_entry(conn, _entry(EventType.PRICE_UNLOCKED, load_id="load-1", actor_id="admin-2"))
        insert_audit_entry(conn, _entry(EventType.LOAD_CANCELLED, load_id="load-2"))

    def test_newest_first(self, conn: sqlite3.Connection) -> None:
        events = [r["event_type"] for r in query_audit_trail(conn)]
        assert events == ["load_cancelled", "price_unlocked", "price_locked"]

    @pytest.mark.parametrize(
        ("filters", "expected"),
        [
            ({"load_id": "load-1"}, ["price_unlocked", "price_locked"]),
            ({"actor_id": "admin-2"}, ["price_unlocked"]),
            ({"event_type": "load_cancelled"}, ["load_cancelled"]),
            ({"load_id": "load-1", "actor_id": "admin-1"}, ["price_locked"]),
            ({"to_date": "2000-01-01"}, []),
            ({"from_date": "2000-01-01", "limit": 1}, ["load_cancelled"]),
        ],
        ids=["load", "actor", "event", "load_and_actor", "before_everything", "limit"],
    )
    def test_filters(self, conn: sqlite3.Connection, filters: dict, expected: list[str]) -> None:
        assert [r["event_type"] for r in query_audit_trail(conn, **filters)] == expected

    def test_filter_values_are_parameters(self, conn: sqlite3.Connection) -> None:
        assert query_audit_trail(conn, load_id="' OR '1'='1") == []


class TestQueryStateChanges:
    def test_filters_change_log(self, db: Database) -> None:
        loads = LoadRepository(db)
        loads.insert(Load(id="load-1", shipper_id="s1", pickup_city="Pune", dropoff_city="Goa"))
        loads.append_state_change("load-1", "s1", LoadStatus.DRAFT, LoadStatus.PENDING, metadata={"k": "v"})
        loads.append_state_change("load-1", "admin-1", LoadStatus.PENDING, LoadStatus.PRICED)

        with db.read() as conn:
            everything = query_state_changes(conn, load_id="load-1")
            priced = query_state_changes(conn, to_state="priced")
            by_shipper = query_state_changes(conn, actor_id="s1")

        assert [r["to_state"] for r in everything] == ["priced", "pending"]
        assert [r["actor_id"] for r in priced] == ["admin-1"]
        assert by_shipper[0]["metadata"] == {"k": "v"}
