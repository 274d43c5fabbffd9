"""SQLite-backed admin audit trail and change log queries.

Provides functions to create the audit table, insert audit entries, and query
both the admin audit trail and the load state change log with flexible
filtering.  Uses parameterized queries exclusively (never string
concatenation of values) to prevent SQL injection.

Inserts do not commit: they run inside the caller's transaction so an audit
row is written if and only if the action it describes is.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

from freight.audit.models import AuditEntry


def init_audit_table(conn: sqlite3.Connection) -> None:
    """Create the admin_audit_log table and its indexes if missing.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS admin_audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            event_type TEXT NOT NULL,
            actor_id TEXT NOT NULL,
            load_id TEXT,
            invoice_id TEXT,
            reason TEXT,
            before_state TEXT,
            after_state TEXT,
            metadata TEXT
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_load ON admin_audit_log (load_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON admin_audit_log (actor_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON admin_audit_log (timestamp)")


def _json_or_none(value: dict[str, Any] | None) -> str | None:
    return json.dumps(value) if value is not None else None


def insert_audit_entry(conn: sqlite3.Connection, entry: AuditEntry) -> int:
    """Insert an audit entry.

    Args:
        conn: An open database connection, normally inside a transaction.
        entry: The audit entry to insert.

    Returns:
        The row ID of the inserted entry.
    """
    timestamp = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

    cursor = conn.execute(
        """
        INSERT INTO admin_audit_log (
            timestamp, event_type, actor_id, load_id, invoice_id,
            reason, before_state, after_state, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            timestamp,
            entry.event_type.value,
            entry.actor_id,
            entry.load_id,
            entry.invoice_id,
            entry.reason,
            _json_or_none(entry.before_state),
            _json_or_none(entry.after_state),
            _json_or_none(entry.metadata),
        ),
    )
    return cursor.lastrowid or 0


def _where(conditions: list[str]) -> str:
    return "WHERE " + " AND ".join(conditions) if conditions else ""


def _decode(rows: list[sqlite3.Row], json_fields: tuple[str, ...]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for row in rows:
        row_dict = dict(row)
        for field in json_fields:
            if row_dict.get(field) is not None:
                row_dict[field] = json.loads(row_dict[field])
        results.append(row_dict)
    return results


def query_audit_trail(
    conn: sqlite3.Connection,
    *,
    load_id: str | None = None,
    actor_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    event_type: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Query the admin audit trail with flexible filtering.

    All filters are optional.  Results are ordered newest first.

    Args:
        conn: An open database connection.
        load_id: Filter by load ID (exact match).
        actor_id: Filter by acting admin (exact match).
        from_date: Filter entries on or after this ISO 8601 date.
        to_date: Filter entries on or before this ISO 8601 date.
        event_type: Filter by event type (exact match).
        limit: Maximum number of results to return (default 50).

    Returns:
        A list of dicts, one per matching entry, newest first.
    """
    conn.row_factory = sqlite3.Row

    conditions: list[str] = []
    params: list[str | int] = []

    if load_id is not None:
        conditions.append("load_id = ?")
        params.append(load_id)
    if actor_id is not None:
        conditions.append("actor_id = ?")
        params.append(actor_id)
    if from_date is not None:
        conditions.append("timestamp >= ?")
        params.append(from_date)
    if to_date is not None:
        conditions.append("timestamp <= ?")
        params.append(to_date)
    if event_type is not None:
        conditions.append("event_type = ?")
        params.append(event_type)

    params.append(limit)
    cursor = conn.execute(
        f"SELECT * FROM admin_audit_log {_where(conditions)} ORDER BY id DESC LIMIT ?",
        params,
    )
    return _decode(cursor.fetchall(), ("before_state", "after_state", "metadata"))


def query_state_changes(
    conn: sqlite3.Connection,
    *,
    load_id: str | None = None,
    actor_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    to_state: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """Query the load state change log, newest first.

    Args:
        conn: An open database connection.
        load_id: Filter by load ID.
        actor_id: Filter by the actor who made the transition.
        from_date: Filter changes on or after this ISO 8601 date.
        to_date: Filter changes on or before this ISO 8601 date.
        to_state: Filter by the state entered.
        limit: Maximum number of results to return (default 50).

    Returns:
        A list of dicts, one per matching change row.
    """
    conn.row_factory = sqlite3.Row

    conditions: list[str] = []
    params: list[str | int] = []

    if load_id is not None:
        conditions.append("load_id = ?")
        params.append(load_id)
    if actor_id is not None:
        conditions.append("actor_id = ?")
        params.append(actor_id)
    if from_date is not None:
        conditions.append("created_at >= ?")
        params.append(from_date)
    if to_date is not None:
        conditions.append("created_at <= ?")
        params.append(to_date)
    if to_state is not None:
        conditions.append("to_state = ?")
        params.append(to_state)

    params.append(limit)
    cursor = conn.execute(
        f"SELECT * FROM load_state_changes {_where(conditions)} ORDER BY id DESC LIMIT ?",
        params,
    )
    return _decode(cursor.fetchall(), ("metadata",))
