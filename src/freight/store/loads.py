"""Load repository: rows, compare-and-swap updates, and the state change log.

Uses parameterized queries exclusively.  Column names in dynamic ``UPDATE``
statements come from a fixed whitelist, never from caller strings.
"""

from __future__ import annotations

from typing import Any

from freight.domain.errors import ConcurrencyConflictError, LoadNotFoundError
from freight.domain.models import Load, LoadStateChange, utc_now
from freight.domain.types import LoadStatus
from freight.store.database import Database
from freight.store.serializers import dumps_json, model_to_row, row_to_model, to_db

_LOAD_JSON_COLUMNS = ("price_breakdown", "invited_carrier_ids")

# Fields that may be changed through compare_and_swap().
UPDATABLE_LOAD_FIELDS: frozenset[str] = frozenset(
    {
        "assigned_carrier_id",
        "status",
        "previous_status",
        "admin_suggested_price",
        "admin_final_price",
        "price_breakdown",
        "price_locked",
        "price_locked_by",
        "price_locked_at",
        "post_mode",
        "invited_carrier_ids",
        "awarded_bid_id",
        "awarded_amount",
        "invoice_id",
    }
)


class LoadRepository:
    """Persist and retrieve loads and their state change log."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def insert(self, load: Load) -> Load:
        """Insert a brand-new load row.

        Args:
            load: The load snapshot to persist (normally at version 1).

        Returns:
            The same snapshot.
        """
        row = model_to_row(load)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        with self._db.transaction() as conn:
            conn.execute(f"INSERT INTO loads ({columns}) VALUES ({placeholders})", tuple(row.values()))
        return load

    def compare_and_swap(self, load_id: str, expected_version: int, changes: dict[str, Any]) -> Load:
        """Apply *changes* only if the row is still at *expected_version*.

        Bumps ``version`` by one and stamps ``updated_at``.

        Args:
            load_id: The load to update.
            expected_version: The version the caller last observed.
            changes: Field -> new value; keys must be in ``UPDATABLE_LOAD_FIELDS``.

        Returns:
            The updated load snapshot.

        Raises:
            LoadNotFoundError: If the load does not exist.
            ConcurrencyConflictError: If the stored version differs.
        """
        unknown = set(changes) - UPDATABLE_LOAD_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable on loads: {sorted(unknown)}")

        assignments = [f"{name} = ?" for name in changes]
        assignments += ["version = version + 1", "updated_at = ?"]
        params: list[Any] = [to_db(value) for value in changes.values()]
        params += [to_db(utc_now()), load_id, expected_version]

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE loads SET {', '.join(assignments)} WHERE id = ? AND version = ?",
                params,
            )
            if cursor.rowcount == 0:
                current = self.get(load_id)
                if current is None:
                    raise LoadNotFoundError(load_id)
                raise ConcurrencyConflictError("load", load_id, expected_version, current.version)
            return self.require(load_id)

    def append_state_change(
        self,
        load_id: str,
        actor_id: str,
        from_state: LoadStatus,
        to_state: LoadStatus,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Append one row to the state change log.

        Returns:
            The row ID of the inserted change.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO load_state_changes (
                    load_id, actor_id, from_state, to_state, reason, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    load_id,
                    actor_id,
                    from_state.value,
                    to_state.value,
                    reason,
                    dumps_json(metadata or {}),
                    to_db(utc_now()),
                ),
            )
            return cursor.lastrowid or 0

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get(self, load_id: str) -> Load | None:
        """Return the load with *load_id*, or ``None``."""
        with self._db.read() as conn:
            row = conn.execute("SELECT * FROM loads WHERE id = ?", (load_id,)).fetchone()
        return row_to_model(row, Load, _LOAD_JSON_COLUMNS) if row else None

    def require(self, load_id: str) -> Load:
        """Return the load with *load_id* or raise ``LoadNotFoundError``."""
        load = self.get(load_id)
        if load is None:
            raise LoadNotFoundError(load_id)
        return load

    def find(
        self,
        *,
        status: LoadStatus | None = None,
        shipper_id: str | None = None,
        limit: int = 100,
    ) -> list[Load]:
        """List loads, newest first, with optional filters."""
        conditions: list[str] = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if shipper_id is not None:
            conditions.append("shipper_id = ?")
            params.append(shipper_id)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        with self._db.read() as conn:
            rows = conn.execute(
                f"SELECT * FROM loads {where_clause} ORDER BY created_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [row_to_model(row, Load, _LOAD_JSON_COLUMNS) for row in rows]

    def list_state_changes(self, load_id: str) -> list[LoadStateChange]:
        """Return the load's state change log in the order it was written."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM load_state_changes WHERE load_id = ? ORDER BY id",
                (load_id,),
            ).fetchall()
        return [row_to_model(row, LoadStateChange, ("metadata",)) for row in rows]
