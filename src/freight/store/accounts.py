"""SQLite-backed account directory.

Onboarding and KYC review live outside the core; this table only records the
outcome (role and verified flag) that load submission checks against.
"""

from __future__ import annotations

from freight.domain.models import utc_now
from freight.domain.types import UserRole
from freight.store.database import Database
from freight.store.serializers import to_db


class SqliteAccountDirectory:
    """Answer "is this user a verified account of this role" from the ``accounts`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def register(self, user_id: str, role: UserRole, verified: bool = False) -> None:
        """Create or replace an account record.

        Args:
            user_id: The external user identifier.
            role: The account's marketplace role.
            verified: Whether onboarding review has passed.
        """
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO accounts (id, role, is_verified, created_at) "
                "VALUES (?, ?, ?, COALESCE((SELECT created_at FROM accounts WHERE id = ?), ?))",
                (user_id, role.value, int(verified), user_id, to_db(utc_now())),
            )

    def is_verified(self, user_id: str, role: UserRole) -> bool:
        """Return True if *user_id* exists with *role* and is verified."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT is_verified FROM accounts WHERE id = ? AND role = ?",
                (user_id, role.value),
            ).fetchone()
        return bool(row and row[0])
