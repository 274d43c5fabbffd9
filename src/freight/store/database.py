"""Shared SQLite connection with an explicit transaction scope.

All repositories go through one ``Database``.  Writes happen inside
``transaction()`` which opens ``BEGIN IMMEDIATE`` (one writer at a time,
across processes too), commits on success and rolls back on any exception,
so a rejected operation leaves storage untouched.  Nested ``transaction()``
calls join the outer one.  Reads go through ``read()`` so they never observe
another thread's uncommitted writes on the shared connection.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from freight.store.schema import TABLES, init_schema

logger = structlog.get_logger()

MEMORY = ":memory:"


class Database:
    """Thread-safe wrapper around a single sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Wrap an already-initialized connection.

        Args:
            conn: A connection opened with ``isolation_level=None`` and
                  ``check_same_thread=False`` whose schema is in place.
        """
        self._conn = conn
        self._lock = threading.RLock()
        self._depth = 0
        self._on_commit: list[Callable[[], None]] = []

    @classmethod
    def open(cls, path: Path | str = MEMORY) -> Database:
        """Open (and create if needed) the freight database at *path*.

        File databases use WAL mode; ``":memory:"`` is supported for tests.

        Args:
            path: Filesystem path or ``":memory:"``.

        Returns:
            A ready-to-use ``Database``.
        """
        if str(path) != MEMORY:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(path),
            check_same_thread=False,
            isolation_level=None,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        if str(path) != MEMORY:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        init_schema(conn)
        logger.debug("database_opened", path=str(path))
        return cls(conn)

    @property
    def in_transaction(self) -> bool:
        """Return True while the calling thread holds an open transaction."""
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block as one atomic unit of work.

        Yields:
            The underlying connection, for use by repositories.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            self._on_commit = []
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error:
                    # A failed COMMIT (busy, deferred constraint) leaves the transaction open.
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise
                callbacks, self._on_commit = self._on_commit, []
                self._depth = 0
                for callback in callbacks:
                    callback()
            finally:
                self._depth = 0
                self._on_commit = []

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run *callback* once the outermost transaction commits.

        Callbacks are dropped if the transaction rolls back.  Outside a
        transaction the callback runs immediately.
        """
        if self._depth == 0:
            callback()
            return
        self._on_commit.append(callback)

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock for a consistent read.

        Yields:
            The underlying connection.
        """
        with self._lock:
            yield self._conn

    def ping(self) -> bool:
        """Return True if the connection answers ``SELECT 1``."""
        with self.read() as conn:
            conn.execute("SELECT 1")
        return True

    def missing_tables(self) -> list[str]:
        """Return the freight tables absent from the connected database."""
        with self.read() as conn:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        present = {row[0] for row in rows}
        return [name for name in TABLES if name not in present]

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
