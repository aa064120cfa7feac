"""Lazily-connecting sqlite accessor for job code.

The connection is opened on first use. Daemon.db hands one out per process
and drops it before every fork, so a worker always opens its own.
"""

import sqlite3
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from taskdaemon.errors import DatabaseAccessError

log = structlog.get_logger()

Params = Sequence[Any] | Mapping[str, Any]


class Connection:
    """Thin wrapper over sqlite3 returning plain Python values.

    Every driver failure surfaces as DatabaseAccessError carrying the
    statement and parameters.
    """

    def __init__(self, database: str | Path, timeout: float = 5.0):
        self.database = str(database)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

    @property
    def active(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        """Open the connection if it isn't already."""
        if self._conn is None:
            if not self.database:
                raise DatabaseAccessError("Database path must not be empty")
            try:
                conn = sqlite3.connect(self.database, timeout=self.timeout)
            except sqlite3.Error as e:
                raise DatabaseAccessError(f"Cannot open database {self.database}: {e}") from e
            conn.row_factory = sqlite3.Row
            self._conn = conn
            log.debug("database_opened", database=self.database)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _run(self, statement: str, params: Params | None) -> sqlite3.Cursor:
        conn = self.open()
        return conn.execute(statement, params if params is not None else ())

    def execute(self, statement: str, params: Params | None = None) -> int:
        """Run a data-modifying statement and commit.

        Returns:
            Number of rows affected.
        """
        try:
            cursor = self._run(statement, params)
            self._conn.commit()  # type: ignore[union-attr]
            return cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseAccessError(f"SQL execute failed: {e}", statement, params) from e

    def query_all(self, statement: str, params: Params | None = None) -> list[dict]:
        """Return every row as a dict. Empty list if nothing matched."""
        try:
            return [dict(row) for row in self._run(statement, params).fetchall()]
        except sqlite3.Error as e:
            raise DatabaseAccessError(f"SQL query failed: {e}", statement, params) from e

    def query_row(self, statement: str, params: Params | None = None) -> dict | None:
        """Return the first row as a dict, or None."""
        try:
            row = self._run(statement, params).fetchone()
        except sqlite3.Error as e:
            raise DatabaseAccessError(f"SQL query failed: {e}", statement, params) from e
        return dict(row) if row is not None else None

    def query_scalar(self, statement: str, params: Params | None = None) -> Any:
        """Return the first column of the first row, or None."""
        try:
            row = self._run(statement, params).fetchone()
        except sqlite3.Error as e:
            raise DatabaseAccessError(f"SQL query failed: {e}", statement, params) from e
        return row[0] if row is not None else None

    def query_column(self, statement: str, params: Params | None = None) -> list:
        """Return the first column of every row."""
        try:
            return [row[0] for row in self._run(statement, params).fetchall()]
        except sqlite3.Error as e:
            raise DatabaseAccessError(f"SQL query failed: {e}", statement, params) from e
