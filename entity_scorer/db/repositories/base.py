"""
Base repository providing shared SQLite execution helpers.

Repositories receive a ``sqlite3.Connection`` at construction time; the
caller owns the connection (usually via ``get_connection()``) and decides
when to commit.

  - No ORM — all SQL is explicit and lives in repository methods.
  - Repositories speak Pydantic models, not raw rows.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from entity_scorer.errors import DatabaseNotInitializedError

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Run one statement.

        Raises:
            DatabaseNotInitializedError: If a table is missing (``init-db``
                was never run against this file).
        """
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        try:
            return self.conn.execute(sql, params)
        except sqlite3.OperationalError as exc:
            if str(exc).startswith("no such table"):
                raise DatabaseNotInitializedError(str(exc)) from exc
            raise

    def executemany(self, sql: str, params_list: list[Params]) -> sqlite3.Cursor:
        logger.debug("SQL (many): %s | count: %d", sql.strip(), len(params_list))
        try:
            return self.conn.executemany(sql, params_list)
        except sqlite3.OperationalError as exc:
            if str(exc).startswith("no such table"):
                raise DatabaseNotInitializedError(str(exc)) from exc
            raise

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def fetchvalue(self, sql: str, params: Params = (), default: Any = None) -> Any:
        """Return the first column of the first row, or ``default``."""
        row = self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]
