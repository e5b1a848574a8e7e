"""
SQLite-backed signal collector reading ``entity_signals``.

The weighting engine fetches the terms of one profile concurrently, so this
collector owns a single connection opened with ``check_same_thread=False``
and serialises access to it with a lock.  Any ``sqlite3.Error`` becomes a
``SignalFetchError`` so the engine degrades the signal to 0 instead of
aborting the pass.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Optional

from entity_scorer.config import DatabaseConfig
from entity_scorer.db.connection import open_connection
from entity_scorer.errors import SignalFetchError
from entity_scorer.signals.base import SignalCollector

logger = logging.getLogger(__name__)


class SqliteSignalCollector(SignalCollector):
    """Reads raw signal values from the ``entity_signals`` table.

    Usage::

        collector = SqliteSignalCollector.from_config(config.database)
        value = collector.fetch_signal("cust-1", "interaction_count")
        collector.close()
    """

    def __init__(self, conn: sqlite3.Connection, owns_connection: bool = False) -> None:
        self._conn = conn
        self._owns_connection = owns_connection
        self._lock = threading.Lock()

    @classmethod
    def from_path(
        cls,
        db_path:         str,
        wal_mode:        bool = True,
        busy_timeout_ms: int = 5000,
    ) -> "SqliteSignalCollector":
        conn = open_connection(
            db_path,
            wal_mode=wal_mode,
            busy_timeout_ms=busy_timeout_ms,
            check_same_thread=False,
        )
        return cls(conn, owns_connection=True)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "SqliteSignalCollector":
        return cls.from_path(config.db_path, config.wal_mode, config.busy_timeout_ms)

    def fetch_signal(self, entity_id: str, signal_name: str) -> Optional[float]:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM entity_signals WHERE entity_id = ? AND signal_name = ?;",
                    (entity_id, signal_name),
                ).fetchone()
        except sqlite3.Error as exc:
            raise SignalFetchError(entity_id, signal_name, f"sqlite error: {exc}") from exc

        if row is None or row[0] is None:
            return None
        return float(row[0])

    def close(self) -> None:
        if self._owns_connection:
            with self._lock:
                self._conn.close()
