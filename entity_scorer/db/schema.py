"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**.

Tables:
  1. entities        — identity + per-entity signal generation counter
  2. entity_signals  (→ entities) — latest raw value per (entity, signal)
  3. score_history   — insert-only computed scores (no FK: scored entities
                       may live in an external signal service)

Scores are never updated in place; ``score_history`` only ever receives
INSERTs and age-based DELETEs (see ``ScoreRepository.prune_older_than``).
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_ENTITIES = """
CREATE TABLE IF NOT EXISTS entities (
    entity_id    TEXT    PRIMARY KEY,
    entity_type  TEXT    NOT NULL,
    generation   INTEGER NOT NULL DEFAULT 0 CHECK (generation >= 0),
    created_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_ENTITIES_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_entities_type
    ON entities(entity_type, created_at DESC);
"""

_DDL_ENTITY_SIGNALS = """
CREATE TABLE IF NOT EXISTS entity_signals (
    entity_id    TEXT    NOT NULL REFERENCES entities(entity_id) ON DELETE CASCADE,
    signal_name  TEXT    NOT NULL,
    value        REAL    NOT NULL,
    observed_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (entity_id, signal_name)
);
"""

_DDL_SCORE_HISTORY = """
CREATE TABLE IF NOT EXISTS score_history (
    score_id         INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id        TEXT    NOT NULL,
    profile_id       TEXT    NOT NULL,
    profile_version  INTEGER NOT NULL CHECK (profile_version >= 1),
    value            REAL    NOT NULL CHECK (value >= 0),
    generation       INTEGER NOT NULL DEFAULT 0,
    computed_at      TEXT    NOT NULL,
    components       TEXT    NOT NULL DEFAULT '[]',
    warnings         TEXT    NOT NULL DEFAULT '[]',
    created_at       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_SCORE_HISTORY_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_score_history_lookup
    ON score_history(entity_id, profile_id, computed_at DESC);
CREATE INDEX IF NOT EXISTS idx_score_history_computed
    ON score_history(computed_at);
"""

_ALL_DDL = [
    _DDL_ENTITIES,
    _DDL_ENTITIES_INDEXES,
    _DDL_ENTITY_SIGNALS,
    _DDL_SCORE_HISTORY,
    _DDL_SCORE_HISTORY_INDEXES,
]

ALL_TABLE_NAMES = [
    "entities",
    "entity_signals",
    "score_history",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row[0] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row[0] for row in rows]
