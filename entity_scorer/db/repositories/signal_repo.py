"""
Repository for entities and their raw signal values.

Every signal write bumps the owning entity's ``generation`` in the same
statement batch.  The service hands that generation to the score cache as
its ``generation_hint``, which is how a write makes cached scores STALE.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from entity_scorer.db.repositories.base import BaseRepository
from entity_scorer.models.entity import Entity
from entity_scorer.utils.time_utils import parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)


class SignalRepository(BaseRepository):
    """Read/write access to ``entities`` and ``entity_signals``."""

    # ── Entities ───────────────────────────────────────────────────────────────

    def upsert_entity(self, entity: Entity, created_at: Optional[datetime] = None) -> None:
        """Insert an entity, or update its type if it already exists.

        ``created_at`` is only applied on first insert.
        """
        self.execute(
            """
            INSERT INTO entities (entity_id, entity_type, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                entity_type = excluded.entity_type,
                updated_at  = excluded.updated_at;
            """,
            (
                entity.entity_id,
                entity.entity_type,
                to_iso(created_at or utcnow()),
                to_iso(utcnow()),
            ),
        )

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self.fetchone(
            "SELECT entity_id, entity_type FROM entities WHERE entity_id = ?;",
            (entity_id,),
        )
        if row is None:
            return None
        return Entity(entity_id=row["entity_id"], entity_type=row["entity_type"])

    def list_entities(self, entity_type: Optional[str] = None) -> list[Entity]:
        if entity_type:
            rows = self.fetchall(
                "SELECT entity_id, entity_type FROM entities WHERE entity_type = ? "
                "ORDER BY entity_id;",
                (entity_type,),
            )
        else:
            rows = self.fetchall(
                "SELECT entity_id, entity_type FROM entities ORDER BY entity_id;"
            )
        return [Entity(entity_id=r["entity_id"], entity_type=r["entity_type"]) for r in rows]

    def delete_entity(self, entity_id: str) -> bool:
        """Delete an entity and (by cascade) its signals.  Returns True if it existed."""
        cur = self.execute("DELETE FROM entities WHERE entity_id = ?;", (entity_id,))
        return cur.rowcount > 0

    def get_generation(self, entity_id: str) -> int:
        """Current signal generation of ``entity_id`` (0 if unknown)."""
        return int(
            self.fetchvalue(
                "SELECT generation FROM entities WHERE entity_id = ?;",
                (entity_id,),
                default=0,
            )
        )

    def created_at_map(self, entity_ids: Iterable[str]) -> dict[str, datetime]:
        """Map entity ids to their ``created_at``; unknown ids are omitted."""
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self.fetchall(
            f"SELECT entity_id, created_at FROM entities WHERE entity_id IN ({placeholders});",
            tuple(ids),
        )
        result: dict[str, datetime] = {}
        for r in rows:
            ts = parse_iso(r["created_at"])
            if ts is not None:
                result[r["entity_id"]] = ts
        return result

    # ── Signals ────────────────────────────────────────────────────────────────

    def upsert_signal(
        self,
        entity_id:   str,
        signal_name: str,
        value:       float,
        observed_at: Optional[datetime] = None,
    ) -> int:
        """Write one signal value and bump the entity's generation.

        Args:
            entity_id:   Existing entity (FK to ``entities``).
            signal_name: Signal name.
            value:       Raw numeric value.
            observed_at: When the fact was observed (default: now).

        Returns:
            The entity's new generation.

        Raises:
            sqlite3.IntegrityError: If ``entity_id`` is not a known entity.
        """
        self.execute(
            """
            INSERT INTO entity_signals (entity_id, signal_name, value, observed_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(entity_id, signal_name) DO UPDATE SET
                value       = excluded.value,
                observed_at = excluded.observed_at;
            """,
            (entity_id, signal_name, float(value), to_iso(observed_at or utcnow())),
        )
        return self.bump_generation(entity_id)

    def delete_signal(self, entity_id: str, signal_name: str) -> int:
        """Remove one signal value.  Returns the entity's (possibly bumped) generation."""
        cur = self.execute(
            "DELETE FROM entity_signals WHERE entity_id = ? AND signal_name = ?;",
            (entity_id, signal_name),
        )
        if cur.rowcount == 0:
            return self.get_generation(entity_id)
        return self.bump_generation(entity_id)

    def get_signal(self, entity_id: str, signal_name: str) -> Optional[float]:
        value = self.fetchvalue(
            "SELECT value FROM entity_signals WHERE entity_id = ? AND signal_name = ?;",
            (entity_id, signal_name),
        )
        return float(value) if value is not None else None

    def list_signals(self, entity_id: str) -> dict[str, float]:
        rows = self.fetchall(
            "SELECT signal_name, value FROM entity_signals WHERE entity_id = ? "
            "ORDER BY signal_name;",
            (entity_id,),
        )
        return {r["signal_name"]: float(r["value"]) for r in rows}

    def bump_generation(self, entity_id: str) -> int:
        """Increment the generation of ``entity_id`` (marks cached scores stale)."""
        self.execute(
            """
            UPDATE entities
            SET generation = generation + 1, updated_at = ?
            WHERE entity_id = ?;
            """,
            (to_iso(utcnow()), entity_id),
        )
        generation = self.get_generation(entity_id)
        logger.debug("Entity %s now at generation %d", entity_id, generation)
        return generation
