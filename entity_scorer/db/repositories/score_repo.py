"""
Insert-only repository for computed scores (``score_history``).

Rows are never updated.  A recompute inserts a new row; old rows are removed
only by ``prune_older_than()``.  That keeps point-in-time queries
(``score_as_of``) answerable for as long as the retention allows.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from entity_scorer.db.repositories.base import BaseRepository
from entity_scorer.models.score import Score, SignalContribution
from entity_scorer.utils.time_utils import parse_iso, to_iso

logger = logging.getLogger(__name__)


class ScoreRepository(BaseRepository):
    """Read/write access to ``score_history``."""

    def insert_score(self, score: Score) -> int:
        """Persist ``score`` and return its ``score_id``."""
        cur = self.execute(
            """
            INSERT INTO score_history (
                entity_id, profile_id, profile_version, value, generation,
                computed_at, components, warnings, band
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                score.entity_id,
                score.profile_id,
                score.profile_version,
                score.value,
                score.generation,
                to_iso(score.computed_at),
                json.dumps([c.model_dump() for c in score.contributions]),
                json.dumps(list(score.warnings)),
                score.band,
            ),
        )
        return int(cur.lastrowid)

    def latest_score(
        self,
        entity_id:       str,
        profile_id:      str,
        profile_version: Optional[int] = None,
    ) -> Optional[Score]:
        """Most recently computed score, optionally for one profile version."""
        return self.score_as_of(entity_id, profile_id, None, profile_version)

    def score_as_of(
        self,
        entity_id:       str,
        profile_id:      str,
        as_of:           Optional[datetime],
        profile_version: Optional[int] = None,
    ) -> Optional[Score]:
        """The score that was current at ``as_of`` (latest with computed_at <= as_of).

        ``as_of=None`` means "now", i.e. the latest row.
        """
        sql = "SELECT * FROM score_history WHERE entity_id = ? AND profile_id = ?"
        params: list = [entity_id, profile_id]
        if as_of is not None:
            sql += " AND computed_at <= ?"
            params.append(to_iso(as_of))
        if profile_version is not None:
            sql += " AND profile_version = ?"
            params.append(profile_version)
        sql += " ORDER BY computed_at DESC, score_id DESC LIMIT 1;"

        row = self.fetchone(sql, tuple(params))
        return _row_to_score(row) if row else None

    def history(self, entity_id: str, profile_id: str, limit: int = 20) -> list[Score]:
        """Newest-first score history for one (entity, profile)."""
        rows = self.fetchall(
            """
            SELECT * FROM score_history
            WHERE entity_id = ? AND profile_id = ?
            ORDER BY computed_at DESC, score_id DESC
            LIMIT ?;
            """,
            (entity_id, profile_id, limit),
        )
        return [_row_to_score(r) for r in rows]

    def prune_older_than(self, cutoff: datetime, keep_latest: bool = True) -> int:
        """Delete scores computed before ``cutoff``.

        Args:
            cutoff:      Rows with ``computed_at < cutoff`` are candidates.
            keep_latest: Keep the newest row of every (entity, profile)
                         even when it is older than the cutoff.

        Returns:
            Number of rows deleted.
        """
        if keep_latest:
            cur = self.execute(
                """
                DELETE FROM score_history
                WHERE computed_at < ?
                  AND score_id NOT IN (
                      SELECT score_id FROM (
                          SELECT score_id,
                                 ROW_NUMBER() OVER (
                                     PARTITION BY entity_id, profile_id
                                     ORDER BY computed_at DESC, score_id DESC
                                 ) AS rn
                          FROM score_history
                      ) WHERE rn = 1
                  );
                """,
                (to_iso(cutoff),),
            )
        else:
            cur = self.execute(
                "DELETE FROM score_history WHERE computed_at < ?;",
                (to_iso(cutoff),),
            )
        logger.info("Pruned %d score_history row(s) older than %s", cur.rowcount, cutoff)
        return cur.rowcount


# ── Row mapper ─────────────────────────────────────────────────────────────────

def _row_to_score(row: sqlite3.Row) -> Score:
    keys = row.keys()
    return Score(
        score_id=row["score_id"],
        entity_id=row["entity_id"],
        profile_id=row["profile_id"],
        profile_version=row["profile_version"],
        value=row["value"],
        computed_at=parse_iso(row["computed_at"]),
        generation=row["generation"],
        contributions=tuple(
            SignalContribution(**c) for c in json.loads(row["components"] or "[]")
        ),
        warnings=tuple(json.loads(row["warnings"] or "[]")),
        band=row["band"] if "band" in keys else None,
    )
