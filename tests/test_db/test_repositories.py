"""
Tests for the SQLite repositories.

What we test
------------
SignalRepository:
  - upsert_entity inserts, then updates the type but keeps created_at.
  - upsert_signal writes / overwrites and bumps the generation each time.
  - delete_signal bumps only when something was deleted.
  - bump_generation increments; unknown entities stay at 0.
  - Signals for unknown entities violate the FK.
  - delete_entity cascades to signals.
  - created_at_map omits unknown ids.
  - Queries against a database without the schema raise
    DatabaseNotInitializedError instead of a raw OperationalError.

ScoreRepository:
  - insert_score round-trips contributions, warnings and band.
  - Rows are insert-only: recomputes add rows, history is newest-first.
  - score_as_of returns the score current at a point in time (or None).
  - latest_score can pin a profile version.
  - prune_older_than keeps the newest row per (entity, profile) by default.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from entity_scorer.db.repositories.score_repo import ScoreRepository
from entity_scorer.db.repositories.signal_repo import SignalRepository
from entity_scorer.errors import DatabaseNotInitializedError
from entity_scorer.models.entity import Entity
from entity_scorer.models.score import Score, SignalContribution

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _score(value: float, at: datetime, entity_id: str = "e1", version: int = 1, **kw) -> Score:
    return Score(
        entity_id=entity_id,
        profile_id="lead_score",
        profile_version=version,
        value=value,
        computed_at=at,
        **kw,
    )


class TestSignalRepository:
    def test_entity_upsert_keeps_created_at(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="lead"), created_at=T0)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"), created_at=T0 + timedelta(days=9))

        assert repo.get_entity("e1") == Entity(entity_id="e1", entity_type="customer")
        assert repo.created_at_map(["e1", "ghost"]) == {"e1": T0}

    def test_upsert_signal_bumps_generation(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"))

        assert repo.get_generation("e1") == 0
        assert repo.upsert_signal("e1", "interaction_count", 3) == 1
        assert repo.upsert_signal("e1", "interaction_count", 5) == 2
        assert repo.get_signal("e1", "interaction_count") == pytest.approx(5.0)
        assert repo.list_signals("e1") == {"interaction_count": 5.0}

    def test_bump_generation(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"))

        assert repo.bump_generation("e1") == 1
        assert repo.bump_generation("e1") == 2
        assert repo.bump_generation("ghost") == 0

    def test_missing_signal_is_none(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"))
        assert repo.get_signal("e1", "nope") is None
        assert repo.get_generation("ghost") == 0

    def test_delete_signal(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"))
        repo.upsert_signal("e1", "a", 1)

        assert repo.delete_signal("e1", "a") == 2
        assert repo.delete_signal("e1", "a") == 2
        assert repo.get_signal("e1", "a") is None

    def test_signal_for_unknown_entity_rejected(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            SignalRepository(in_memory_db).upsert_signal("ghost", "a", 1)

    def test_delete_entity_cascades(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="e1", entity_type="customer"))
        repo.upsert_signal("e1", "a", 1)

        assert repo.delete_entity("e1") is True
        assert repo.delete_entity("e1") is False
        count = in_memory_db.execute("SELECT COUNT(*) FROM entity_signals;").fetchone()[0]
        assert count == 0

    def test_list_entities_by_type(self, in_memory_db):
        repo = SignalRepository(in_memory_db)
        repo.upsert_entity(Entity(entity_id="b", entity_type="donor"))
        repo.upsert_entity(Entity(entity_id="a", entity_type="donor"))
        repo.upsert_entity(Entity(entity_id="c", entity_type="customer"))
        assert [e.entity_id for e in repo.list_entities("donor")] == ["a", "b"]
        assert len(repo.list_entities()) == 3

    def test_missing_schema_reports_init_db(self):
        conn = sqlite3.connect(":memory:")
        try:
            with pytest.raises(DatabaseNotInitializedError, match="init-db"):
                SignalRepository(conn).get_generation("x")
        finally:
            conn.close()


class TestScoreRepository:
    def test_round_trip(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        original = _score(
            45.0,
            T0,
            generation=3,
            contributions=(
                SignalContribution(signal_name="a", raw_value=10.0, sub_score=10.0,
                                   weight=1.0, contribution=10.0),
                SignalContribution(signal_name="b", weight=2.0, status="timeout"),
            ),
            warnings=("b: timed out after 2.00s",),
            band="warm",
        )
        score_id = repo.insert_score(original)
        loaded = repo.latest_score("e1", "lead_score")

        assert loaded.score_id == score_id
        assert loaded.model_copy(update={"score_id": None}) == original

    def test_insert_only_history(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        for i in range(3):
            repo.insert_score(_score(10.0 * i, T0 + timedelta(hours=i)))

        rows = repo.history("e1", "lead_score")
        assert [r.value for r in rows] == [20.0, 10.0, 0.0]
        assert len(repo.history("e1", "lead_score", limit=2)) == 2

    def test_score_as_of(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        repo.insert_score(_score(10.0, T0))
        repo.insert_score(_score(20.0, T0 + timedelta(hours=2)))

        assert repo.score_as_of("e1", "lead_score", T0 - timedelta(seconds=1)) is None
        assert repo.score_as_of("e1", "lead_score", T0 + timedelta(hours=1)).value == 10.0
        assert repo.score_as_of("e1", "lead_score", T0 + timedelta(hours=2)).value == 20.0

    def test_sub_second_ordering(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        repo.insert_score(_score(1.0, T0 + timedelta(microseconds=500)))
        repo.insert_score(_score(2.0, T0))
        assert repo.latest_score("e1", "lead_score").value == 1.0

    def test_latest_pinned_version(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        repo.insert_score(_score(10.0, T0, version=1))
        repo.insert_score(_score(30.0, T0 + timedelta(hours=1), version=2))

        assert repo.latest_score("e1", "lead_score").profile_version == 2
        assert repo.latest_score("e1", "lead_score", profile_version=1).value == 10.0

    def test_prune_keeps_latest(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        repo.insert_score(_score(1.0, T0 - timedelta(days=40)))
        repo.insert_score(_score(2.0, T0 - timedelta(days=35)))
        repo.insert_score(_score(3.0, T0 - timedelta(days=40), entity_id="e2"))
        repo.insert_score(_score(4.0, T0, entity_id="e2"))

        deleted = repo.prune_older_than(T0 - timedelta(days=30))

        assert deleted == 2
        assert [s.value for s in repo.history("e1", "lead_score")] == [2.0]
        assert [s.value for s in repo.history("e2", "lead_score")] == [4.0]

    def test_prune_everything_old(self, in_memory_db):
        repo = ScoreRepository(in_memory_db)
        repo.insert_score(_score(1.0, T0 - timedelta(days=40)))
        assert repo.prune_older_than(T0 - timedelta(days=30), keep_latest=False) == 1
        assert repo.latest_score("e1", "lead_score") is None
