"""
Scoring service: the public ``score()`` / ``recommend()`` API.

Wiring::

    ProfileStore ──get_profile──┐
                                ▼
    SignalCollector ──▶ WeightingEngine ──▶ ScoreCache ──▶ ranker.rank()
                                  │
                                  └──▶ ScoreRepository (score_history, optional)

The cache's compute function is ``ScoringService._compute``: it runs the
engine and, when history persistence is on, inserts the new score into
``score_history``.  Cache hits are never re-persisted.

When a database is configured the service also reads entity generations
(passed to the cache as ``generation_hint``), entity types and creation
times from it.  Without a database those lookups are skipped and callers
report signal changes through ``notify_signal_change()``.

Usage::

    service = ScoringService.from_config(load_config())
    score = service.score("cust-1", "lead_score")
    recs = service.recommend(RecommendationRequest(...))
    service.close()
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Union

from entity_scorer.config import AppConfig, DatabaseConfig
from entity_scorer.db.connection import get_connection
from entity_scorer.db.repositories.score_repo import ScoreRepository
from entity_scorer.db.repositories.signal_repo import SignalRepository
from entity_scorer.errors import InvalidRequestError, UnknownProfileError
from entity_scorer.models.entity import Candidate
from entity_scorer.models.profile import ScoringProfile
from entity_scorer.models.score import Recommendation, RecommendationRequest, Score, build_request
from entity_scorer.profiles.registry import ProfileStore
from entity_scorer.scoring.cache import ScoreCache
from entity_scorer.scoring.engine import WeightingEngine
from entity_scorer.scoring.ranker import rank
from entity_scorer.signals.base import SignalCollector
from entity_scorer.utils.logging import score_context
from entity_scorer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class ScoringService:
    """Facade over profile store, engine, cache, ranker and score history.

    Attributes:
        store:           Published scoring profiles.
        engine:          Weighting engine (owns the signal-fetch pool).
        cache:           Score cache wrapping ``_compute``.
        database:        SQLite settings, or ``None`` to run without a DB.
        persist_history: Insert every computed score into ``score_history``.
    """

    def __init__(
        self,
        store:               ProfileStore,
        collector:           SignalCollector,
        engine:              Optional[WeightingEngine] = None,
        database:            Optional[DatabaseConfig] = None,
        persist_history:     bool = False,
        default_max_results: int = 10,
        cache_factory:       Optional[Callable[..., ScoreCache]] = None,
        clock:               Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.collector = collector
        self.engine = engine or WeightingEngine(collector, clock=clock)
        self.database = database
        self.persist_history = persist_history and database is not None
        self.default_max_results = default_max_results
        self._clock = clock
        factory = cache_factory or ScoreCache
        self.cache = factory(self._compute, clock=clock)

    @classmethod
    def from_config(
        cls,
        config:    AppConfig,
        collector: Optional[SignalCollector] = None,
        clock:     Callable[[], datetime] = utcnow,
    ) -> "ScoringService":
        """Build a service from ``AppConfig``.

        The collector defaults to the provider named in ``[signals]``.
        """
        if collector is None:
            collector = _collector_from_config(config)
        store = ProfileStore.from_toml(config.profiles.profiles_path)
        engine = WeightingEngine.from_config(collector, config.scoring, clock=clock)
        return cls(
            store,
            collector,
            engine=engine,
            database=config.database,
            persist_history=config.scoring.persist_history,
            default_max_results=config.ranking.default_max_results,
            cache_factory=lambda fn, clock: ScoreCache.from_config(fn, config.cache, clock=clock),
            clock=clock,
        )

    def close(self) -> None:
        self.engine.close()
        close = getattr(self.collector, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "ScoringService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Scoring API ────────────────────────────────────────────────────────────

    def score(
        self,
        entity_id:  str,
        profile_id: str,
        now:        Optional[datetime] = None,
    ) -> Score:
        """Return a fresh score for ``entity_id`` under ``profile_id``.

        Args:
            entity_id:  Entity to score.
            profile_id: ``"name"`` (latest version) or ``"name@version"``.
            now:        Evaluation time (default: clock()).

        Raises:
            UnknownProfileError: If the profile is not published.
            InvalidRequestError: If the entity's stored type does not match
                the profile's ``entity_type``.
        """
        if not entity_id or not entity_id.strip():
            raise InvalidRequestError("entity_id must not be empty.")
        profile = self.store.get_profile(profile_id)
        if self.database is not None and profile.entity_type:
            entity = self._with_signal_repo(lambda repo: repo.get_entity(entity_id))
            if entity is not None and entity.entity_type != profile.entity_type:
                raise InvalidRequestError(
                    f"Entity '{entity_id}' is a '{entity.entity_type}', "
                    f"but profile {profile.ref} scores '{profile.entity_type}' entities."
                )
        return self.cache.get_or_compute(
            entity_id, profile, now=now, generation_hint=self._generation_of(entity_id)
        )

    def recommend(
        self,
        request: Union[RecommendationRequest, Mapping[str, Any]],
        now:     Optional[datetime] = None,
    ) -> list[Recommendation]:
        """Rank ``request.candidate_pool`` under ``request.profile_id``.

        ``request`` may also be a plain mapping of request fields.

        Raises:
            UnknownProfileError: If the profile is not published.
            InvalidRequestError: If the request fields are malformed or a
                candidate's type does not match the profile.
        """
        if not isinstance(request, RecommendationRequest):
            request = build_request(**request)
        profile = self.store.get_profile(request.profile_id)
        candidates = self._enrich_candidates(request.candidate_pool)

        def score_fn(entity_id: str, p: ScoringProfile) -> Score:
            return self.cache.get_or_compute(
                entity_id, p, now=now, generation_hint=self._generation_of(entity_id)
            )

        recs = rank(
            candidates,
            request.subject_entity_id,
            profile,
            request.exclusion_set,
            request.max_results,
            score_fn,
        )
        logger.info(
            "Recommended %d of %d candidate(s) for %s under %s",
            len(recs), len(request.candidate_pool), request.subject_entity_id, profile.ref,
        )
        return recs

    # ── Change notification / lifecycle ────────────────────────────────────────

    def notify_signal_change(self, entity_id: str, generation: Optional[int] = None) -> int:
        """Mark cached scores of ``entity_id`` stale.

        Args:
            entity_id:  Entity whose signals changed.
            generation: New generation.  When omitted, the DB generation is
                        used if it is ahead of the cache; otherwise (no DB,
                        or an entity the DB does not track) the previously
                        known generation plus one.

        Returns:
            The generation recorded in the cache.
        """
        if generation is None:
            known = self.cache.known_generation(entity_id)
            stored = self._generation_of(entity_id)
            generation = stored if stored is not None and stored > known else known + 1
        self.cache.mark_changed(entity_id, generation)
        logger.debug(
            "Entity %s signals changed (generation %d)", entity_id, generation,
            extra=score_context(entity_id),
        )
        return generation

    def publish_profile(self, profile: ScoringProfile) -> ScoringProfile:
        """Publish ``profile`` as the next version and drop its cached scores."""
        try:
            previous = self.store.versions(profile.profile_id)[-1]
        except UnknownProfileError:
            previous = 0
        published = self.store.publish_next(profile)
        if published.version != previous:
            self.cache.evict_profile(profile.profile_id)
        return published

    def delete_entity(self, entity_id: str) -> bool:
        """Delete the entity (and its signals) and evict its cached scores."""
        deleted = False
        if self.database is not None:
            deleted = self._with_signal_repo(lambda repo: repo.delete_entity(entity_id))
        self.cache.evict_entity(entity_id)
        return deleted

    # ── History ────────────────────────────────────────────────────────────────

    def history(self, entity_id: str, profile_id: str, limit: int = 20) -> list[Score]:
        name = self.store.get_profile(profile_id).profile_id
        return self._with_score_repo(lambda repo: repo.history(entity_id, name, limit))

    def score_as_of(self, entity_id: str, profile_id: str, as_of: datetime) -> Optional[Score]:
        """Historical score that was current at ``as_of`` (from ``score_history``)."""
        profile = self.store.get_profile(profile_id)
        pinned = "@" in profile_id
        return self._with_score_repo(
            lambda repo: repo.score_as_of(
                entity_id, profile.profile_id, as_of, profile.version if pinned else None
            )
        )

    def prune_history(self, older_than_days: int, keep_latest: bool = True) -> int:
        cutoff = self._clock() - timedelta(days=older_than_days)
        return self._with_score_repo(lambda repo: repo.prune_older_than(cutoff, keep_latest))

    # ── Internals ──────────────────────────────────────────────────────────────

    def _compute(
        self,
        entity_id:  str,
        profile:    ScoringProfile,
        generation: int,
        now:        datetime,
    ) -> Score:
        score = self.engine.compute_score(entity_id, profile, generation=generation, now=now)
        if self.persist_history:
            score_id = self._with_score_repo(lambda repo: repo.insert_score(score))
            score = score.model_copy(update={"score_id": score_id})
        return score

    def _generation_of(self, entity_id: str) -> Optional[int]:
        if self.database is None:
            return None
        return self._with_signal_repo(lambda repo: repo.get_generation(entity_id))

    def _enrich_candidates(self, pool: tuple[Candidate, ...]) -> list[Candidate]:
        """Fill missing ``entity_type`` / ``created_at`` from the entities table."""
        if self.database is None or not pool:
            return list(pool)

        ids = [c.entity_id for c in pool]

        def lookup(repo: SignalRepository) -> tuple[dict, dict]:
            types = {e.entity_id: e.entity_type for e in map(repo.get_entity, ids) if e}
            return types, repo.created_at_map(ids)

        types, created = self._with_signal_repo(lookup)
        enriched: list[Candidate] = []
        for c in pool:
            update = {}
            if c.entity_type is None and c.entity_id in types:
                update["entity_type"] = types[c.entity_id]
            if c.created_at is None and c.entity_id in created:
                update["created_at"] = created[c.entity_id]
            enriched.append(c.model_copy(update=update) if update else c)
        return enriched

    def _with_signal_repo(self, fn):
        db = self._require_db()
        with get_connection(db.db_path, db.wal_mode, db.busy_timeout_ms) as conn:
            return fn(SignalRepository(conn))

    def _with_score_repo(self, fn):
        db = self._require_db()
        with get_connection(db.db_path, db.wal_mode, db.busy_timeout_ms) as conn:
            return fn(ScoreRepository(conn))

    def _require_db(self) -> DatabaseConfig:
        if self.database is None:
            raise RuntimeError("This operation needs a database; none is configured.")
        return self.database


def _collector_from_config(config: AppConfig) -> SignalCollector:
    if config.signals.provider == "http":
        from entity_scorer.signals.http_collector import HttpSignalCollector

        return HttpSignalCollector.from_config(config.signals)

    from entity_scorer.signals.sqlite_collector import SqliteSignalCollector

    return SqliteSignalCollector.from_config(config.database)
