"""
Score cache with a freshness window, generation invalidation and a
single-flight recompute guard.

States per ``(entity_id, profile_id, profile_version)``::

    MISSING ──compute──▶ FRESH ──window elapsed / newer generation──▶ STALE
       ▲                                                                │
       └────────────── evict / LRU capacity / profile republish ◀───────┘

- FRESH  → returned as-is.
- STALE  → recomputed synchronously on the calling thread before returning,
  so no caller ever sees a score older than ``freshness_window_seconds``.
- Concurrent callers of a MISSING or STALE key coalesce: the first becomes
  the leader and computes; the rest wait on the leader's ``Future``.  A
  waiter that needs a newer generation than the leader computed against
  loops and tries again.  A waiter that times out logs a
  ``CacheCoalescingTimeout`` and computes directly, bypassing the cache.

There are no background threads.  ``refresh_expiring()`` is an optional
pre-warming sweep a caller may run on its own schedule.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from entity_scorer.config import CacheConfig
from entity_scorer.errors import CacheCoalescingTimeout
from entity_scorer.models.profile import ScoringProfile
from entity_scorer.models.score import Score
from entity_scorer.utils.logging import score_context
from entity_scorer.utils.time_utils import age_seconds, utcnow

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, int]
ComputeFn = Callable[[str, ScoringProfile, int, datetime], Score]


class CacheState(str, Enum):
    MISSING = "missing"
    FRESH = "fresh"
    STALE = "stale"


@dataclass
class CacheStats:
    """Counters since construction (or the last ``clear()``)."""

    hits: int = 0
    misses: int = 0
    recomputes: int = 0
    coalesced: int = 0
    coalesce_timeouts: int = 0
    evictions: int = 0
    size: int = 0
    in_flight: int = 0


@dataclass
class _Entry:
    score: Score
    profile: ScoringProfile


class ScoreCache:
    """In-process score cache keyed by ``(entity_id, profile_id, version)``.

    Args:
        compute_fn:               ``(entity_id, profile, generation, now) -> Score``,
                                  normally ``WeightingEngine.compute_score``.
        freshness_window_seconds: Maximum age of a FRESH score.
        max_entries:              LRU capacity; 0 means unbounded.  An entity's
                                  known generation is forgotten with its last
                                  cached score.
        coalesce_timeout_seconds: How long a waiter waits on an in-flight compute.
        clock:                    Source of "now" when the caller passes none.
    """

    def __init__(
        self,
        compute_fn:               ComputeFn,
        freshness_window_seconds: float = 900.0,
        max_entries:              int = 10_000,
        coalesce_timeout_seconds: float = 10.0,
        clock:                    Callable[[], datetime] = utcnow,
    ) -> None:
        self._compute_fn = compute_fn
        self.freshness_window_seconds = freshness_window_seconds
        self.max_entries = max_entries
        self.coalesce_timeout_seconds = coalesce_timeout_seconds
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self._in_flight: dict[CacheKey, Future] = {}
        self._generations: dict[str, int] = {}
        self._entity_refs: dict[str, int] = {}
        self._stats = CacheStats()

    @classmethod
    def from_config(
        cls,
        compute_fn: ComputeFn,
        config:     CacheConfig,
        clock:      Callable[[], datetime] = utcnow,
    ) -> "ScoreCache":
        return cls(
            compute_fn,
            freshness_window_seconds=config.freshness_window_seconds,
            max_entries=config.max_entries,
            coalesce_timeout_seconds=config.coalesce_timeout_seconds,
            clock=clock,
        )

    # ── Reads ──────────────────────────────────────────────────────────────────

    def get_or_compute(
        self,
        entity_id:       str,
        profile:         ScoringProfile,
        now:             Optional[datetime] = None,
        generation_hint: Optional[int] = None,
    ) -> Score:
        """Return a FRESH score for ``(entity_id, profile)``, computing if needed.

        Args:
            entity_id:       Entity to score.
            profile:         Exact profile version.
            now:             Evaluation time (default: clock()).
            generation_hint: Latest known signal generation of the entity.
                             A cached score older than this is STALE.

        Returns:
            A score computed within the freshness window against at least
            ``generation_hint``.
        """
        now = now or self._clock()
        key = _key(entity_id, profile)

        while True:
            with self._lock:
                required = self._observe_generation(entity_id, generation_hint)
                entry = self._entries.get(key)
                if entry is not None and self._is_fresh(entry.score, now, required):
                    self._entries.move_to_end(key)
                    self._stats.hits += 1
                    return entry.score

                future = self._in_flight.get(key)
                leader = future is None
                if leader:
                    future = Future()
                    self._in_flight[key] = future
                    if entry is None:
                        self._stats.misses += 1
                    else:
                        self._stats.recomputes += 1
                else:
                    self._stats.coalesced += 1

            if leader:
                return self._lead(key, future, entity_id, profile, required, now)

            try:
                score = future.result(timeout=self.coalesce_timeout_seconds)
            except FutureTimeoutError:
                err = CacheCoalescingTimeout(key, self.coalesce_timeout_seconds)
                with self._lock:
                    self._stats.coalesce_timeouts += 1
                logger.warning(
                    "%s; computing directly", err,
                    extra=score_context(entity_id, profile.ref),
                )
                return self._compute_fn(entity_id, profile, required, now)

            if score.generation >= required:
                return score
            logger.debug(
                "In-flight score for %s is generation %d, need %d; retrying",
                key, score.generation, required,
            )

    def peek(self, entity_id: str, profile: ScoringProfile) -> Optional[Score]:
        """Cached score regardless of freshness, without touching LRU order."""
        with self._lock:
            entry = self._entries.get(_key(entity_id, profile))
            return entry.score if entry else None

    def state(
        self,
        entity_id: str,
        profile:   ScoringProfile,
        now:       Optional[datetime] = None,
    ) -> CacheState:
        now = now or self._clock()
        with self._lock:
            entry = self._entries.get(_key(entity_id, profile))
            if entry is None:
                return CacheState.MISSING
            required = self._generations.get(entity_id, 0)
            if self._is_fresh(entry.score, now, required):
                return CacheState.FRESH
            return CacheState.STALE

    def known_generation(self, entity_id: str) -> int:
        """Highest generation observed for ``entity_id`` (0 if none)."""
        with self._lock:
            return self._generations.get(entity_id, 0)

    def stats(self) -> CacheStats:
        with self._lock:
            self._stats.size = len(self._entries)
            self._stats.in_flight = len(self._in_flight)
            return CacheStats(**vars(self._stats))

    # ── Invalidation ───────────────────────────────────────────────────────────

    def mark_changed(self, entity_id: str, generation: int) -> None:
        """Record that ``entity_id``'s signals reached ``generation``.

        Every cached score of that entity with a lower generation becomes
        STALE.  Generations never move backwards.
        """
        with self._lock:
            self._observe_generation(entity_id, generation)

    def evict(self, entity_id: str, profile: ScoringProfile) -> bool:
        with self._lock:
            return self._drop(_key(entity_id, profile))

    def evict_profile(self, profile_id: str) -> int:
        """Drop every cached score of every version of ``profile_id``."""
        with self._lock:
            keys = [k for k in self._entries if k[1] == profile_id]
            for k in keys:
                self._drop(k)
        if keys:
            logger.info("Evicted %d cached score(s) for profile %s", len(keys), profile_id)
        return len(keys)

    def evict_entity(self, entity_id: str) -> int:
        """Drop every cached score of ``entity_id`` (e.g. the entity was deleted)."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == entity_id]
            for k in keys:
                del self._entries[k]
            self._entity_refs.pop(entity_id, None)
            self._generations.pop(entity_id, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._entity_refs.clear()
            self._generations.clear()
            self._stats = CacheStats()

    # ── Pre-warming ────────────────────────────────────────────────────────────

    def refresh_expiring(
        self,
        within_seconds: float,
        now:            Optional[datetime] = None,
    ) -> int:
        """Recompute cached scores that expire within ``within_seconds``.

        Keys already being recomputed by another caller are skipped.

        Returns:
            Number of scores recomputed.
        """
        now = now or self._clock()
        threshold = self.freshness_window_seconds - within_seconds

        due: list[tuple[CacheKey, _Entry]] = []
        with self._lock:
            for key, entry in self._entries.items():
                if key in self._in_flight:
                    continue
                if age_seconds(entry.score.computed_at, now) >= threshold:
                    due.append((key, entry))

        refreshed = 0
        for key, entry in due:
            with self._lock:
                if key in self._in_flight:
                    continue
                future: Future = Future()
                self._in_flight[key] = future
                required = self._generations.get(key[0], 0)
                self._stats.recomputes += 1
            self._lead(key, future, key[0], entry.profile, required, now)
            refreshed += 1

        if refreshed:
            logger.info("Pre-warmed %d expiring score(s)", refreshed)
        return refreshed

    # ── Internals ──────────────────────────────────────────────────────────────

    def _lead(
        self,
        key:        CacheKey,
        future:     Future,
        entity_id:  str,
        profile:    ScoringProfile,
        generation: int,
        now:        datetime,
    ) -> Score:
        """Compute as the single in-flight owner of ``key`` and publish the result."""
        try:
            score = self._compute_fn(entity_id, profile, generation, now)
        except BaseException as exc:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            existing = self._entries.get(key)
            if existing is None or existing.score.generation <= score.generation:
                self._store(key, _Entry(score=score, profile=profile))
            self._in_flight.pop(key, None)
            self._enforce_capacity()
        future.set_result(score)
        return score

    def _store(self, key: CacheKey, entry: _Entry) -> None:
        if key not in self._entries:
            self._entity_refs[key[0]] = self._entity_refs.get(key[0], 0) + 1
        self._entries[key] = entry
        self._entries.move_to_end(key)

    def _drop(self, key: CacheKey) -> bool:
        """Remove one entry; forget the entity's generation with its last entry.

        Caller holds the lock.
        """
        if self._entries.pop(key, None) is None:
            return False
        entity_id = key[0]
        remaining = self._entity_refs.get(entity_id, 1) - 1
        if remaining > 0:
            self._entity_refs[entity_id] = remaining
            return True
        self._entity_refs.pop(entity_id, None)
        if not any(k[0] == entity_id for k in self._in_flight):
            self._generations.pop(entity_id, None)
        return True

    def _observe_generation(self, entity_id: str, generation: Optional[int]) -> int:
        """Merge ``generation`` into the known generation; caller holds the lock."""
        known = self._generations.get(entity_id, 0)
        if generation is not None and generation > known:
            self._generations[entity_id] = generation
            return generation
        return known

    def _is_fresh(self, score: Score, now: datetime, required_generation: int) -> bool:
        if score.generation < required_generation:
            return False
        return age_seconds(score.computed_at, now) <= self.freshness_window_seconds

    def _enforce_capacity(self) -> None:
        if self.max_entries <= 0:
            return
        while len(self._entries) > self.max_entries:
            evicted = next(iter(self._entries))
            self._drop(evicted)
            self._stats.evictions += 1
            logger.debug("LRU evicted %s", evicted)


def _key(entity_id: str, profile: ScoringProfile) -> CacheKey:
    return (entity_id, profile.profile_id, profile.version)
