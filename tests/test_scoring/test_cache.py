"""
Tests for entity_scorer/scoring/cache.py.

What we test
------------
get_or_compute():
  - MISSING → FRESH on first call; second call within the window is a hit
    with identical computed_at.
  - Past the freshness window → STALE → exactly one synchronous recompute.
  - A generation_hint newer than the cached generation forces a recompute;
    an older or equal hint does not.
  - mark_changed() makes cached scores of that entity STALE.
  - Single-flight: N concurrent callers on a STALE key trigger exactly one
    recompute and all receive the same Score.
  - Coalescing timeout: a waiter falls back to a direct compute.
  - A failing compute propagates and leaves no in-flight residue.

Eviction:
  - LRU capacity bound evicts the least recently used key.
  - evict(), evict_profile(), evict_entity(), clear() → MISSING.
  - Known generations are dropped with an entity's last cached score
    (LRU or explicit eviction), so they stay bounded by the capacity.

refresh_expiring():
  - Recomputes only entries expiring within the given horizon.
"""

from __future__ import annotations

import threading
import time

import pytest

from entity_scorer.models.profile import LinearCap, ScoringProfile, SignalTerm
from entity_scorer.models.score import Score
from entity_scorer.scoring.cache import CacheState, ScoreCache


def _profile(profile_id: str = "p", version: int = 1) -> ScoringProfile:
    return ScoringProfile(
        profile_id=profile_id,
        version=version,
        terms=(SignalTerm(signal_name="a", transfer=LinearCap()),),
    )


class _CountingCompute:
    """Fake compute function; each call returns a distinct value."""

    def __init__(self, gate: threading.Event | None = None) -> None:
        self.calls: list[tuple[str, str, int]] = []
        self.gate = gate
        self._lock = threading.Lock()

    def __call__(self, entity_id, profile, generation, now) -> Score:
        if self.gate is not None:
            self.gate.wait(5.0)
        with self._lock:
            self.calls.append((entity_id, profile.ref, generation))
            n = len(self.calls)
        return Score(
            entity_id=entity_id,
            profile_id=profile.profile_id,
            profile_version=profile.version,
            value=float(n),
            computed_at=now,
            generation=generation,
        )


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


class TestFreshness:
    def test_hit_within_window(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, freshness_window_seconds=60, clock=clock)
        p = _profile()

        first = cache.get_or_compute("e", p)
        clock.advance(59)
        second = cache.get_or_compute("e", p)

        assert second.computed_at == first.computed_at
        assert len(compute.calls) == 1
        assert cache.stats().hits == 1

    def test_state_transitions(self, clock):
        cache = ScoreCache(_CountingCompute(), freshness_window_seconds=60, clock=clock)
        p = _profile()

        assert cache.state("e", p) is CacheState.MISSING
        cache.get_or_compute("e", p)
        assert cache.state("e", p) is CacheState.FRESH
        clock.advance(61)
        assert cache.state("e", p) is CacheState.STALE
        cache.get_or_compute("e", p)
        assert cache.state("e", p) is CacheState.FRESH

    def test_recompute_after_window(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, freshness_window_seconds=60, clock=clock)
        p = _profile()

        first = cache.get_or_compute("e", p)
        clock.advance(61)
        second = cache.get_or_compute("e", p)

        assert second.computed_at > first.computed_at
        assert len(compute.calls) == 2
        assert cache.stats().recomputes == 1

    def test_window_boundary_is_still_fresh(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, freshness_window_seconds=60, clock=clock)
        cache.get_or_compute("e", _profile())
        clock.advance(60)
        cache.get_or_compute("e", _profile())
        assert len(compute.calls) == 1

    def test_versions_are_separate_keys(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, clock=clock)
        cache.get_or_compute("e", _profile(version=1))
        cache.get_or_compute("e", _profile(version=2))
        assert [c[1] for c in compute.calls] == ["p@1", "p@2"]


class TestGenerations:
    def test_newer_hint_forces_recompute(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, clock=clock)
        p = _profile()

        cache.get_or_compute("e", p, generation_hint=1)
        score = cache.get_or_compute("e", p, generation_hint=2)

        assert score.generation == 2
        assert len(compute.calls) == 2

    def test_older_hint_is_a_hit(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, clock=clock)
        p = _profile()

        cache.get_or_compute("e", p, generation_hint=3)
        score = cache.get_or_compute("e", p, generation_hint=2)

        assert score.generation == 3
        assert len(compute.calls) == 1

    def test_mark_changed_makes_stale(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, clock=clock)
        p = _profile()

        cache.get_or_compute("e", p)
        cache.get_or_compute("other", p)
        cache.mark_changed("e", 1)

        assert cache.state("e", p) is CacheState.STALE
        assert cache.state("other", p) is CacheState.FRESH
        assert cache.get_or_compute("e", p).generation == 1
        assert cache.known_generation("e") == 1

    def test_generation_never_moves_backwards(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.mark_changed("e", 5)
        cache.mark_changed("e", 2)
        assert cache.known_generation("e") == 5


class TestSingleFlight:
    def test_concurrent_callers_share_one_recompute(self, clock):
        gate = threading.Event()
        compute = _CountingCompute(gate)
        cache = ScoreCache(compute, freshness_window_seconds=60, clock=clock)
        p = _profile()

        gate.set()
        cache.get_or_compute("e", p)
        gate.clear()
        clock.advance(61)

        n = 8
        results: list[Score] = []
        lock = threading.Lock()

        def worker():
            s = cache.get_or_compute("e", p)
            with lock:
                results.append(s)

        threads = [threading.Thread(target=worker) for _ in range(n)]
        for t in threads:
            t.start()
        _wait_for(lambda: cache.stats().coalesced == n - 1)
        gate.set()
        for t in threads:
            t.join(5.0)

        assert len(compute.calls) == 2
        assert len(results) == n
        assert len({(r.value, r.computed_at) for r in results}) == 1
        assert cache.stats().in_flight == 0

    def test_coalesce_timeout_computes_directly(self, clock):
        gate = threading.Event()
        compute = _CountingCompute(gate)
        cache = ScoreCache(compute, coalesce_timeout_seconds=0.05, clock=clock)
        p = _profile()

        leader = threading.Thread(target=cache.get_or_compute, args=("e", p))
        leader.start()
        _wait_for(lambda: cache.stats().in_flight == 1)

        waiter_result: list[Score] = []
        waiter = threading.Thread(target=lambda: waiter_result.append(cache.get_or_compute("e", p)))
        waiter.start()
        _wait_for(lambda: cache.stats().coalesce_timeouts == 1)
        gate.set()
        waiter.join(5.0)
        leader.join(5.0)

        assert len(waiter_result) == 1
        assert len(compute.calls) == 2

    def test_failed_compute_propagates_and_clears(self, clock):
        def boom(entity_id, profile, generation, now):
            raise RuntimeError("engine down")

        cache = ScoreCache(boom, clock=clock)
        with pytest.raises(RuntimeError, match="engine down"):
            cache.get_or_compute("e", _profile())
        assert cache.stats().in_flight == 0
        assert cache.state("e", _profile()) is CacheState.MISSING


class TestEviction:
    def test_lru_capacity(self, clock):
        cache = ScoreCache(_CountingCompute(), max_entries=2, clock=clock)
        p = _profile()

        cache.get_or_compute("a", p)
        cache.get_or_compute("b", p)
        cache.get_or_compute("a", p)  # touch a; b is now least recent
        cache.get_or_compute("c", p)

        assert cache.state("b", p) is CacheState.MISSING
        assert cache.state("a", p) is CacheState.FRESH
        assert cache.stats().evictions == 1
        assert cache.stats().size == 2

    def test_unbounded_when_zero(self, clock):
        cache = ScoreCache(_CountingCompute(), max_entries=0, clock=clock)
        for i in range(50):
            cache.get_or_compute(f"e{i}", _profile())
        assert cache.stats().size == 50

    def test_evict_single_key(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.get_or_compute("e", _profile())
        assert cache.evict("e", _profile()) is True
        assert cache.evict("e", _profile()) is False
        assert cache.state("e", _profile()) is CacheState.MISSING

    def test_evict_profile_all_versions(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.get_or_compute("e", _profile(version=1))
        cache.get_or_compute("e", _profile(version=2))
        cache.get_or_compute("e", _profile("other"))

        assert cache.evict_profile("p") == 2
        assert cache.state("e", _profile("other")) is CacheState.FRESH

    def test_evict_entity(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.get_or_compute("e", _profile("p"))
        cache.get_or_compute("e", _profile("q"))
        cache.get_or_compute("f", _profile("p"))

        assert cache.evict_entity("e") == 2
        assert cache.state("f", _profile("p")) is CacheState.FRESH

    def test_clear(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.get_or_compute("e", _profile())
        cache.clear()
        assert cache.stats().size == 0
        assert cache.peek("e", _profile()) is None

    def test_lru_eviction_forgets_generation(self, clock):
        cache = ScoreCache(_CountingCompute(), max_entries=1, clock=clock)
        cache.get_or_compute("e1", _profile(), generation_hint=3)
        assert cache.known_generation("e1") == 3

        cache.get_or_compute("e2", _profile(), generation_hint=2)

        assert cache.known_generation("e1") == 0
        assert cache.known_generation("e2") == 2

    def test_generation_kept_while_other_profiles_cached(self, clock):
        cache = ScoreCache(_CountingCompute(), clock=clock)
        cache.get_or_compute("e", _profile("p"), generation_hint=4)
        cache.get_or_compute("e", _profile("q"))

        assert cache.evict("e", _profile("p")) is True
        assert cache.known_generation("e") == 4
        assert cache.evict_profile("q") == 1
        assert cache.known_generation("e") == 0

    def test_generations_bounded_by_capacity(self, clock):
        cache = ScoreCache(_CountingCompute(), max_entries=5, clock=clock)
        for i in range(100):
            cache.get_or_compute(f"e{i}", _profile(), generation_hint=1)

        assert cache.stats().size == 5
        assert sum(cache.known_generation(f"e{i}") for i in range(100)) == 5


class TestRefreshExpiring:
    def test_only_due_entries_recomputed(self, clock):
        compute = _CountingCompute()
        cache = ScoreCache(compute, freshness_window_seconds=100, clock=clock)
        p = _profile()

        cache.get_or_compute("old", p)
        clock.advance(90)
        cache.get_or_compute("new", p)

        refreshed = cache.refresh_expiring(within_seconds=20)

        assert refreshed == 1
        assert compute.calls[-1][0] == "old"
        assert cache.peek("old", p).computed_at == clock.now
