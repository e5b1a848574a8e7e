"""
Tests for entity_scorer/scoring/engine.py.

What we test
------------
compute_score():
  - Worked example: interactions=10, recent_activity=6, opportunities=2 → 45.
  - Determinism: identical signals → identical value and contributions.
  - Boundedness: value in [0, ceiling] at 0, typical and huge magnitudes.
  - Missing-signal neutrality: missing scores the same as explicit 0 for
    linear and log terms; a missing bucket or recency signal contributes 0.
  - max_contribution caps a term before summing.
  - Collector SignalFetchError → 0 contribution, status "failed", warning.
    The warning record is tagged with entity, profile ref and signal.
  - Unexpected collector exception → same degradation, never raises.
  - Slow signal past signal_timeout → 0 contribution, status "timeout".
  - Overall deadline returns the partial score instead of raising.
  - Band is classified from the final value.
  - generation and now are stamped onto the Score.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone

import pytest

from entity_scorer.errors import SignalFetchError
from entity_scorer.models.profile import LinearCap, ScoringProfile, SignalTerm
from entity_scorer.scoring.engine import WeightingEngine
from entity_scorer.signals.base import InMemorySignalCollector, SignalCollector

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class _FailingCollector(SignalCollector):
    def __init__(self, values: dict[str, float], fail: dict[str, Exception]) -> None:
        self.values = values
        self.fail = fail

    def fetch_signal(self, entity_id, signal_name):
        if signal_name in self.fail:
            raise self.fail[signal_name]
        return self.values.get(signal_name)


class _SlowCollector(SignalCollector):
    def __init__(self, values: dict[str, float], slow: set[str], release: threading.Event) -> None:
        self.values = values
        self.slow = slow
        self.release = release

    def fetch_signal(self, entity_id, signal_name):
        if signal_name in self.slow:
            self.release.wait(5.0)
        return self.values.get(signal_name)


@pytest.fixture
def engine(example_signals):
    with WeightingEngine(example_signals) as eng:
        yield eng


class TestWorkedExample:
    def test_value_is_45(self, engine, example_profile):
        score = engine.compute_score("e1", example_profile)
        assert score.value == pytest.approx(45.0)

    def test_contribution_breakdown(self, engine, example_profile):
        score = engine.compute_score("e1", example_profile)
        contribs = {c.signal_name: c.contribution for c in score.contributions}
        assert contribs["interactions"] == pytest.approx(10.0)
        assert contribs["recent_activity"] == pytest.approx(15.0)
        assert contribs["opportunities"] == pytest.approx(20.0)

    def test_reason_tag_is_dominant_signal(self, engine, example_profile):
        assert engine.compute_score("e1", example_profile).reason_tag == "opportunities"

    def test_not_partial(self, engine, example_profile):
        score = engine.compute_score("e1", example_profile)
        assert score.warnings == ()
        assert not score.is_partial


class TestProperties:
    def test_deterministic(self, engine, example_profile):
        a = engine.compute_score("e1", example_profile, now=T0)
        b = engine.compute_score("e1", example_profile, now=T0)
        assert a == b

    @pytest.mark.parametrize("magnitude", [0.0, 5.0, 1e12, float("inf")])
    def test_bounded(self, example_profile, magnitude):
        collector = InMemorySignalCollector(
            {"e": {n: magnitude for n in example_profile.signal_names}}
        )
        with WeightingEngine(collector) as eng:
            value = eng.compute_score("e", example_profile).value
        assert 0.0 <= value <= example_profile.ceiling

    def test_ceiling_clamps_total(self):
        profile = ScoringProfile(
            profile_id="p",
            terms=(
                SignalTerm(signal_name="a", transfer=LinearCap(cap=80.0)),
                SignalTerm(signal_name="b", transfer=LinearCap(cap=80.0)),
            ),
            ceiling=100.0,
        )
        with WeightingEngine(InMemorySignalCollector({"e": {"a": 1e6, "b": 1e6}})) as eng:
            assert eng.compute_score("e", profile).value == pytest.approx(100.0)

    def test_missing_equals_explicit_zero(self, example_profile):
        collector = InMemorySignalCollector(
            {
                "missing": {"interactions": 4},
                "zeros": {"interactions": 4, "recent_activity": 0, "opportunities": 0},
            }
        )
        with WeightingEngine(collector) as eng:
            a = eng.compute_score("missing", example_profile)
            b = eng.compute_score("zeros", example_profile)
        assert a.value == b.value
        assert [c.status for c in a.contributions] == ["ok", "missing", "missing"]

    def test_missing_bucket_signal_contributes_nothing(self, lead_profile):
        collector = InMemorySignalCollector({"c": {"interaction_count": 5}})
        with WeightingEngine(collector) as eng:
            score = eng.compute_score("c", lead_profile)
        revenue = score.contributions[0]
        assert revenue.status == "missing"
        assert revenue.contribution == 0.0
        assert score.value == pytest.approx(10.0)

    def test_missing_recency_signal_contributes_nothing(self, recency_profile):
        collector = InMemorySignalCollector({"fresh": {"days_since_contact": 0}, "unknown": {}})
        with WeightingEngine(collector) as eng:
            assert eng.compute_score("unknown", recency_profile).value == 0.0
            assert eng.compute_score("fresh", recency_profile).value == pytest.approx(100.0)

    def test_max_contribution_caps_term(self):
        profile = ScoringProfile(
            profile_id="p",
            terms=(
                SignalTerm(
                    signal_name="a",
                    weight=5.0,
                    transfer=LinearCap(cap=10.0),
                    max_contribution=25.0,
                ),
            ),
        )
        with WeightingEngine(InMemorySignalCollector({"e": {"a": 10}})) as eng:
            assert eng.compute_score("e", profile).value == pytest.approx(25.0)

    def test_stamps_generation_and_time(self, engine, example_profile):
        score = engine.compute_score("e1", example_profile, generation=7, now=T0)
        assert score.generation == 7
        assert score.computed_at == T0
        assert score.profile_ref == "example@1"

    def test_band_classified(self, lead_profile):
        collector = InMemorySignalCollector(
            {"c": {"annual_revenue": 2e6, "interaction_count": 10,
                   "recent_activity_count": 5, "opportunity_count": 3}}
        )
        with WeightingEngine(collector) as eng:
            score = eng.compute_score("c", lead_profile)
        assert score.value == pytest.approx(95.0)
        assert score.band == "hot"


class TestDegradation:
    def test_signal_fetch_error_contributes_zero(self, example_profile):
        collector = _FailingCollector(
            {"interactions": 10, "recent_activity": 6},
            {"opportunities": SignalFetchError("e1", "opportunities", "connection refused")},
        )
        with WeightingEngine(collector) as eng:
            score = eng.compute_score("e1", example_profile)
        assert score.value == pytest.approx(25.0)
        assert score.is_partial
        assert score.warnings == ("opportunities: connection refused",)
        assert score.contributions[2].status == "failed"

    def test_fetch_warning_tagged_with_context(self, example_profile, caplog):
        collector = _FailingCollector(
            {"interactions": 10},
            {"opportunities": SignalFetchError("e1", "opportunities", "connection refused")},
        )
        with caplog.at_level(logging.WARNING, logger="entity_scorer.scoring.engine"):
            with WeightingEngine(collector) as eng:
                eng.compute_score("e1", example_profile)

        [record] = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert record.entity_id == "e1"
        assert record.profile_ref == "example@1"
        assert record.signal == "opportunities"

    def test_unexpected_exception_degrades(self, example_profile):
        collector = _FailingCollector(
            {"interactions": 10, "opportunities": 2},
            {"recent_activity": RuntimeError("boom")},
        )
        with WeightingEngine(collector) as eng:
            score = eng.compute_score("e1", example_profile)
        assert score.value == pytest.approx(30.0)
        assert "RuntimeError" in score.warnings[0]

    def test_slow_signal_times_out(self, example_profile):
        release = threading.Event()
        collector = _SlowCollector(
            {"interactions": 10, "recent_activity": 6, "opportunities": 2},
            {"recent_activity"},
            release,
        )
        eng = WeightingEngine(collector, signal_timeout_seconds=0.05, score_deadline_seconds=2.0)
        try:
            started = time.monotonic()
            score = eng.compute_score("e1", example_profile)
            elapsed = time.monotonic() - started
        finally:
            release.set()
            eng.close()
        assert elapsed < 1.0
        assert score.value == pytest.approx(30.0)
        assert score.contributions[1].status == "timeout"
        assert "timed out" in score.warnings[0]

    def test_deadline_returns_partial_score(self, example_profile):
        release = threading.Event()
        collector = _SlowCollector(
            {"interactions": 10, "recent_activity": 6, "opportunities": 2},
            {"recent_activity", "opportunities"},
            release,
        )
        eng = WeightingEngine(collector, signal_timeout_seconds=2.0, score_deadline_seconds=0.05)
        try:
            score = eng.compute_score("e1", example_profile)
        finally:
            release.set()
            eng.close()
        assert score.value == pytest.approx(10.0)
        assert len(score.warnings) == 2
        assert all("deadline exceeded" in w for w in score.warnings)
