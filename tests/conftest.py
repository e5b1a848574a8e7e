"""
Shared pytest fixtures for the entity-scorer test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied.  Created anew for each test.
  - ``db_config``: A ``DatabaseConfig`` pointing at an initialised temp file DB.
  - Sample profiles (``example_profile`` reproduces the documented 45-point
    worked example) and an in-memory signal collector.
  - ``FixedClock``: a settable clock for cache freshness tests.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest

from entity_scorer.config import DatabaseConfig
from entity_scorer.db.connection import get_connection
from entity_scorer.db.migrations import initialize_database
from entity_scorer.models.profile import (
    InverseRecency,
    LinearCap,
    LogDecay,
    ScoreBand,
    ScoringProfile,
    SignalTerm,
    ThresholdBucket,
)
from entity_scorer.signals.base import InMemorySignalCollector

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON.  Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    initialize_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_config(tmp_path) -> DatabaseConfig:
    """A file-backed database (schema applied) for code that opens its own connections."""
    cfg = DatabaseConfig(db_path=str(tmp_path / "scorer.db"), wal_mode=False)
    with get_connection(cfg.db_path, wal_mode=False) as conn:
        initialize_database(conn)
    return cfg


# ── Profiles ──────────────────────────────────────────────────────────────────

@pytest.fixture
def example_profile() -> ScoringProfile:
    """Three-term profile whose weights are folded into the transfer caps.

    interactions=10, recent_activity=6, opportunities=2 → 10 + 15 + 20 = 45.
    """
    return ScoringProfile(
        profile_id="example",
        version=1,
        terms=(
            SignalTerm(signal_name="interactions", transfer=LinearCap(scale=1.0, cap=20.0)),
            SignalTerm(signal_name="recent_activity", transfer=LogDecay(half_life=3.0, cap=20.0)),
            SignalTerm(
                signal_name="opportunities",
                weight=10.0,
                transfer=LinearCap(scale=1.0, cap=30.0),
            ),
        ),
        ceiling=100.0,
    )


@pytest.fixture
def lead_profile() -> ScoringProfile:
    """The bundled CRM lead score, built in code."""
    return ScoringProfile(
        profile_id="lead_score",
        version=1,
        entity_type="customer",
        terms=(
            SignalTerm(
                signal_name="annual_revenue",
                transfer=ThresholdBucket(
                    breakpoints=(100_000.0, 500_000.0, 1_000_000.0),
                    scores=(5.0, 10.0, 15.0, 20.0),
                ),
            ),
            SignalTerm(signal_name="interaction_count", transfer=LinearCap(scale=2.0, cap=20.0)),
            SignalTerm(signal_name="recent_activity_count", transfer=LinearCap(scale=5.0, cap=25.0)),
            SignalTerm(signal_name="opportunity_count", transfer=LinearCap(scale=10.0, cap=30.0)),
        ),
        bands=(
            ScoreBand(label="hot", min_score=70.0),
            ScoreBand(label="warm", min_score=40.0),
            ScoreBand(label="cold", min_score=0.0),
        ),
    )


@pytest.fixture
def recency_profile() -> ScoringProfile:
    return ScoringProfile(
        profile_id="recency",
        terms=(
            SignalTerm(
                signal_name="days_since_contact",
                transfer=InverseRecency(max_days=30.0, cap=100.0),
            ),
        ),
    )


# ── Signals / clock ───────────────────────────────────────────────────────────

@pytest.fixture
def example_signals() -> InMemorySignalCollector:
    return InMemorySignalCollector(
        {
            "e1": {"interactions": 10, "recent_activity": 6, "opportunities": 2},
            "e2": {"interactions": 3},
        }
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()
