"""
Weighting engine: fetch → normalize → weight → sum → clamp.

Score formula
-------------
For each ``SignalTerm`` in the profile (profile order):

    sub_score    = normalize(raw_value, term.transfer)          # [0, cap]
    contribution = min(term.weight * sub_score, term.max_contribution)

    value = clamp(sum(contribution), 0, profile.ceiling)

Each term is capped independently, then the total is capped.
Weights are not renormalised; correlated terms may overlap up to the ceiling.

Degradation
-----------
Signals are fetched concurrently on a thread pool.  A signal that raises,
times out (``signal_timeout_seconds`` from the start of the pass), or is
still outstanding at the pass deadline (``score_deadline_seconds``)
contributes 0 and adds a warning to the ``Score``.  ``compute_score`` never
raises for signal-level problems.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, Optional

from entity_scorer.config import ScoringConfig
from entity_scorer.errors import SignalFetchError
from entity_scorer.models.profile import ScoringProfile, SignalTerm, classify_band
from entity_scorer.models.score import Score, SignalContribution
from entity_scorer.scoring.normalizer import normalize, sanitize_raw
from entity_scorer.signals.base import SignalCollector
from entity_scorer.utils.logging import score_context
from entity_scorer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class WeightingEngine:
    """Computes ``Score`` records from a signal collector and a profile.

    The engine owns a thread pool for signal fetches; call ``close()`` (or
    use it as a context manager) when done.

    Attributes:
        collector:              Injected read-only signal provider.
        signal_timeout_seconds: Per-signal fetch budget.
        score_deadline_seconds: Budget for a whole scoring pass.
    """

    def __init__(
        self,
        collector:              SignalCollector,
        signal_timeout_seconds: float = 2.0,
        score_deadline_seconds: float = 5.0,
        max_workers:            int = 8,
        clock:                  Callable[[], datetime] = utcnow,
    ) -> None:
        self.collector = collector
        self.signal_timeout_seconds = signal_timeout_seconds
        self.score_deadline_seconds = score_deadline_seconds
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="signal-fetch"
        )

    @classmethod
    def from_config(
        cls,
        collector: SignalCollector,
        config:    ScoringConfig,
        clock:     Callable[[], datetime] = utcnow,
    ) -> "WeightingEngine":
        return cls(
            collector,
            signal_timeout_seconds=config.signal_timeout_seconds,
            score_deadline_seconds=config.score_deadline_seconds,
            max_workers=config.max_fetch_workers,
            clock=clock,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "WeightingEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Public API ─────────────────────────────────────────────────────────────

    def compute_score(
        self,
        entity_id:  str,
        profile:    ScoringProfile,
        generation: int = 0,
        now:        Optional[datetime] = None,
    ) -> Score:
        """Score one entity against one profile version.

        Args:
            entity_id:  Entity to score.
            profile:    Published scoring profile.
            generation: Signal generation this computation reflects.
            now:        Timestamp to stamp on the score (default: clock()).

        Returns:
            A new ``Score``.  ``score.warnings`` lists degraded signals.
        """
        started = time.monotonic()
        signal_limit = started + self.signal_timeout_seconds
        deadline = started + self.score_deadline_seconds

        futures: dict[str, Future] = {
            term.signal_name: self._executor.submit(
                self.collector.fetch_signal, entity_id, term.signal_name
            )
            for term in profile.terms
        }

        contributions: list[SignalContribution] = []
        warnings: list[str] = []

        for term in profile.terms:
            fut = futures[term.signal_name]
            limit = min(signal_limit, deadline)
            try:
                raw = fut.result(timeout=max(0.0, limit - time.monotonic()))
                contributions.append(_weigh(term, raw))
            except FutureTimeoutError:
                fut.cancel()
                reason = (
                    "deadline exceeded"
                    if deadline <= signal_limit
                    else f"timed out after {self.signal_timeout_seconds:.2f}s"
                )
                warnings.append(f"{term.signal_name}: {reason}")
                contributions.append(_zero(term, "timeout"))
                logger.warning(
                    "Signal %s for entity %s %s; contributing 0",
                    term.signal_name, entity_id, reason,
                    extra=score_context(entity_id, profile.ref, term.signal_name),
                )
            except SignalFetchError as exc:
                warnings.append(f"{term.signal_name}: {exc.reason}")
                contributions.append(_zero(term, "failed"))
                logger.warning(
                    "%s; contributing 0", exc,
                    extra=score_context(entity_id, profile.ref, term.signal_name),
                )
            except Exception as exc:  # collector broke its contract; degrade anyway
                warnings.append(f"{term.signal_name}: {type(exc).__name__}: {exc}")
                contributions.append(_zero(term, "failed"))
                logger.warning(
                    "Signal %s for entity %s raised %s: %s; contributing 0",
                    term.signal_name, entity_id, type(exc).__name__, exc,
                    extra=score_context(entity_id, profile.ref, term.signal_name),
                )

        total = sum(c.contribution for c in contributions)
        value = _clamp(total, 0.0, profile.ceiling)

        logger.debug(
            "Scored %s under %s: value=%.4f (raw total %.4f, %d warning(s))",
            entity_id, profile.ref, value, total, len(warnings),
            extra=score_context(entity_id, profile.ref),
        )

        return Score(
            entity_id=entity_id,
            profile_id=profile.profile_id,
            profile_version=profile.version,
            value=value,
            computed_at=now or self._clock(),
            generation=generation,
            contributions=tuple(contributions),
            warnings=tuple(warnings),
            band=classify_band(value, profile.bands),
        )


# ── Helpers ───────────────────────────────────────────────────────────────────

def _weigh(term: SignalTerm, raw: Optional[float]) -> SignalContribution:
    """Normalize and weight one fetched value (``None`` = entity lacks the fact)."""
    present = sanitize_raw(term.signal_name, raw) is not None
    sub_score = normalize(term.signal_name, raw, term.transfer)
    contribution = term.weight * sub_score
    if term.max_contribution is not None:
        contribution = min(contribution, term.max_contribution)

    return SignalContribution(
        signal_name=term.signal_name,
        raw_value=float(raw) if present else None,
        sub_score=sub_score,
        weight=term.weight,
        contribution=contribution,
        status="ok" if present else "missing",
    )


def _zero(term: SignalTerm, status: str) -> SignalContribution:
    return SignalContribution(
        signal_name=term.signal_name,
        weight=term.weight,
        status=status,
    )


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
