"""
Signal normalization: raw signal value → bounded sub-score.

Transfer functions
------------------
linear_cap(value, scale, cap):
    min(value * scale, cap).
    Example: interaction_count with scale=2, cap=20.

log_decay(value, half_life, cap):
    cap * (1 - 2^(-value / half_life)).
    Diminishing returns for large counts; reaches cap/2 at one half-life.

threshold_bucket(value, breakpoints, scores):
    Breakpoints are checked in ascending order; the first with
    value <= breakpoint selects its score.  Anything above the last
    breakpoint falls into the default bucket scores[-1].
    Example: annual revenue tiers 100k / 500k / 1M → 5 / 10 / 15 / 20.

inverse_recency(days, max_days, cap):
    cap * max(0, 1 - days / max_days).  Explicitly inverse: the only
    transfer that decreases as the raw value grows.

Input handling (applied by ``normalize()`` before any transfer)
---------------------------------------------------------------
- ``None`` (entity lacks the fact) and NaN give a sub-score of 0 under every
  transfer, and are never an error.  Absence of evidence contributes
  nothing: for linear_cap and log_decay that equals an explicit 0, while a
  bucket floor (``scores[0]``) or full freshness at 0 days is only earned by
  a value that is actually present.
- Negative values are clamped to 0.
- +inf is allowed; every transfer is bounded by its cap.

All functions here are pure — no I/O, no state.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from entity_scorer.models.profile import (
    InverseRecency,
    LinearCap,
    LogDecay,
    ThresholdBucket,
    TransferFunction,
)


# ── Transfer functions ────────────────────────────────────────────────────────

def linear_cap(value: float, scale: float, cap: float) -> float:
    if math.isinf(value):
        return cap if scale > 0 else 0.0
    return _clamp(value * scale, 0.0, cap)


def log_decay(value: float, half_life: float, cap: float) -> float:
    return _clamp(cap * (1.0 - 2.0 ** (-value / half_life)), 0.0, cap)


def threshold_bucket(
    value:       float,
    breakpoints: Sequence[float],
    scores:      Sequence[float],
) -> float:
    for breakpoint, score in zip(breakpoints, scores):
        if value <= breakpoint:
            return score
    return scores[-1]


def inverse_recency(days_since_event: float, max_days: float, cap: float) -> float:
    return cap * max(0.0, 1.0 - days_since_event / max_days)


# ── Dispatch ──────────────────────────────────────────────────────────────────

def apply_transfer(value: float, transfer: TransferFunction) -> float:
    """Apply ``transfer`` to an already-sanitised (finite or +inf, >= 0) value.

    Raises:
        TypeError: If ``transfer`` is not a known transfer model.
    """
    if isinstance(transfer, LinearCap):
        return linear_cap(value, transfer.scale, transfer.cap)
    if isinstance(transfer, LogDecay):
        return log_decay(value, transfer.half_life, transfer.cap)
    if isinstance(transfer, ThresholdBucket):
        return threshold_bucket(value, transfer.breakpoints, transfer.scores)
    if isinstance(transfer, InverseRecency):
        return inverse_recency(value, transfer.max_days, transfer.cap)
    raise TypeError(f"Unsupported transfer function: {type(transfer).__name__}")


def normalize(
    signal_name: str,
    raw_value:   Optional[float],
    transfer:    TransferFunction,
) -> float:
    """Map one raw signal value onto ``[0, transfer.cap]``.

    Args:
        signal_name: Signal being normalized (used in error messages only).
        raw_value:   Raw value from the collector, or ``None`` when missing.
        transfer:    Transfer function from the profile term.

    Returns:
        Sub-score in ``[0, cap]``.

    Raises:
        TypeError: If ``raw_value`` is not numeric.
    """
    value = sanitize_raw(signal_name, raw_value)
    if value is None:
        return 0.0
    return _clamp(apply_transfer(value, transfer), 0.0, transfer.cap)


def sanitize_raw(signal_name: str, raw_value: Optional[float]) -> Optional[float]:
    """Coerce a collector value to a non-negative float, or ``None`` if absent.

    Booleans count as 0/1 (signal stores keep flags such as "category
    matches preference" that way).
    """
    if raw_value is None:
        return None
    if not isinstance(raw_value, (int, float)):
        raise TypeError(
            f"Signal '{signal_name}' must be numeric, got {type(raw_value).__name__}."
        )
    value = float(raw_value)
    if math.isnan(value):
        return None
    return max(0.0, value)


# ── Helper ────────────────────────────────────────────────────────────────────

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
