"""
Scoring profile models.

A ``ScoringProfile`` is a named, versioned, immutable list of
``SignalTerm`` entries — ``(signal_name, weight, transfer)`` — plus a ceiling
on the composite and optional classification bands.

Transfer functions are a tagged union on ``kind``:

  linear_cap       min(value * scale, cap)
  log_decay        cap * (1 - 2^(-value / half_life))
  threshold_bucket first ascending breakpoint with value <= breakpoint wins;
                   values above every breakpoint fall into the default bucket
  inverse_recency  cap * max(0, 1 - days / max_days)

Numeric parameters must be finite; NaN or infinite weights, caps and
breakpoints are rejected at validation time.

All models are frozen.  A profile that needs to change is published again
under a new ``version``; old versions keep their meaning so that historical
scores stay interpretable.

Validation errors raised here surface as ``pydantic.ValidationError``;
``profiles.registry.build_profile()`` converts them to
``InvalidProfileError``.
"""

from __future__ import annotations

import math
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ── Transfer functions ────────────────────────────────────────────────────────


class LinearCap(BaseModel):
    """Linear growth clipped at ``cap``."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind:  Literal["linear_cap"] = "linear_cap"
    scale: float = 1.0
    cap:   float = 100.0

    @field_validator("scale", "cap")
    @classmethod
    def non_negative(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"linear_cap parameters must be >= 0, got {v}.")
        return v


class LogDecay(BaseModel):
    """Diminishing returns: each ``half_life`` units halves the remaining gap to ``cap``."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind:      Literal["log_decay"] = "log_decay"
    half_life: float
    cap:       float = 100.0

    @field_validator("half_life")
    @classmethod
    def positive_half_life(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"log_decay half_life must be > 0, got {v}.")
        return v

    @field_validator("cap")
    @classmethod
    def non_negative_cap(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"log_decay cap must be >= 0, got {v}.")
        return v


class ThresholdBucket(BaseModel):
    """Step function over ascending breakpoints.

    ``scores`` has one more entry than ``breakpoints``; the last entry is the
    default bucket for values above every breakpoint.  Scores must be
    non-decreasing so the step function stays monotonic.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind:        Literal["threshold_bucket"] = "threshold_bucket"
    breakpoints: tuple[float, ...]
    scores:      tuple[float, ...]

    @model_validator(mode="after")
    def validate_buckets(self) -> "ThresholdBucket":
        if not all(math.isfinite(v) for v in (*self.breakpoints, *self.scores)):
            raise ValueError("threshold_bucket breakpoints and scores must be finite.")
        if len(self.scores) != len(self.breakpoints) + 1:
            raise ValueError(
                f"threshold_bucket needs len(scores) == len(breakpoints) + 1, "
                f"got {len(self.scores)} scores for {len(self.breakpoints)} breakpoints."
            )
        if any(b2 <= b1 for b1, b2 in zip(self.breakpoints, self.breakpoints[1:])):
            raise ValueError(
                f"threshold_bucket breakpoints must be strictly ascending, got {self.breakpoints}."
            )
        if any(s < 0.0 for s in self.scores):
            raise ValueError(f"threshold_bucket scores must be >= 0, got {self.scores}.")
        if any(s2 < s1 for s1, s2 in zip(self.scores, self.scores[1:])):
            raise ValueError(
                f"threshold_bucket scores must be non-decreasing, got {self.scores}."
            )
        return self

    @property
    def cap(self) -> float:
        return self.scores[-1]


class InverseRecency(BaseModel):
    """Freshness that decays linearly to 0 at ``max_days``."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind:     Literal["inverse_recency"] = "inverse_recency"
    max_days: float
    cap:      float = 100.0

    @field_validator("max_days")
    @classmethod
    def positive_max_days(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"inverse_recency max_days must be > 0, got {v}.")
        return v

    @field_validator("cap")
    @classmethod
    def non_negative_cap(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"inverse_recency cap must be >= 0, got {v}.")
        return v


TransferFunction = Annotated[
    Union[LinearCap, LogDecay, ThresholdBucket, InverseRecency],
    Field(discriminator="kind"),
]

TRANSFER_KINDS: frozenset[str] = frozenset(
    {"linear_cap", "log_decay", "threshold_bucket", "inverse_recency"}
)


# ── Terms and bands ───────────────────────────────────────────────────────────


class SignalTerm(BaseModel):
    """One weighted signal inside a profile.

    Attributes:
        signal_name:      Name passed to the signal collector.
        weight:           Non-negative multiplier applied to the sub-score.
        transfer:         Transfer function producing the sub-score.
        max_contribution: Optional cap on ``weight * sub_score``.
        description:      Free-text note for humans.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    signal_name:      str
    weight:           float = 1.0
    transfer:         TransferFunction
    max_contribution: Optional[float] = None
    description:      str = ""

    @field_validator("signal_name")
    @classmethod
    def non_empty_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("signal_name must not be empty.")
        return v.strip()

    @field_validator("weight")
    @classmethod
    def non_negative_weight(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"weight must be >= 0, got {v}.")
        return v

    @field_validator("max_contribution")
    @classmethod
    def non_negative_max(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0.0:
            raise ValueError(f"max_contribution must be >= 0, got {v}.")
        return v


class ScoreBand(BaseModel):
    """Label assigned to composite values at or above ``min_score``."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    label:     str
    min_score: float


# ── Profile ───────────────────────────────────────────────────────────────────


class ScoringProfile(BaseModel):
    """Named, versioned, immutable weight configuration over signals.

    Weights need not sum to anything in particular; the composite is clamped
    to ``ceiling`` instead of renormalising, so correlated signals may
    partially double-count up to that bound.

    Attributes:
        profile_id:  Stable name, e.g. ``"lead_score"``.  Must not contain ``@``.
        version:     Monotonic version number (1-based).
        description: Free-text description.
        entity_type: Entity type this profile scores, or ``None`` for any.
        terms:       Ordered signal terms; order breaks reason-tag ties.
        ceiling:     Upper bound of the composite score.
        bands:       Optional classification bands.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    profile_id:  str
    version:     int = 1
    description: str = ""
    entity_type: Optional[str] = None
    terms:       tuple[SignalTerm, ...]
    ceiling:     float = 100.0
    bands:       tuple[ScoreBand, ...] = ()

    @field_validator("profile_id")
    @classmethod
    def valid_profile_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("profile_id must not be empty.")
        if "@" in v:
            raise ValueError(f"profile_id must not contain '@', got '{v}'.")
        return v

    @field_validator("version")
    @classmethod
    def positive_version(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"version must be >= 1, got {v}.")
        return v

    @field_validator("ceiling")
    @classmethod
    def positive_ceiling(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"ceiling must be > 0, got {v}.")
        return v

    @model_validator(mode="after")
    def validate_terms(self) -> "ScoringProfile":
        if not self.terms:
            raise ValueError("A profile needs at least one signal term.")
        names = [t.signal_name for t in self.terms]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate signal terms: {duplicates}.")
        if self.total_weight <= 0.0:
            raise ValueError("At least one term weight must be > 0.")
        labels = [b.label for b in self.bands]
        if len(labels) != len(set(labels)):
            raise ValueError(f"Band labels must be unique, got {labels}.")
        return self

    @property
    def ref(self) -> str:
        """``"<profile_id>@<version>"`` — the exact version reference."""
        return f"{self.profile_id}@{self.version}"

    @property
    def total_weight(self) -> float:
        return sum(t.weight for t in self.terms)

    @property
    def signal_names(self) -> list[str]:
        return [t.signal_name for t in self.terms]

    def same_definition(self, other: "ScoringProfile") -> bool:
        """True when ``other`` differs from this profile only by version."""
        return self.model_dump(exclude={"version"}) == other.model_dump(exclude={"version"})


def classify_band(value: float, bands: tuple[ScoreBand, ...]) -> Optional[str]:
    """Return the label of the highest band whose ``min_score`` ``value`` reaches.

    Bands are scanned from the highest ``min_score`` down; the first match
    wins.  Returns ``None`` when no bands are declared or none is reached.
    """
    for band in sorted(bands, key=lambda b: -b.min_score):
        if value >= band.min_score:
            return band.label
    return None
