"""
Score and recommendation models.

``Score`` is an immutable, timestamped record bound to exactly one profile
version.  Recomputing produces a new ``Score``; nothing updates one in place.

``Recommendation`` is one ranked candidate with a ``reason_tag`` naming the
signal that contributed most to its score.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from entity_scorer.errors import InvalidRequestError
from entity_scorer.models.entity import Candidate

NO_SIGNAL_REASON = "no_signal"

ContributionStatus = Literal["ok", "missing", "failed", "timeout"]


class SignalContribution(BaseModel):
    """How one signal term fed into a composite score.

    Attributes:
        signal_name:  Signal the term reads.
        raw_value:    Value returned by the collector (``None`` if absent/failed).
        sub_score:    Normalized value after the transfer function.
        weight:       Term weight.
        contribution: ``weight * sub_score``, clipped to the term's max_contribution.
        status:       ``ok`` | ``missing`` | ``failed`` | ``timeout``.
    """

    model_config = ConfigDict(frozen=True)

    signal_name:  str
    raw_value:    Optional[float] = None
    sub_score:    float = 0.0
    weight:       float = 0.0
    contribution: float = 0.0
    status:       ContributionStatus = "ok"


class Score(BaseModel):
    """A composite score for one entity under one profile version.

    Attributes:
        score_id:        DB PK once persisted to ``score_history``; else ``None``.
        entity_id:       Scored entity.
        profile_id:      Profile name.
        profile_version: Exact profile version used.
        value:           Composite in ``[0, ceiling]``.
        computed_at:     UTC time the score was computed.
        generation:      Signal generation the score was computed against.
        contributions:   Per-term breakdown in profile order.
        warnings:        Partial-result warnings (failed or slow signals).
        band:            Band label, if the profile declares bands.
    """

    model_config = ConfigDict(frozen=True)

    score_id:        Optional[int] = None
    entity_id:       str
    profile_id:      str
    profile_version: int
    value:           float
    computed_at:     datetime
    generation:      int = 0
    contributions:   tuple[SignalContribution, ...] = ()
    warnings:        tuple[str, ...] = ()
    band:            Optional[str] = None

    @field_validator("value")
    @classmethod
    def non_negative_value(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"Score value must be >= 0, got {v}.")
        return v

    @field_validator("generation")
    @classmethod
    def non_negative_generation(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"generation must be >= 0, got {v}.")
        return v

    @property
    def is_partial(self) -> bool:
        """True when at least one signal failed or timed out."""
        return bool(self.warnings)

    @property
    def profile_ref(self) -> str:
        return f"{self.profile_id}@{self.profile_version}"

    @property
    def reason_tag(self) -> str:
        return dominant_signal(self.contributions)

    def components_dict(self) -> dict[str, Any]:
        """Contributions keyed by signal name, for JSON export."""
        return {c.signal_name: c.model_dump(exclude={"signal_name"}) for c in self.contributions}


def dominant_signal(contributions: tuple[SignalContribution, ...] | list[SignalContribution]) -> str:
    """Name of the signal with the largest contribution.

    Ties go to the earliest term in profile order.  Returns
    ``NO_SIGNAL_REASON`` when nothing contributed.
    """
    best_name = NO_SIGNAL_REASON
    best_value = 0.0
    for c in contributions:
        if c.contribution > best_value:
            best_name, best_value = c.signal_name, c.contribution
    return best_name


class RecommendationRequest(BaseModel):
    """Inputs to ``ScoringService.recommend()``.

    ``candidate_pool`` accepts plain id strings or ``Candidate`` objects;
    strings are wrapped into ``Candidate(entity_id=...)``.
    """

    model_config = ConfigDict(frozen=True)

    subject_entity_id: str
    candidate_pool:    tuple[Candidate, ...] = ()
    exclusion_set:     frozenset[str] = Field(default_factory=frozenset)
    profile_id:        str
    max_results:       int = 10

    @field_validator("candidate_pool", mode="before")
    @classmethod
    def wrap_plain_ids(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return tuple(Candidate(entity_id=c) if isinstance(c, str) else c for c in v)
        return v


def build_request(**fields: Any) -> RecommendationRequest:
    """Validate request fields, raising ``InvalidRequestError`` on bad input.

    Example: ``build_request(subject_entity_id="s", profile_id="p",
    max_results="abc")`` fails with
    ``InvalidRequestError("Invalid recommendation request: max_results: ...")``.
    """
    try:
        return RecommendationRequest.model_validate(fields)
    except ValidationError as exc:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidRequestError(f"Invalid recommendation request: {reasons}") from exc


class Recommendation(BaseModel):
    """One ranked candidate.

    Attributes:
        candidate_id: Recommended entity id.
        score:        Composite score value.
        reason_tag:   Dominant signal name (or ``"no_signal"``).
        rank:         1-based position in the result.
        band:         Band label from the candidate's score, if any.
        is_partial:   True if the underlying score carried warnings.
    """

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    score:        float
    reason_tag:   str
    rank:         int
    band:         Optional[str] = None
    is_partial:   bool = False
