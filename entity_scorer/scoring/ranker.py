"""
Recommendation ranker: filters a candidate pool, scores what remains,
orders it deterministically and caps it to top-N.

Usage flow
----------
1. filter_candidates(candidates, subject_id, exclusion_set, entity_type)
   -> list[Candidate]  (deduplicated, exclusions and the subject removed)

2. build_scored_candidates(candidates, profile, score_fn)
   -> list[ScoredCandidate]

3. sort_scored(scored)
   -> list[ScoredCandidate]  (score desc, created_at desc, entity_id asc)

``rank()`` runs all three and converts the top ``max_results`` into
``Recommendation`` records.

Ordering
--------
Score ties are broken by candidate recency (newer ``created_at`` first;
candidates without one sort after those with one), then by ``entity_id``
ascending.  Repeated calls with unchanged inputs always return the same
order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Callable, Iterable, Optional

from entity_scorer.errors import InvalidRequestError
from entity_scorer.models.entity import Candidate
from entity_scorer.models.profile import ScoringProfile
from entity_scorer.models.score import Recommendation, Score
from entity_scorer.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

ScoreFn = Callable[[str, ScoringProfile], Score]


@dataclass
class ScoredCandidate:
    """A candidate coupled with its score under the ranking profile.

    Attributes:
        candidate: The candidate as supplied.
        score:     Its ``Score`` (cached or freshly computed).
    """

    candidate: Candidate
    score:     Score

    @property
    def entity_id(self) -> str:
        return self.candidate.entity_id

    def sort_key(self) -> tuple:
        created = self.candidate.created_at
        recency = (0, -ensure_utc(created).timestamp()) if created else (1, 0.0)
        return (-self.score.value, recency, self.candidate.entity_id)


def filter_candidates(
    candidates:    Iterable[Candidate],
    subject_id:    Optional[str],
    exclusion_set: AbstractSet[str],
    entity_type:   Optional[str] = None,
) -> list[Candidate]:
    """Drop excluded ids, the subject itself and duplicate ids.

    Duplicates collapse to their first occurrence.

    Raises:
        InvalidRequestError: If a candidate declares an ``entity_type`` other
            than ``entity_type`` (when both are set).
    """
    seen: set[str] = set()
    kept: list[Candidate] = []
    for c in candidates:
        if c.entity_id in seen:
            continue
        seen.add(c.entity_id)
        if c.entity_id in exclusion_set or c.entity_id == subject_id:
            continue
        if entity_type and c.entity_type and c.entity_type != entity_type:
            raise InvalidRequestError(
                f"Candidate '{c.entity_id}' is a '{c.entity_type}', "
                f"but the profile scores '{entity_type}' entities."
            )
        kept.append(c)
    return kept


def build_scored_candidates(
    candidates: list[Candidate],
    profile:    ScoringProfile,
    score_fn:   ScoreFn,
) -> list[ScoredCandidate]:
    return [ScoredCandidate(candidate=c, score=score_fn(c.entity_id, profile)) for c in candidates]


def sort_scored(scored: list[ScoredCandidate]) -> list[ScoredCandidate]:
    return sorted(scored, key=ScoredCandidate.sort_key)


def rank(
    candidates:      Iterable[Candidate],
    subject_context: Optional[str],
    profile:         ScoringProfile,
    exclusion_set:   AbstractSet[str],
    max_results:     int,
    score_fn:        ScoreFn,
) -> list[Recommendation]:
    """Return the top ``max_results`` candidates as ranked recommendations.

    Args:
        candidates:      Candidate pool (order irrelevant to the result).
        subject_context: Id of the subject receiving recommendations; never
                         recommended to itself.  ``None`` for none.
        profile:         Profile to score candidates against.
        exclusion_set:   Ids that must not appear in the result.
        max_results:     Cap on result length; ``<= 0`` returns ``[]``.
        score_fn:        ``(entity_id, profile) -> Score``, normally the
                         score cache's ``get_or_compute``.

    Returns:
        Recommendations in rank order (rank 1 first).  Empty pool, all
        candidates excluded, or ``max_results <= 0`` all yield ``[]``.
    """
    if max_results <= 0:
        return []

    eligible = filter_candidates(candidates, subject_context, exclusion_set, profile.entity_type)
    if not eligible:
        return []

    ordered = sort_scored(build_scored_candidates(eligible, profile, score_fn))
    top = ordered[:max_results]

    logger.debug(
        "Ranked %d eligible candidate(s) under %s; returning %d",
        len(eligible), profile.ref, len(top),
    )

    return [
        Recommendation(
            candidate_id=sc.entity_id,
            score=sc.score.value,
            reason_tag=sc.score.reason_tag,
            rank=i,
            band=sc.score.band,
            is_partial=sc.score.is_partial,
        )
        for i, sc in enumerate(top, start=1)
    ]
