"""
ASCII terminal formatters for CLI commands.

All formatters accept model objects and return plain multi-line strings
suitable for ``typer.echo()``.

No third-party dependencies (no ``rich``, no ``colorama``).

Freshness banners
-----------------
Score output starts with a freshness banner so readers can tell at a glance
whether the value was served from within the freshness window::

  [FRESH] Computed 42s ago
  [STALE] Computed 1.3h ago  <- past the window; recomputed on next read
  [PARTIAL] 1 signal degraded  <- appended when the score carries warnings
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from entity_scorer.models.profile import ScoringProfile
from entity_scorer.models.score import Recommendation, Score
from entity_scorer.utils.time_utils import age_seconds


# ── Freshness banner ─────────────────────────────────────────────────────────


def _fmt_age(seconds: float) -> str:
    if seconds < 120:
        return f"{seconds:.0f}s"
    if seconds < 7200:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def format_freshness_banner(
    score:                    Score,
    freshness_window_seconds: float,
    now:                      Optional[datetime] = None,
) -> str:
    """Return a one- or two-line freshness indicator for ``score``."""
    age = max(0.0, age_seconds(score.computed_at, now))
    tag = "[FRESH]" if age <= freshness_window_seconds else "[STALE]"
    lines = [f"  {tag} Computed {_fmt_age(age)} ago"]
    if score.is_partial:
        n = len(score.warnings)
        lines.append(f"  [PARTIAL] {n} signal{'s' if n != 1 else ''} degraded")
    return "\n".join(lines)


# ── Score breakdown ──────────────────────────────────────────────────────────


def format_score_breakdown(score: Score) -> str:
    """Format one score with its per-signal contributions::

        Entity cust-1  Profile lead_score@1  Score 45.00  Band warm
          Signal                    Raw   Sub-score  Weight  Contrib  Status
          ----------------------------------------------------------------
          interaction_count       10.00       20.00    1.00    20.00  ok
    """
    band = f"  Band {score.band}" if score.band else ""
    lines = [
        f"  Entity {score.entity_id}  Profile {score.profile_ref}  "
        f"Score {score.value:.2f}{band}",
        f"  Reason: {score.reason_tag}",
        "",
        f"    {'Signal':<28}  {'Raw':>10}  {'Sub-score':>9}  {'Weight':>6}  "
        f"{'Contrib':>8}  {'Status':<7}",
        "    " + "-" * 78,
    ]
    for c in score.contributions:
        raw = f"{c.raw_value:.2f}" if c.raw_value is not None else "-"
        lines.append(
            f"    {c.signal_name:<28}  {raw:>10}  {c.sub_score:>9.2f}  {c.weight:>6.2f}  "
            f"{c.contribution:>8.2f}  {c.status:<7}"
        )
    for w in score.warnings:
        lines.append(f"    ! {w}")
    return "\n".join(lines)


# ── Recommendations ──────────────────────────────────────────────────────────


def format_recommendations_table(recs: list[Recommendation], profile_ref: str) -> str:
    if not recs:
        return f"  No recommendations under {profile_ref}."

    lines = [
        f"  Recommendations ({profile_ref})",
        "",
        f"    {'Rank':>4}  {'Candidate':<30}  {'Score':>8}  {'Band':<12}  {'Reason':<28}",
        "    " + "-" * 90,
    ]
    for r in recs:
        reason = r.reason_tag + (" *" if r.is_partial else "")
        lines.append(
            f"    {r.rank:>4}  {r.candidate_id:<30}  {r.score:>8.2f}  "
            f"{(r.band or '-'):<12}  {reason:<28}"
        )
    if any(r.is_partial for r in recs):
        lines.append("")
        lines.append("    * score computed with degraded signals")
    return "\n".join(lines)


# ── Profiles ─────────────────────────────────────────────────────────────────


def format_profiles_table(profiles: list[ScoringProfile], verbose: bool = False) -> str:
    if not profiles:
        return "  No profiles published."

    lines = [
        f"    {'Profile':<28}  {'Ver':>3}  {'Type':<14}  {'Terms':>5}  {'Ceiling':>8}",
        "    " + "-" * 66,
    ]
    for p in profiles:
        lines.append(
            f"    {p.profile_id:<28}  {p.version:>3}  {(p.entity_type or 'any'):<14}  "
            f"{len(p.terms):>5}  {p.ceiling:>8.2f}"
        )
        if verbose:
            for t in p.terms:
                cap = f" max={t.max_contribution:g}" if t.max_contribution is not None else ""
                lines.append(
                    f"        {t.signal_name:<28}  w={t.weight:<6g} {t.transfer.kind}{cap}"
                )
    return "\n".join(lines)


# ── History ──────────────────────────────────────────────────────────────────


def format_history_table(scores: list[Score]) -> str:
    if not scores:
        return "  No score history."

    lines = [
        f"    {'Computed at':<27}  {'Ver':>3}  {'Gen':>5}  {'Score':>8}  {'Band':<12}  {'Reason':<24}",
        "    " + "-" * 90,
    ]
    for s in scores:
        lines.append(
            f"    {s.computed_at.isoformat(timespec='seconds'):<27}  {s.profile_version:>3}  "
            f"{s.generation:>5}  {s.value:>8.2f}  {(s.band or '-'):<12}  {s.reason_tag:<24}"
        )
    return "\n".join(lines)
