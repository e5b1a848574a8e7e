"""
entity-scorer — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, signal import, scoring, ranking, ...).
  5. Report result to stdout.

Install and run::

    pip install -e .
    entity-scorer --help
    entity-scorer init-db
    entity-scorer validate-config
    entity-scorer list-profiles
    entity-scorer import-signals --file signals.csv
    entity-scorer score cust-1 --profile lead_score
    entity-scorer recommend user-7 --profile content_recommendation --candidates c1,c2,c3
    entity-scorer history cust-1 --profile lead_score
    entity-scorer prune-history --days 90
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="entity-scorer",
    help="Weighted multi-factor entity scoring and ranking engine.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from entity_scorer.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from entity_scorer.utils.logging import configure_logging
    configure_logging(config.logging)


def _build_service_or_exit(config):
    """Construct a ScoringService, exiting on profile-load errors."""
    from entity_scorer.errors import InvalidProfileError
    from entity_scorer.service import ScoringService

    try:
        return ScoringService.from_config(config)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except InvalidProfileError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


def _split_ids(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from entity_scorer.db.connection import get_connection
    from entity_scorer.db.migrations import initialize_database
    from entity_scorer.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        migrations_applied = initialize_database(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration and profile files and print parsed values.

    Exits with code 1 if either fails validation.
    """
    from entity_scorer.errors import InvalidProfileError
    from entity_scorer.profiles.registry import ProfileStore

    config = _load_config_or_exit(config_path)

    try:
        store = ProfileStore.from_toml(config.profiles.profiles_path)
    except (FileNotFoundError, InvalidProfileError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Profiles file:     {config.profiles.profiles_path} ({len(store)} version(s))")
    typer.echo(f"  Signal provider:   {config.signals.provider}")
    typer.echo(f"  Freshness window:  {config.cache.freshness_window_seconds:g}s")
    typer.echo(f"  Signal timeout:    {config.scoring.signal_timeout_seconds:g}s")
    typer.echo(f"  Score deadline:    {config.scoring.score_deadline_seconds:g}s")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("list-profiles")
def list_profiles(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show each profile's terms."),
) -> None:
    """List published scoring profiles (latest version of each)."""
    from entity_scorer.errors import InvalidProfileError
    from entity_scorer.profiles.registry import ProfileStore
    from entity_scorer.reporting.formatters import format_profiles_table

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        store = ProfileStore.from_toml(config.profiles.profiles_path)
    except (FileNotFoundError, InvalidProfileError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(format_profiles_table(store.list_profiles(), verbose=verbose))


@app.command("import-signals")
def import_signals(
    signals_file: str = typer.Option(
        ...,
        "--file",
        "-f",
        help="Path to a signals CSV (entity_id,entity_type,signal_name,value[,observed_at][,created_at]).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Validate rows but do not write to the database.",
    ),
) -> None:
    """Import signal values from CSV into the database.

    Uses UPSERT semantics.  Every written value bumps its entity's
    generation, which marks cached scores for that entity stale.
    """
    from entity_scorer.db.connection import get_connection
    from entity_scorer.db.repositories.signal_repo import SignalRepository
    from entity_scorer.ingestion.signal_csv import parse_signal_csv
    from entity_scorer.errors import DatabaseNotInitializedError

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    path = Path(signals_file)
    try:
        records = parse_signal_csv(path)
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    entities = {r.entity_id for r in records}
    typer.echo(f"  Validated {len(records)} signal value(s) for {len(entities)} entit(y/ies).")

    if dry_run:
        typer.echo("[DRY RUN] No signals written to database.")
        return

    try:
        with get_connection(
            config.database.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        ) as conn:
            repo = SignalRepository(conn)
            for rec in records:
                repo.upsert_entity(rec.entity, created_at=rec.created_at)
                repo.upsert_signal(rec.entity_id, rec.signal_name, rec.value, rec.observed_at)
    except DatabaseNotInitializedError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Upserted {len(records)} signal value(s).")
    typer.echo("[OK] Signals imported.")


@app.command("score")
def score(
    entity_id: str = typer.Argument(..., help="Entity to score."),
    profile: str = typer.Option(..., "--profile", "-p", help="Profile id or id@version."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
    as_json: bool = typer.Option(False, "--json", help="Print the score as JSON."),
) -> None:
    """Compute (or serve from cache) one entity's score with its breakdown."""
    from entity_scorer.errors import ScoringError
    from entity_scorer.reporting.formatters import (
        format_freshness_banner,
        format_score_breakdown,
    )

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _build_service_or_exit(config) as service:
        try:
            result = service.score(entity_id, profile)
        except ScoringError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    typer.echo(format_freshness_banner(result, config.cache.freshness_window_seconds))
    typer.echo(format_score_breakdown(result))


@app.command("recommend")
def recommend(
    subject_id: str = typer.Argument(..., help="Subject receiving recommendations."),
    profile: str = typer.Option(..., "--profile", "-p", help="Profile id or id@version."),
    candidates: str = typer.Option(..., "--candidates", "-c", help="Comma-separated candidate ids."),
    exclude: Optional[str] = typer.Option(None, "--exclude", "-x", help="Comma-separated ids to exclude."),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max results (default from config)."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Rank candidates for a subject under a profile."""
    from entity_scorer.errors import ScoringError
    from entity_scorer.models.score import build_request
    from entity_scorer.reporting.formatters import format_recommendations_table

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        request = build_request(
            subject_entity_id=subject_id,
            candidate_pool=_split_ids(candidates),
            exclusion_set=frozenset(_split_ids(exclude)),
            profile_id=profile,
            max_results=limit if limit is not None else config.ranking.default_max_results,
        )
    except ScoringError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    with _build_service_or_exit(config) as service:
        try:
            recs = service.recommend(request)
            profile_ref = service.store.get_profile(profile).ref
        except ScoringError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(format_recommendations_table(recs, profile_ref))


@app.command("history")
def history(
    entity_id: str = typer.Argument(..., help="Entity whose score history to show."),
    profile: str = typer.Option(..., "--profile", "-p", help="Profile id."),
    limit: int = typer.Option(20, "--limit", "-n", help="Max rows."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show persisted score history for an entity, newest first."""
    from entity_scorer.errors import ScoringError
    from entity_scorer.reporting.formatters import format_history_table

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with _build_service_or_exit(config) as service:
        try:
            rows = service.history(entity_id, profile, limit=limit)
        except ScoringError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(format_history_table(rows))


@app.command("prune-history")
def prune_history(
    days: int = typer.Option(..., "--days", "-d", help="Delete scores older than N days."),
    keep_latest: bool = typer.Option(
        True,
        "--keep-latest/--no-keep-latest",
        help="Keep the newest score of every (entity, profile).",
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Garbage-collect old rows from score_history."""
    from entity_scorer.db.connection import get_connection
    from entity_scorer.db.repositories.score_repo import ScoreRepository
    from entity_scorer.errors import DatabaseNotInitializedError
    from entity_scorer.utils.time_utils import utcnow

    if days < 0:
        typer.echo("[ERROR] --days must be >= 0.", err=True)
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    cutoff = utcnow() - timedelta(days=days)
    try:
        with get_connection(
            config.database.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        ) as conn:
            deleted = ScoreRepository(conn).prune_older_than(cutoff, keep_latest=keep_latest)
    except DatabaseNotInitializedError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Deleted {deleted} score row(s) older than {days} day(s).")
    typer.echo("[OK] History pruned.")


if __name__ == "__main__":
    app()
