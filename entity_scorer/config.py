"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``ENTITY_SCORER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The service, the CLI and every collector receive an ``AppConfig`` instance (or
one of its sections) — never raw dicts or scattered env var lookups.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/entity_scorer.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ProfilesConfig(BaseModel):
    """Where scoring profiles are defined."""

    model_config = ConfigDict(frozen=True)

    profiles_path: str = "config/profiles.toml"


class ScoringConfig(BaseModel):
    """Weighting engine execution parameters.

    ``signal_timeout_seconds`` bounds a single signal fetch; a slow signal
    contributes 0 past it.  ``score_deadline_seconds`` bounds a whole scoring
    pass; whatever has been fetched by then is used.
    """

    model_config = ConfigDict(frozen=True)

    signal_timeout_seconds: float = 2.0
    score_deadline_seconds: float = 5.0
    max_fetch_workers: int = 8
    persist_history: bool = True

    @field_validator("signal_timeout_seconds", "score_deadline_seconds")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0.0:
            raise ValueError(f"Timeouts must be > 0.0 seconds, got {v}.")
        return v

    @field_validator("max_fetch_workers")
    @classmethod
    def positive_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_fetch_workers must be >= 1, got {v}.")
        return v


class CacheConfig(BaseModel):
    """Score cache freshness and capacity settings."""

    model_config = ConfigDict(frozen=True)

    freshness_window_seconds: float = 900.0
    max_entries: int = 10_000          # 0 = unbounded
    coalesce_timeout_seconds: float = 10.0

    @field_validator("freshness_window_seconds", "coalesce_timeout_seconds")
    @classmethod
    def non_negative_seconds(cls, v: float) -> float:
        if v < 0.0:
            raise ValueError(f"Cache durations must be >= 0.0, got {v}.")
        return v

    @field_validator("max_entries")
    @classmethod
    def non_negative_entries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_entries must be >= 0, got {v}.")
        return v


class RankingConfig(BaseModel):
    """Recommendation defaults."""

    model_config = ConfigDict(frozen=True)

    default_max_results: int = 10


class SignalsConfig(BaseModel):
    """Signal provider selection."""

    model_config = ConfigDict(frozen=True)

    provider: Literal["sqlite", "http"] = "sqlite"
    http_base_url: Optional[str] = None
    http_timeout_seconds: float = 2.0

    @model_validator(mode="after")
    def http_needs_url(self) -> "SignalsConfig":
        if self.provider == "http" and not self.http_base_url:
            raise ValueError("signals.http_base_url is required when provider = 'http'.")
        return self


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/entity_scorer.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + environment.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    profiles: ProfilesConfig = ProfilesConfig()
    scoring: ScoringConfig = ScoringConfig()
    cache: CacheConfig = CacheConfig()
    ranking: RankingConfig = RankingConfig()
    signals: SignalsConfig = SignalsConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply ENTITY_SCORER_* env vars to the raw config dict.

    Supported overrides:
      ENTITY_SCORER_DB_PATH        → raw["database"]["db_path"]
      ENTITY_SCORER_LOG_LEVEL      → raw["logging"]["level"]
      ENTITY_SCORER_PROFILES_PATH  → raw["profiles"]["profiles_path"]
      ENTITY_SCORER_SIGNAL_URL     → raw["signals"]["http_base_url"] (+ provider=http)
      ENTITY_SCORER_DEBUG          → raw["debug"]
    """
    if db_path := os.environ.get("ENTITY_SCORER_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("ENTITY_SCORER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if profiles_path := os.environ.get("ENTITY_SCORER_PROFILES_PATH"):
        raw.setdefault("profiles", {})["profiles_path"] = profiles_path

    if signal_url := os.environ.get("ENTITY_SCORER_SIGNAL_URL"):
        signals = raw.setdefault("signals", {})
        signals["http_base_url"] = signal_url
        signals["provider"] = "http"

    if debug := os.environ.get("ENTITY_SCORER_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        profiles=ProfilesConfig(**raw.get("profiles", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        cache=CacheConfig(**raw.get("cache", {})),
        ranking=RankingConfig(**raw.get("ranking", {})),
        signals=SignalsConfig(**raw.get("signals", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
