"""
Tests for entity_scorer/config.py.

What we test
------------
  - The committed config/default.toml loads into AppConfig.
  - config/local.toml beside the config file overrides nested keys.
  - ENTITY_SCORER_* environment variables override TOML values.
  - ENTITY_SCORER_SIGNAL_URL switches the provider to http.
  - Validation failures raise pydantic.ValidationError.
  - Missing config file raises FileNotFoundError.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from entity_scorer.config import AppConfig, CacheConfig, ScoringConfig, SignalsConfig, load_config

DEFAULT_TOML = Path(__file__).parents[2] / "config" / "default.toml"

_ENV_VARS = [
    "ENTITY_SCORER_DB_PATH",
    "ENTITY_SCORER_LOG_LEVEL",
    "ENTITY_SCORER_PROFILES_PATH",
    "ENTITY_SCORER_SIGNAL_URL",
    "ENTITY_SCORER_DEBUG",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "default.toml"
    path.write_text(body, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_committed_defaults(self):
        cfg = load_config(DEFAULT_TOML)
        assert isinstance(cfg, AppConfig)
        assert cfg.signals.provider == "sqlite"
        assert cfg.cache.freshness_window_seconds == pytest.approx(900.0)
        assert cfg.profiles.profiles_path == "config/profiles.toml"

    def test_local_override(self, tmp_path):
        path = _write_config(tmp_path, "[cache]\nfreshness_window_seconds = 60.0\nmax_entries = 5\n")
        (tmp_path / "local.toml").write_text("[cache]\nmax_entries = 9\n", encoding="utf-8")

        cfg = load_config(path)

        assert cfg.cache.max_entries == 9
        assert cfg.cache.freshness_window_seconds == pytest.approx(60.0)

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, "[logging]\nlevel = \"INFO\"\n")
        monkeypatch.setenv("ENTITY_SCORER_DB_PATH", "/tmp/x.db")
        monkeypatch.setenv("ENTITY_SCORER_LOG_LEVEL", "debug")
        monkeypatch.setenv("ENTITY_SCORER_PROFILES_PATH", "/tmp/p.toml")
        monkeypatch.setenv("ENTITY_SCORER_DEBUG", "true")

        cfg = load_config(path)

        assert cfg.database.db_path == "/tmp/x.db"
        assert cfg.logging.level == "DEBUG"
        assert cfg.profiles.profiles_path == "/tmp/p.toml"
        assert cfg.debug is True

    def test_signal_url_switches_provider(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, "[signals]\nprovider = \"sqlite\"\n")
        monkeypatch.setenv("ENTITY_SCORER_SIGNAL_URL", "http://signals.test")

        cfg = load_config(path)

        assert cfg.signals.provider == "http"
        assert cfg.signals.http_base_url == "http://signals.test"

    def test_invalid_value(self, tmp_path):
        path = _write_config(tmp_path, "[scoring]\nsignal_timeout_seconds = 0.0\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")


class TestSectionModels:
    def test_http_provider_requires_url(self):
        with pytest.raises(ValidationError, match="http_base_url"):
            SignalsConfig(provider="http")

    def test_negative_cache_entries_rejected(self):
        with pytest.raises(ValidationError):
            CacheConfig(max_entries=-1)

    def test_workers_must_be_positive(self):
        with pytest.raises(ValidationError):
            ScoringConfig(max_fetch_workers=0)

    def test_frozen(self):
        cfg = AppConfig()
        with pytest.raises(ValidationError):
            cfg.debug = True
