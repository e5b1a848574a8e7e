"""
Logging setup and scoring context for entity-scorer.

``configure_logging(config)`` is called once per CLI command.  Library
modules log through ``logging.getLogger(__name__)`` and tag records with
the entity and profile being scored via ``score_context()``::

    logger.warning(
        "Signal %s timed out", name,
        extra=score_context(entity_id, profile.ref, signal=name),
    )

Text lines carry the tags in brackets at the end::

    2026-03-01T12:00:00Z [WARNING] entity_scorer.scoring.engine: Signal a timed out [entity=cust-1 profile=lead@1 signal=a]

JSON lines (``json_format = true`` under ``[logging]``) carry them as
top-level keys::

    {"ts": "2026-03-01T12:00:00.000000+00:00", "level": "WARNING",
     "logger": "...", "msg": "...", "entity_id": "cust-1",
     "profile_ref": "lead@1", "signal": "a"}
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from entity_scorer.utils.time_utils import to_iso

if TYPE_CHECKING:
    from entity_scorer.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Record attribute → label used in text output.
CONTEXT_FIELDS = {"entity_id": "entity", "profile_ref": "profile", "signal": "signal"}

# Chatty client libraries used by the HTTP signal collector.
_QUIET_LOGGERS = ("httpx", "httpcore")


def score_context(
    entity_id:   str,
    profile_ref: Optional[str] = None,
    signal:      Optional[str] = None,
) -> dict[str, str]:
    """``extra=`` mapping naming what was being scored when the record was logged."""
    ctx = {"entity_id": entity_id}
    if profile_ref is not None:
        ctx["profile_ref"] = profile_ref
    if signal is not None:
        ctx["signal"] = signal
    return ctx


def _context_of(record: logging.LogRecord) -> dict[str, str]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class _ContextTextFormatter(logging.Formatter):
    """Plain text lines in UTC, with scoring tags appended to the first line."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _context_of(record)
        if not ctx:
            return line
        tags = " ".join(f"{CONTEXT_FIELDS[k]}={v}" for k, v in ctx.items())
        first, sep, rest = line.partition("\n")
        return f"{first} [{tags}]{sep}{rest}"


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; scoring tags become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": to_iso(datetime.fromtimestamp(record.created, tz=timezone.utc)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_context_of(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handlers(config: "LoggingConfig", level: int) -> list[logging.Handler]:
    formatter = _JsonFormatter() if config.json_format else _ContextTextFormatter()

    # stderr keeps stdout free for tables and --json output.
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig") -> None:
    """Install stderr (and optional file) handlers on the root logger.

    Args:
        config: ``[logging]`` section of ``AppConfig``.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=_build_handlers(config, level), force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
