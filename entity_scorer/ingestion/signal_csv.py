"""
CSV import parser for raw signal values.

Format — comma delimited, with a header row.
Required columns:
  entity_id, entity_type, signal_name, value

Optional columns (empty string → None):
  observed_at, created_at

Datetime formats:
  ISO 8601 with timezone, e.g. 2026-03-01T09:30:00Z or +00:00.
  Naive timestamps are read as UTC.

Example::

    entity_id,entity_type,signal_name,value,observed_at
    cust-1,customer,interaction_count,10,2026-03-01T09:30:00Z
    cust-1,customer,opportunity_count,2,
"""

from __future__ import annotations

import csv
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from entity_scorer.models.entity import SignalRecord
from entity_scorer.utils.time_utils import parse_iso

logger = logging.getLogger(__name__)

REQUIRED_CSV_COLUMNS = frozenset({"entity_id", "entity_type", "signal_name", "value"})


def parse_signal_csv(path: Path) -> list[SignalRecord]:
    """Parse a CSV file of signal values into validated ``SignalRecord`` objects.

    All rows are validated before any are returned.  If any row fails, a
    single ``ValueError`` is raised listing the first 10 failures.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If required columns are missing or any row fails validation.
    """
    if not path.exists():
        raise FileNotFoundError(f"Signal CSV file not found: {path}")

    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)

        if reader.fieldnames is None:
            raise ValueError(f"CSV file is empty or has no header row: {path}")

        actual_cols = {c.strip() for c in reader.fieldnames}
        missing = REQUIRED_CSV_COLUMNS - actual_cols
        if missing:
            raise ValueError(
                f"CSV missing required columns: {sorted(missing)}\n"
                f"Found columns: {sorted(actual_cols)}"
            )

        rows = [{k.strip(): (v or "") for k, v in row.items() if k} for row in reader]

    if not rows:
        logger.warning("Signal CSV is empty (header only): %s", path)
        return []

    records: list[SignalRecord] = []
    errors: list[tuple[int, str]] = []

    for i, row in enumerate(rows):
        line_no = i + 2
        try:
            records.append(_row_to_record(row))
        except (ValueError, ValidationError) as exc:
            errors.append((line_no, str(exc)))

    if errors:
        max_shown = 10
        detail = "\n".join(f"  Row {ln}: {msg}" for ln, msg in errors[:max_shown])
        suffix = f"\n  … and {len(errors) - max_shown} more" if len(errors) > max_shown else ""
        raise ValueError(
            f"{len(errors)} row(s) failed validation in {path.name}:\n{detail}{suffix}"
        )

    logger.info("Parsed %d signal value(s) from %s", len(records), path.name)
    return records


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_record(row: dict[str, str]) -> SignalRecord:
    return SignalRecord(
        entity_id=row.get("entity_id", ""),
        entity_type=row.get("entity_type", ""),
        signal_name=row.get("signal_name", ""),
        value=_parse_value(row),
        observed_at=_parse_datetime(row, "observed_at"),
        created_at=_parse_datetime(row, "created_at"),
    )


def _parse_value(row: dict[str, str]) -> float:
    v = row.get("value", "").strip()
    if not v:
        raise ValueError("Required field 'value' is empty.")
    try:
        value = float(v)
    except ValueError:
        raise ValueError(f"Invalid number for 'value': '{v}'.")
    if math.isnan(value):
        raise ValueError("'value' must not be NaN.")
    return value


def _parse_datetime(row: dict[str, str], key: str) -> Optional[datetime]:
    v = row.get(key, "").strip()
    if not v:
        return None
    try:
        return parse_iso(v)
    except ValueError:
        raise ValueError(
            f"Invalid datetime for '{key}': '{v}'. "
            "Expected ISO 8601 with timezone, e.g. '2026-03-01T09:30:00Z'."
        )
