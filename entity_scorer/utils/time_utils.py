"""
Time helpers shared by the cache, the engine and the repositories.

All timestamps in this package are timezone-aware UTC datetimes.  SQLite
stores them as ISO-8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def age_seconds(since: datetime, now: Optional[datetime] = None) -> float:
    """Seconds elapsed from ``since`` to ``now`` (default: current time)."""
    reference = ensure_utc(now) if now is not None else utcnow()
    return (reference - ensure_utc(since)).total_seconds()


def to_iso(ts: datetime) -> str:
    """Serialise a datetime as a fixed-width ISO-8601 UTC string.

    Fixed width (always microseconds) keeps SQLite string comparison in
    chronological order.
    """
    return ensure_utc(ts).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix accepted) into an aware datetime.

    Returns ``None`` for ``None``/empty input.

    Raises:
        ValueError: If ``value`` is not a valid ISO-8601 timestamp.
    """
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
