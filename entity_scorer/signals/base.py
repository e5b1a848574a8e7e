"""
Signal collector interface and the in-memory implementation.

Contract
--------
``fetch_signal(entity_id, signal_name) -> Optional[float]``

  - Returns ``None`` when the entity has no such fact.  Absence is not an
    error and must never raise.
  - Raises ``SignalFetchError`` only on a genuine I/O failure (connection
    refused, timeout, corrupt payload).
  - Must be safe to call from several threads at once; the weighting engine
    fetches the signals of one profile concurrently.

Collectors are read-only from the engine's point of view.  Writes (and the
generation bumps that invalidate cached scores) go through
``db.repositories.signal_repo.SignalRepository``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Mapping, Optional


class SignalCollector(ABC):
    """Abstract read-only provider of raw per-entity signal values."""

    @abstractmethod
    def fetch_signal(self, entity_id: str, signal_name: str) -> Optional[float]:
        """Return the raw value of ``signal_name`` for ``entity_id``, or ``None``."""


class InMemorySignalCollector(SignalCollector):
    """Dict-backed collector: ``{entity_id: {signal_name: value}}``.

    Used by tests and by callers that already hold signal values in memory.
    ``set_signal`` exists for fixtures; it does not touch generations.
    """

    def __init__(self, signals: Optional[Mapping[str, Mapping[str, float]]] = None) -> None:
        self._lock = threading.Lock()
        self._signals: dict[str, dict[str, float]] = {
            entity_id: dict(values) for entity_id, values in (signals or {}).items()
        }

    def fetch_signal(self, entity_id: str, signal_name: str) -> Optional[float]:
        with self._lock:
            return self._signals.get(entity_id, {}).get(signal_name)

    def set_signal(self, entity_id: str, signal_name: str, value: Optional[float]) -> None:
        with self._lock:
            values = self._signals.setdefault(entity_id, {})
            if value is None:
                values.pop(signal_name, None)
            else:
                values[signal_name] = value
