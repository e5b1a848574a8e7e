"""Signal collectors: read-only providers of raw per-entity signal values."""

from entity_scorer.signals.base import InMemorySignalCollector, SignalCollector

__all__ = ["InMemorySignalCollector", "SignalCollector"]
