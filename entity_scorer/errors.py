"""
Exception taxonomy for the scoring engine.

Recoverable (absorbed inside the engine or cache, surfaced as warnings):
  SignalFetchError        — one signal could not be read; contributes 0.
  CacheCoalescingTimeout  — waiting on another caller's recompute took too
                            long; the waiter computes directly instead.

Fatal (surfaced to the caller unchanged):
  UnknownProfileError     — profile id / version not in the store.
  InvalidProfileError     — profile rejected at publish / load time.
  InvalidRequestError     — malformed recommendation request.
  DatabaseNotInitializedError — the configured DB was never set up with
                            `init-db`.
"""

from __future__ import annotations

from typing import Optional


class ScoringError(Exception):
    """Base class for every error raised by entity_scorer."""


class SignalFetchError(ScoringError):
    """Raised by a signal collector on a genuine I/O failure.

    "No such fact" is never an error — collectors return ``None`` for that.

    Attributes:
        entity_id:   Entity whose signal was requested.
        signal_name: The signal that failed.
    """

    def __init__(self, entity_id: str, signal_name: str, reason: str) -> None:
        self.entity_id   = entity_id
        self.signal_name = signal_name
        self.reason      = reason
        super().__init__(
            f"Failed to fetch signal '{signal_name}' for entity '{entity_id}': {reason}"
        )


class UnknownProfileError(ScoringError, KeyError):
    """Raised when a profile id (or ``id@version``) is not registered.

    Attributes:
        profile_id: The requested profile reference.
        available:  Sorted ids known to the store.
    """

    def __init__(self, profile_id: str, available: Optional[list[str]] = None) -> None:
        self.profile_id = profile_id
        self.available  = sorted(available or [])
        super().__init__(profile_id)

    def __str__(self) -> str:
        return (
            f"Scoring profile '{self.profile_id}' not found.  "
            f"Available profiles: {self.available}"
        )


class InvalidProfileError(ScoringError, ValueError):
    """Raised when a profile definition violates the publishing rules.

    Attributes:
        profile_id: Id of the rejected profile (may be ``"?"`` if unparseable).
    """

    def __init__(self, profile_id: str, reason: str) -> None:
        self.profile_id = profile_id
        self.reason     = reason
        super().__init__(f"Invalid scoring profile '{profile_id}': {reason}")


class CacheCoalescingTimeout(ScoringError):
    """Raised when a coalesced waiter gives up on an in-flight recompute."""

    def __init__(self, key: tuple, timeout_seconds: float) -> None:
        self.key             = key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds:.2f}s waiting for in-flight score {key}"
        )


class InvalidRequestError(ScoringError, ValueError):
    """Raised for a malformed recommendation request."""


class DatabaseNotInitializedError(ScoringError):
    """Raised when the configured SQLite file has no scoring schema yet."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(
            f"Database has no scoring schema ({detail}); run `entity-scorer init-db` first."
        )
