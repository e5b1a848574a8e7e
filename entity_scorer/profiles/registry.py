"""
Profile store: loads, validates and serves versioned scoring profiles.

Usage
-----
    from entity_scorer.profiles.registry import ProfileStore

    store = ProfileStore.from_toml("config/profiles.toml")
    latest = store.get_profile("lead_score")
    pinned = store.get_profile("lead_score@1")

Profiles are immutable.  ``publish()`` adds a new version; re-publishing an
identical definition under an existing version is a no-op, while a changed
definition under an existing version is rejected.  Versions only move
forwards.

TOML structure expected in profiles.toml
----------------------------------------
    [profiles.<profile_id>]
    version     = 1
    entity_type = "customer"
    ceiling     = 100.0
    bands       = [{ label = "hot", min_score = 70.0 }]

    [[profiles.<profile_id>.terms]]
    signal_name = "interaction_count"
    weight      = 1.0
    transfer    = { kind = "linear_cap", scale = 2.0, cap = 20.0 }

Several versions of one profile may be declared as an array of tables
(``[[profiles.<profile_id>]]``).
"""

from __future__ import annotations

import logging
import threading
import tomllib
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from entity_scorer.errors import InvalidProfileError, UnknownProfileError
from entity_scorer.models.profile import ScoringProfile

logger = logging.getLogger(__name__)


def parse_profile_ref(ref: str) -> tuple[str, Optional[int]]:
    """Split ``"name"`` or ``"name@version"`` into ``(name, version | None)``.

    Raises:
        UnknownProfileError: If the version part is not a positive integer.
    """
    name, sep, version = ref.strip().partition("@")
    if not sep:
        return name, None
    if not version.isdigit() or int(version) < 1:
        raise UnknownProfileError(ref)
    return name, int(version)


def build_profile(profile_id: str, raw: dict[str, Any]) -> ScoringProfile:
    """Validate one raw profile block.

    Args:
        profile_id: Key of the TOML table (used when the block has no ``profile_id``).
        raw:        Raw dict for the block.

    Raises:
        InvalidProfileError: If any field fails validation.
    """
    data = dict(raw)
    data.setdefault("profile_id", profile_id)
    try:
        return ScoringProfile.model_validate(data)
    except ValidationError as exc:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'profile'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidProfileError(data.get("profile_id", "?"), reasons) from exc


class ProfileStore:
    """Thread-safe in-memory store of published profile versions."""

    def __init__(self, profiles: Iterable[ScoringProfile] = ()) -> None:
        self._lock = threading.Lock()
        self._versions: dict[str, dict[int, ScoringProfile]] = {}
        for profile in profiles:
            self.publish(profile)

    @classmethod
    def from_toml(cls, path: str | Path) -> "ProfileStore":
        store = cls()
        store.load(path)
        return store

    # ── Loading / publishing ───────────────────────────────────────────────────

    def load(self, path: str | Path) -> int:
        """Publish every profile declared in the TOML file at ``path``.

        Returns:
            Number of profile versions newly published.

        Raises:
            FileNotFoundError:       If ``path`` does not exist.
            tomllib.TOMLDecodeError: If the TOML is malformed.
            InvalidProfileError:     If a profile fails validation.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Profile file not found: {path}\n"
                "Expected at config/profiles.toml.  "
                "Set profiles.profiles_path in default.toml to override."
            )

        with open(path, "rb") as f:
            raw = tomllib.load(f)

        published = 0
        for profile_id, block in raw.get("profiles", {}).items():
            blocks = block if isinstance(block, list) else [block]
            for b in sorted(blocks, key=lambda b: b.get("version", 1)):
                before = len(self._versions.get(profile_id, {}))
                self.publish(build_profile(profile_id, b))
                published += len(self._versions.get(profile_id, {})) - before

        logger.info("Loaded %d profile version(s) from %s", published, path)
        return published

    def publish(self, profile: ScoringProfile) -> ScoringProfile:
        """Publish ``profile`` as a new version.

        Returns:
            The stored profile (the existing one for an identical re-publish).

        Raises:
            InvalidProfileError: If the version exists with a different
                definition, or is lower than the latest published version.
        """
        with self._lock:
            return self._publish_locked(profile)

    def publish_next(self, profile: ScoringProfile) -> ScoringProfile:
        """Publish ``profile`` under the next free version number.

        If its definition matches the latest version, nothing is published
        and the latest version is returned.
        """
        with self._lock:
            versions = self._versions.get(profile.profile_id, {})
            latest_version = max(versions, default=0)
            latest = versions.get(latest_version)
            if latest is not None and latest.same_definition(profile):
                return latest
            return self._publish_locked(
                profile.model_copy(update={"version": latest_version + 1})
            )

    def _publish_locked(self, profile: ScoringProfile) -> ScoringProfile:
        """Publish rules for ``publish()``; caller holds the lock."""
        versions = self._versions.setdefault(profile.profile_id, {})
        existing = versions.get(profile.version)
        if existing is not None:
            if existing == profile:
                return existing
            raise InvalidProfileError(
                profile.profile_id,
                f"version {profile.version} is already published with a "
                "different definition; publish a new version instead.",
            )
        latest = max(versions, default=0)
        if profile.version < latest:
            raise InvalidProfileError(
                profile.profile_id,
                f"version {profile.version} is older than the latest "
                f"published version {latest}.",
            )
        versions[profile.version] = profile
        logger.info("Published scoring profile %s", profile.ref)
        return profile

    # ── Lookup ─────────────────────────────────────────────────────────────────

    def get_profile(self, ref: str) -> ScoringProfile:
        """Resolve ``"name"`` (latest version) or ``"name@version"``.

        Raises:
            UnknownProfileError: If the profile or version is not published.
        """
        name, version = parse_profile_ref(ref)
        with self._lock:
            versions = self._versions.get(name)
            if not versions:
                raise UnknownProfileError(ref, list(self._versions))
            if version is None:
                return versions[max(versions)]
            if version not in versions:
                raise UnknownProfileError(
                    ref, [f"{name}@{v}" for v in sorted(versions)]
                )
            return versions[version]

    def list_profiles(self) -> list[ScoringProfile]:
        """Latest version of every profile, sorted by id."""
        with self._lock:
            return [v[max(v)] for _, v in sorted(self._versions.items()) if v]

    def versions(self, profile_id: str) -> list[int]:
        with self._lock:
            versions = self._versions.get(profile_id)
            if not versions:
                raise UnknownProfileError(profile_id, list(self._versions))
            return sorted(versions)

    def __contains__(self, ref: object) -> bool:
        if not isinstance(ref, str):
            return False
        try:
            self.get_profile(ref)
        except UnknownProfileError:
            return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._versions.values())
