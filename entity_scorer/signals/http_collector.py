"""
HTTP signal collector — reads signals from a remote signal service.

Endpoint::

    GET {base_url}/entities/{entity_id}/signals/{signal_name}
      → 200 {"value": 12.0}          fact present
      → 200 {"value": null}          fact absent
      → 404                          fact (or entity) absent

Anything else — non-2xx status, transport error, timeout, a body without a
numeric ``value`` — raises ``SignalFetchError``.

The ``httpx.Client`` can be injected, which is how tests drive this collector
with ``httpx.MockTransport``.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from entity_scorer.config import SignalsConfig
from entity_scorer.errors import SignalFetchError
from entity_scorer.signals.base import SignalCollector

logger = logging.getLogger(__name__)


class HttpSignalCollector(SignalCollector):
    """Fetches raw signal values over HTTP.

    ``httpx.Client`` is thread-safe, so one instance serves every
    concurrent fetch of a scoring pass.
    """

    def __init__(
        self,
        base_url:        str,
        timeout_seconds: float = 2.0,
        client:          Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_config(
        cls,
        config: SignalsConfig,
        client: Optional[httpx.Client] = None,
    ) -> "HttpSignalCollector":
        if not config.http_base_url:
            raise ValueError("signals.http_base_url is not configured.")
        return cls(config.http_base_url, config.http_timeout_seconds, client=client)

    def fetch_signal(self, entity_id: str, signal_name: str) -> Optional[float]:
        url = (
            f"{self.base_url}/entities/{quote(entity_id, safe='')}"
            f"/signals/{quote(signal_name, safe='')}"
        )
        try:
            resp = self._client.get(url, timeout=self.timeout_seconds)
        except httpx.TimeoutException as exc:
            raise SignalFetchError(entity_id, signal_name, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise SignalFetchError(entity_id, signal_name, f"transport error: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.is_error:
            raise SignalFetchError(entity_id, signal_name, f"HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise SignalFetchError(entity_id, signal_name, "response is not JSON") from exc

        if not isinstance(payload, dict) or "value" not in payload:
            raise SignalFetchError(entity_id, signal_name, "response has no 'value' field")

        value = payload["value"]
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SignalFetchError(
                entity_id, signal_name, f"non-numeric value {value!r}"
            )
        logger.debug("Fetched %s/%s = %s", entity_id, signal_name, value)
        return float(value)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
