from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import requests

from ..cache import TTLCache
from ..errors import EnrichmentUnavailable
from ..models import StructuredAddress, utc_now_iso
from .snapshot import EnrichmentSnapshot


logger = logging.getLogger("pfe.enrichment")

_DEFAULT_UA = "property-fusion/0.1 (+enrichment)"


class HttpEnrichmentClient:
    """Property lookups against a paid provider's REST API.

    One request per call, bounded by `timeout`. Transient failures are not
    retried here; the caller degrades to fusing without enrichment. Results
    are cached per identity key and lookups are capped per UTC day.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        daily_cap: int = 200,
        cache_ttl_s: int = 900,
        provider: str = "attom",
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.daily_cap = daily_cap
        self.cache_ttl_s = cache_ttl_s
        self.provider = provider
        self._clock = clock or time.time
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "apikey": api_key,
                "Accept": "application/json",
                "User-Agent": _DEFAULT_UA,
            }
        )
        self._cache = TTLCache(max_entries=512, clock=self._clock)
        self._lock = threading.Lock()
        self._day = self._today()
        self._lookups_today = 0

    def _today(self):
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()

    @property
    def lookups_today(self) -> int:
        return self._lookups_today

    def cache_stats(self) -> dict:
        return self._cache.stats()

    def _reserve_lookup(self, identity_key: str) -> None:
        with self._lock:
            today = self._today()
            if today != self._day:
                self._day = today
                self._lookups_today = 0
            if self._lookups_today >= self.daily_cap:
                raise EnrichmentUnavailable(
                    "daily enrichment cap exceeded",
                    identity_key=identity_key,
                    status_code=429,
                )
            self._lookups_today += 1

    def _request(self, identity_key: str, address: StructuredAddress) -> Any:
        street = " ".join(p for p in (address.street_line, address.unit) if p)
        locality = " ".join(p for p in (address.state, address.postal_code) if p)
        params = {
            "address1": street,
            "address2": ", ".join(p for p in (address.city, locality) if p),
        }
        try:
            resp = self._session.get(
                f"{self.base_url}/property/address",
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise EnrichmentUnavailable(
                f"enrichment timed out after {self.timeout}s", identity_key=identity_key
            ) from exc
        except requests.RequestException as exc:
            raise EnrichmentUnavailable(
                f"enrichment request failed: {exc}", identity_key=identity_key
            ) from exc
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise EnrichmentUnavailable(
                f"provider returned HTTP {resp.status_code}",
                identity_key=identity_key,
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise EnrichmentUnavailable(
                "provider returned invalid JSON", identity_key=identity_key
            ) from exc

    def fetch_snapshot(
        self,
        identity_key: str,
        address: Optional[StructuredAddress] = None,
    ) -> Optional[EnrichmentSnapshot]:
        cached = self._cache.get(identity_key)
        if cached is not None:
            logger.debug("Enrichment cache hit for %s", identity_key)
            return cached
        if address is None:
            raise EnrichmentUnavailable(
                "address required for provider lookup", identity_key=identity_key
            )

        self._reserve_lookup(identity_key)
        payload = self._request(identity_key, address)
        properties = payload.get("property") if isinstance(payload, dict) else None
        if not properties:
            logger.info("No enrichment data for %s", identity_key)
            return None

        snapshot = EnrichmentSnapshot.from_provider_payload(
            identity_key,
            properties[0],
            provider=self.provider,
            fetched_at=utc_now_iso(),
            source_url=f"{self.base_url}/property/address",
        )
        self._cache.set(identity_key, snapshot, ttl=self.cache_ttl_s)
        return snapshot
