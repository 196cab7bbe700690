from __future__ import annotations

from typing import Optional

from ..config import FusionSettings, get_settings
from .base import EnrichmentClient, NoopEnrichmentClient, StaticEnrichmentClient
from .http import HttpEnrichmentClient
from .snapshot import EnrichmentSnapshot, PROVIDER_FIELD_MAP


def get_enrichment_client(settings: Optional[FusionSettings] = None) -> EnrichmentClient:
    settings = settings or get_settings()
    if settings.enrichment_url and settings.enrichment_api_key:
        return HttpEnrichmentClient(
            settings.enrichment_url,
            settings.enrichment_api_key,
            timeout=settings.enrichment_timeout_s,
            daily_cap=settings.enrichment_daily_cap,
            cache_ttl_s=settings.enrichment_cache_ttl_s,
        )
    # Without credentials we never reach for the network.
    return NoopEnrichmentClient()


__all__ = [
    "EnrichmentClient",
    "EnrichmentSnapshot",
    "HttpEnrichmentClient",
    "NoopEnrichmentClient",
    "PROVIDER_FIELD_MAP",
    "StaticEnrichmentClient",
    "get_enrichment_client",
]
