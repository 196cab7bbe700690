from __future__ import annotations

from typing import Optional, Protocol

from ..models import StructuredAddress
from .snapshot import EnrichmentSnapshot


class EnrichmentClient(Protocol):
    """Read-only, best-effort lookup of third-party property data.

    Implementations raise EnrichmentUnavailable for any provider failure and
    return None when the provider has no data for the property.
    """

    def fetch_snapshot(
        self,
        identity_key: str,
        address: Optional[StructuredAddress] = None,
    ) -> Optional[EnrichmentSnapshot]:
        ...


class NoopEnrichmentClient:
    def fetch_snapshot(self, identity_key, address=None) -> Optional[EnrichmentSnapshot]:
        return None


class StaticEnrichmentClient:
    """Serves snapshots from a prefetched mapping keyed by identity key."""

    def __init__(self, snapshots: dict[str, EnrichmentSnapshot] | None = None) -> None:
        self.snapshots = dict(snapshots or {})

    def fetch_snapshot(self, identity_key, address=None) -> Optional[EnrichmentSnapshot]:
        return self.snapshots.get(identity_key)
