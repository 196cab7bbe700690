"""Package initializer for `property_fusion`."""

from .errors import (
    EnrichmentUnavailable,
    ImplausibleValue,
    MalformedAddress,
    MalformedObservation,
    PropertyFusionError,
    StoreWriteFailure,
)
from .fusion import fuse, remove_distress_signal
from .ingest import BatchIngestor, IngestResult, stream_ingest
from .models import (
    CanonicalPropertyRecord,
    ChangeReport,
    Contact,
    RawPropertyObservation,
    Source,
    StructuredAddress,
)
from .normalize import normalize
from .policy import DEFAULT_POLICY, ConflictResolutionPolicy
from .store import CanonicalStore, InMemoryCanonicalStore, SQLiteCanonicalStore

__all__ = [
    "BatchIngestor",
    "CanonicalPropertyRecord",
    "CanonicalStore",
    "ChangeReport",
    "ConflictResolutionPolicy",
    "Contact",
    "DEFAULT_POLICY",
    "EnrichmentUnavailable",
    "ImplausibleValue",
    "InMemoryCanonicalStore",
    "IngestResult",
    "MalformedAddress",
    "MalformedObservation",
    "PropertyFusionError",
    "RawPropertyObservation",
    "SQLiteCanonicalStore",
    "Source",
    "StructuredAddress",
    "StoreWriteFailure",
    "fuse",
    "normalize",
    "remove_distress_signal",
    "stream_ingest",
]
