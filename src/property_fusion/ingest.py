"""Batch ingestion: group observations by identity, enrich, fuse, persist."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import islice
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from .config import get_settings
from .enrichment.base import EnrichmentClient
from .errors import EnrichmentUnavailable, MalformedAddress, StoreWriteFailure
from .fusion import fuse
from .models import CanonicalPropertyRecord, ChangeReport, RawPropertyObservation, StructuredAddress
from .normalize import normalize
from .policy import DEFAULT_POLICY, ConflictResolutionPolicy
from .store import CanonicalStore


logger = logging.getLogger("pfe.ingest")


@dataclass
class IngestResult:
    run_id: str
    started_at: str
    finished_at: str
    records: List[CanonicalPropertyRecord] = field(default_factory=list)
    reports: List[ChangeReport] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    enrichment_failures: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    failed_keys: List[str] = field(default_factory=list)
    log_entries: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "enrichment_failures": self.enrichment_failures,
            "identity_keys": [r.identity_key for r in self.records],
            "failed_keys": list(self.failed_keys),
            "errors": list(self.errors),
        }

    def absorb(self, other: "IngestResult", index_offset: int = 0) -> None:
        """Fold a later batch's result into this one."""

        self.records.extend(other.records)
        self.reports.extend(other.reports)
        self.processed += other.processed
        self.skipped += other.skipped
        self.failed += other.failed
        self.enrichment_failures += other.enrichment_failures
        for err in other.errors:
            entry = dict(err)
            if "index" in entry:
                entry["index"] += index_offset
            self.errors.append(entry)
        self.failed_keys.extend(other.failed_keys)
        self.log_entries.extend(other.log_entries)
        self.finished_at = other.finished_at


@dataclass
class _Group:
    identity_key: str
    address: StructuredAddress
    observations: List[RawPropertyObservation] = field(default_factory=list)


@dataclass
class _GroupOutcome:
    identity_key: str
    observations: int
    record: Optional[CanonicalPropertyRecord] = None
    report: Optional[ChangeReport] = None
    enrichment_failed: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


class BatchIngestor:
    """Runs ingest batches against one store.

    The store and enrichment client are owned by the caller. Groups are
    independent and run on a bounded thread pool; within a group the steps run
    in sequence under the store's per-key lock.
    """

    def __init__(
        self,
        store: CanonicalStore,
        enrichment_client: Optional[EnrichmentClient] = None,
        *,
        policy: ConflictResolutionPolicy = DEFAULT_POLICY,
        max_workers: Optional[int] = None,
        enrichment_enabled: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.enrichment_client = enrichment_client
        self.policy = policy
        self.max_workers = max(1, int(max_workers or settings.max_workers))
        self.enrichment_enabled = (
            settings.enrichment_enabled if enrichment_enabled is None else enrichment_enabled
        )
        self.clock = clock or _utc_now

    def group_observations(
        self, observations: Iterable[RawPropertyObservation]
    ) -> Tuple[List[_Group], List[Dict[str, Any]]]:
        groups: Dict[str, _Group] = {}
        skipped: List[Dict[str, Any]] = []
        for index, obs in enumerate(observations):
            try:
                address, key = normalize(obs.address_text)
            except MalformedAddress as exc:
                logger.info("Skipping observation %d from %s: %s", index, obs.source.value, exc.reason)
                skipped.append({"index": index, "kind": "malformed-address", "message": str(exc)})
                continue
            group = groups.get(key)
            if group is None:
                group = groups[key] = _Group(identity_key=key, address=address)
            group.observations.append(obs)
        return list(groups.values()), skipped

    def _fetch_enrichment(self, group: _Group) -> Tuple[Any, bool]:
        if not self.enrichment_enabled or self.enrichment_client is None:
            return None, False
        try:
            return self.enrichment_client.fetch_snapshot(group.identity_key, group.address), False
        except EnrichmentUnavailable as exc:
            logger.warning("Enrichment unavailable for %s: %s", group.identity_key, exc)
            return None, True
        except Exception:
            logger.exception("Enrichment client error for %s", group.identity_key)
            return None, True

    def _process_group(self, group: _Group) -> _GroupOutcome:
        outcome = _GroupOutcome(identity_key=group.identity_key, observations=len(group.observations))
        snapshot, outcome.enrichment_failed = self._fetch_enrichment(group)
        now = self.clock()
        try:
            with self.store.locked(group.identity_key):
                existing = self.store.get_or_create(
                    group.identity_key, group.address, created_at=_iso(now)
                )
                record, report = fuse(
                    existing, group.observations, snapshot, policy=self.policy, now=now
                )
                audited = report if report.changes or report.rejected else None
                self.store.put(record, audited)
        except StoreWriteFailure as exc:
            logger.error("Store write failed for %s: %s", group.identity_key, exc)
            outcome.error_kind, outcome.error = "store-write", str(exc)
            return outcome
        except Exception as exc:
            logger.exception("Unexpected failure fusing %s", group.identity_key)
            outcome.error_kind, outcome.error = "internal", f"{type(exc).__name__}: {exc}"
            return outcome
        outcome.record, outcome.report = record, report
        logger.debug(
            "Fused group %s: %d observation(s), %d change(s)",
            group.identity_key,
            outcome.observations,
            len(report.changes),
        )
        return outcome

    def ingest_batch(self, observations: Iterable[RawPropertyObservation]) -> IngestResult:
        started = self.clock()
        result = IngestResult(run_id=uuid4().hex, started_at=_iso(started), finished_at=_iso(started))
        groups, skipped = self.group_observations(observations)
        result.skipped = len(skipped)
        result.errors.extend(skipped)

        if groups:
            workers = min(self.max_workers, len(groups))
            with ThreadPoolExecutor(max_workers=workers) as ex:
                # map() yields in submission order, so results follow group order.
                outcomes = list(ex.map(self._process_group, groups))
        else:
            outcomes = []

        for outcome in outcomes:
            if outcome.enrichment_failed:
                result.enrichment_failures += 1
            entry: Dict[str, Any] = {
                "identity_key": outcome.identity_key,
                "observations": outcome.observations,
                "enrichment_failed": outcome.enrichment_failed,
            }
            if outcome.error_kind:
                result.failed += 1
                result.failed_keys.append(outcome.identity_key)
                result.errors.append(
                    {
                        "identity_key": outcome.identity_key,
                        "kind": outcome.error_kind,
                        "message": outcome.error,
                    }
                )
                entry.update({"status": "failed", "error": outcome.error})
            else:
                result.processed += 1
                result.records.append(outcome.record)
                result.reports.append(outcome.report)
                entry.update(
                    {
                        "status": "success",
                        "changes": len(outcome.report.changes),
                        "rejected": len(outcome.report.rejected),
                    }
                )
            result.log_entries.append(entry)

        result.finished_at = _iso(self.clock())
        logger.info(
            "Ingested batch %s: processed=%d skipped=%d failed=%d",
            result.run_id,
            result.processed,
            result.skipped,
            result.failed,
        )
        return result


def _chunks(items: Iterable[Any], size: int):
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def stream_ingest(
    observations: Iterable[RawPropertyObservation],
    ingestor: BatchIngestor,
    chunk_size: int = 100,
    on_chunk_complete: Optional[Callable[[int, IngestResult], None]] = None,
) -> IngestResult:
    """Feed an arbitrarily long iterable through `ingest_batch` in chunks.

    Chunks run one after another, so a key seen in two chunks is fused twice
    in arrival order. Malformed-observation indexes refer to the whole stream.
    """

    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    total: Optional[IngestResult] = None
    offset = 0
    for chunk_index, chunk in enumerate(_chunks(observations, chunk_size)):
        result = ingestor.ingest_batch(chunk)
        if total is None:
            total = IngestResult(
                run_id=result.run_id,
                started_at=result.started_at,
                finished_at=result.finished_at,
            )
        total.absorb(result, index_offset=offset)
        offset += len(chunk)
        if on_chunk_complete is not None:
            on_chunk_complete(chunk_index, result)
    if total is None:
        now = _iso(ingestor.clock())
        total = IngestResult(run_id=uuid4().hex, started_at=now, finished_at=now)
    return total
