"""Merge raw observations into a canonical property record.

`fuse` is a pure function of its arguments: it never touches the store or the
network, and the only clock it reads is the optional `now` argument (falling
back to the current time for `last_fused_at`). Every adopted or rejected
candidate value is accounted for in the returned `ChangeReport`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .attributes import MAX_EXTRAS, NUMERIC_FIELDS, PropertyField, is_empty
from .contacts import merge_contacts
from .errors import MalformedAddress
from .models import (
    CanonicalPropertyRecord,
    ChangeReport,
    FieldChange,
    Provenance,
    RawPropertyObservation,
    RejectedCandidate,
    Source,
    SourceRef,
    StructuredAddress,
    normalize_signal,
    parse_iso,
)
from .normalize import normalize
from .owner import choose_owner_name, clean_owner_name, same_owner
from .plausibility import check_plausible
from .policy import DEFAULT_POLICY, ConflictResolutionPolicy


logger = logging.getLogger("pfe.fusion")

REJECT_IMPLAUSIBLE = "implausible"
REJECT_LOWER_PRIORITY = "lower-priority"
REJECT_EXISTING_KEPT = "existing-kept"
REJECT_OUTRANKED = "outranked"


@dataclass(frozen=True)
class _Candidate:
    value: Any
    source: Source
    captured_at: str
    priority: int


def _tiebreak(obs: RawPropertyObservation) -> str:
    return json.dumps(
        [obs.source_url, obs.address_text, sorted(obs.field_values().items())],
        default=str,
        sort_keys=True,
    )


def order_observations(
    observations: Iterable[RawPropertyObservation],
    policy: ConflictResolutionPolicy = DEFAULT_POLICY,
    field_name: Optional[str] = None,
) -> List[RawPropertyObservation]:
    """Most authoritative first: source priority, then newest capture.

    Full ties fall back to a content ordering so the result never depends on
    the order the caller passed observations in.
    """

    return sorted(
        observations,
        key=lambda o: (
            -policy.priority(o.source, field_name),
            -parse_iso(o.captured_at).timestamp(),
            _tiebreak(o),
        ),
    )


def _as_observation(enrichment: Any) -> Optional[RawPropertyObservation]:
    if enrichment is None:
        return None
    if isinstance(enrichment, RawPropertyObservation):
        return enrichment
    return enrichment.to_observation()


def _derive_identity(
    observations: Sequence[RawPropertyObservation],
) -> Tuple[StructuredAddress, str]:
    for obs in observations:
        try:
            return normalize(obs.address_text)
        except MalformedAddress:
            continue
    raise MalformedAddress(None, "no observation address could be normalized")


def _owner_first(candidates: List[_Candidate]) -> List[_Candidate]:
    usable = [c for c in candidates if clean_owner_name(c.value) is not None]
    if not usable:
        return []
    top = [c for c in usable if c.priority == usable[0].priority]
    chosen = choose_owner_name(c.value for c in top)
    for i, cand in enumerate(usable):
        if clean_owner_name(cand.value) == chosen:
            return [cand] + usable[:i] + usable[i + 1 :]
    return usable


def _reject(
    report: ChangeReport,
    field_name: str,
    cand: _Candidate,
    reason: str,
    detail: str = "",
) -> None:
    report.rejected.append(
        RejectedCandidate(
            field=field_name,
            value=cand.value,
            source=cand.source.value,
            captured_at=cand.captured_at,
            reason=reason,
            detail=detail,
        )
    )


def _equivalent(field_name: str, a: Any, b: Any) -> bool:
    if a == b:
        return True
    return field_name == PropertyField.OWNER_NAME and same_owner(a, b)


def _resolve_field(
    record: CanonicalPropertyRecord,
    field_name: str,
    candidates: List[_Candidate],
    report: ChangeReport,
    policy: ConflictResolutionPolicy,
    now: datetime,
) -> None:
    current = record.fields.get(field_name)
    held = record.provenance.get(field_name)
    held_priority: Optional[int] = None
    if held is not None and not is_empty(current):
        held_priority = policy.priority(held.source, field_name)
    numeric = field_name in NUMERIC_FIELDS

    winner: Optional[_Candidate] = None
    for cand in candidates:
        implausible = (
            check_plausible(field_name, cand.value, current, policy=policy, now=now)
            if numeric
            else None
        )
        if winner is not None:
            if not _equivalent(field_name, cand.value, winner.value):
                _reject(report, field_name, cand, REJECT_OUTRANKED, f"kept {winner.source.value}")
            continue

        if held_priority is not None and cand.priority <= held_priority:
            if _equivalent(field_name, cand.value, current):
                continue
            if implausible:
                logger.warning(
                    "Rejected implausible %s=%r from %s for %s: %s",
                    field_name, cand.value, cand.source.value, record.identity_key, implausible,
                )
                _reject(report, field_name, cand, REJECT_IMPLAUSIBLE, implausible)
            elif cand.priority < held_priority:
                _reject(report, field_name, cand, REJECT_LOWER_PRIORITY, f"held by {held.source}")
            else:
                _reject(report, field_name, cand, REJECT_EXISTING_KEPT, f"held by {held.source}")
            continue

        if implausible:
            logger.warning(
                "Rejected implausible %s=%r from %s for %s: %s",
                field_name, cand.value, cand.source.value, record.identity_key, implausible,
            )
            _reject(report, field_name, cand, REJECT_IMPLAUSIBLE, implausible)
            continue

        winner = cand
        provenance = Provenance(source=cand.source.value, captured_at=cand.captured_at)
        if cand.value == current:
            # A more trusted source confirmed the held value.
            record.provenance[field_name] = provenance
            continue
        record.fields[field_name] = cand.value
        record.provenance[field_name] = provenance
        report.changes.append(
            FieldChange(
                field=field_name,
                old_value=current,
                new_value=cand.value,
                winning_source=cand.source.value,
            )
        )


def _fuse_fields(
    record: CanonicalPropertyRecord,
    inputs: Sequence[RawPropertyObservation],
    report: ChangeReport,
    policy: ConflictResolutionPolicy,
    now: datetime,
) -> None:
    names = sorted({name for obs in inputs for name in obs.field_values()})
    for name in names:
        candidates = []
        for obs in order_observations(inputs, policy, name):
            value = obs.field_values().get(name)
            if is_empty(value):
                continue
            candidates.append(
                _Candidate(
                    value=value,
                    source=obs.source,
                    captured_at=obs.captured_at,
                    priority=policy.priority(obs.source, name),
                )
            )
        if name == PropertyField.OWNER_NAME:
            candidates = _owner_first(candidates)
        if candidates:
            _resolve_field(record, name, candidates, report, policy, now)


def _best_source(sources: Iterable[str], policy: ConflictResolutionPolicy) -> str:
    ranked = sorted(set(sources), key=lambda s: (-policy.priority(s), s))
    return ranked[0] if ranked else ""


def _fuse_signals(
    record: CanonicalPropertyRecord,
    inputs: Sequence[RawPropertyObservation],
    report: ChangeReport,
    policy: ConflictResolutionPolicy,
) -> None:
    before = set(record.distress_signals)
    contributors = []
    merged = set(before)
    for obs in inputs:
        new = set(obs.distress_signals) - before
        if new:
            contributors.append(obs.source.value)
        merged |= set(obs.distress_signals)
    if merged == before:
        return
    record.distress_signals = merged
    report.changes.append(
        FieldChange(
            field="distress_signals",
            old_value=sorted(before),
            new_value=sorted(merged),
            winning_source=_best_source(contributors, policy),
        )
    )


def _fuse_contacts(
    record: CanonicalPropertyRecord,
    inputs: Sequence[RawPropertyObservation],
    report: ChangeReport,
    policy: ConflictResolutionPolicy,
) -> None:
    incoming = [c for obs in inputs for c in obs.contacts]
    if not incoming:
        return
    before = list(record.contacts)
    merged = merge_contacts(before, incoming)
    if merged == before:
        return
    record.contacts = merged
    added = [c.source for c in merged if c not in before]
    report.changes.append(
        FieldChange(
            field="contacts",
            old_value=[c.to_dict() for c in before],
            new_value=[c.to_dict() for c in merged],
            winning_source=_best_source(added, policy),
        )
    )


def _fuse_sources(
    record: CanonicalPropertyRecord,
    inputs: Sequence[RawPropertyObservation],
    policy: ConflictResolutionPolicy,
) -> None:
    refs = list(record.sources)
    seen = set(refs)
    for obs in inputs:
        ref = SourceRef(source=obs.source.value, source_url=obs.source_url, captured_at=obs.captured_at)
        if ref not in seen:
            seen.add(ref)
            refs.append(ref)
    refs.sort(key=lambda r: (-parse_iso(r.captured_at).timestamp(), r.source, r.source_url))
    record.sources = refs[: policy.max_sources]


def _fuse_extras(
    record: CanonicalPropertyRecord, inputs: Sequence[RawPropertyObservation]
) -> None:
    for obs in inputs:
        if not obs.extras:
            continue
        bucket = record.unreviewed_extras.setdefault(obs.source.value, {})
        for key, value in sorted(obs.extras.items()):
            if key in bucket or len(bucket) < MAX_EXTRAS:
                bucket[key] = value


def fuse(
    existing: Optional[CanonicalPropertyRecord],
    observations: Iterable[RawPropertyObservation],
    enrichment: Any = None,
    *,
    identity_key: Optional[str] = None,
    address: Optional[StructuredAddress] = None,
    policy: ConflictResolutionPolicy = DEFAULT_POLICY,
    now: Optional[datetime] = None,
) -> Tuple[CanonicalPropertyRecord, ChangeReport]:
    """Fuse `observations` (and an optional enrichment snapshot) into a record.

    `existing` is never mutated; the updated record is a new object. When
    `existing` is None the identity comes from `identity_key`/`address` or,
    failing that, from normalizing the observations' address text.
    """

    observations = list(observations)
    now_dt = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    now_iso = now_dt.replace(microsecond=0).isoformat()

    if existing is None:
        if identity_key is None or address is None:
            address, identity_key = _derive_identity(observations)
        record = CanonicalPropertyRecord.empty(identity_key, address, created_at=now_iso)
    else:
        record = existing.copy()

    enrichment_obs = _as_observation(enrichment)
    inputs = observations + ([enrichment_obs] if enrichment_obs is not None else [])

    report = ChangeReport(
        identity_key=record.identity_key,
        fused_at=now_iso,
        observations=len(observations),
        enrichment_used=enrichment_obs is not None,
        policy_version=policy.version,
    )

    _fuse_fields(record, inputs, report, policy, now_dt)
    _fuse_signals(record, inputs, report, policy)
    _fuse_contacts(record, inputs, report, policy)
    _fuse_sources(record, inputs, policy)
    _fuse_extras(record, inputs)

    record.observation_count += len(observations)
    record.last_fused_at = now_iso

    logger.debug(
        "Fused %s: %d observation(s), %d change(s), %d rejected",
        record.identity_key,
        len(observations),
        len(report.changes),
        len(report.rejected),
    )
    return record, report


def remove_distress_signal(
    record: CanonicalPropertyRecord,
    signal: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[CanonicalPropertyRecord, ChangeReport]:
    """Explicitly drop one distress signal. Fusion itself never removes signals."""

    now_iso = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0).isoformat()
    updated = record.copy()
    report = ChangeReport(identity_key=record.identity_key, fused_at=now_iso)
    tag = normalize_signal(signal)
    if tag in updated.distress_signals:
        before = sorted(updated.distress_signals)
        updated.distress_signals.discard(tag)
        report.changes.append(
            FieldChange(
                field="distress_signals",
                old_value=before,
                new_value=sorted(updated.distress_signals),
                winning_source=Source.MANUAL.value,
            )
        )
    return updated, report
