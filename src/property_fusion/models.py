from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from .attributes import PropertyField, coerce_value, split_attributes
from .errors import MalformedObservation


class Source(StrEnum):
    """Origin of a raw observation."""

    LISTING_SITE = "listing-site"
    AUCTION_SITE = "auction-site"
    RECORD_FEED = "record-feed"
    ENRICHMENT_PROVIDER = "enrichment-provider"
    MANUAL = "manual"


# Labels emitted by scrapers/importers, matched exactly first, then as substrings.
SOURCE_ALIASES: Mapping[str, Source] = MappingProxyType(
    {
        "attom": Source.ENRICHMENT_PROVIDER,
        "attom-api": Source.ENRICHMENT_PROVIDER,
        "enrichment": Source.ENRICHMENT_PROVIDER,
        "county-records": Source.RECORD_FEED,
        "county": Source.RECORD_FEED,
        "tax-records": Source.RECORD_FEED,
        "records": Source.RECORD_FEED,
        "probate": Source.RECORD_FEED,
        "auction-com": Source.AUCTION_SITE,
        "auction": Source.AUCTION_SITE,
        "hubzu": Source.AUCTION_SITE,
        "foreclosure": Source.AUCTION_SITE,
        "zillow": Source.LISTING_SITE,
        "redfin": Source.LISTING_SITE,
        "realtor": Source.LISTING_SITE,
        "mls": Source.LISTING_SITE,
        "classifieds": Source.LISTING_SITE,
        "listing": Source.LISTING_SITE,
    }
)


def resolve_source(label: Any, aliases: Mapping[str, Source] = SOURCE_ALIASES) -> Source:
    if isinstance(label, Source):
        return label
    key = str(label or "").strip().casefold().replace("_", "-").replace(" ", "-")
    if not key:
        return Source.MANUAL
    try:
        return Source(key)
    except ValueError:
        pass
    if key in aliases:
        return aliases[key]
    for alias in sorted(aliases, key=len, reverse=True):
        if alias in key:
            return aliases[alias]
    return Source.MANUAL


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def parse_iso(value: Optional[str]) -> datetime:
    """Parse an ISO8601 timestamp; unparseable or missing values sort first."""

    text = (value or "").strip()
    if not text:
        return _EPOCH
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return _EPOCH
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_signal(tag: Any) -> str:
    text = "-".join(str(tag or "").casefold().replace("_", " ").split())
    return text


def signal_values(value: Any) -> Tuple[Any, ...]:
    """A lone tag string is one signal, not a sequence of characters."""

    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Mapping):
        raise MalformedObservation("distress_signals", "expected a list of tags")
    try:
        return tuple(value)
    except TypeError:
        return (value,)


class ContactType(StrEnum):
    PHONE = "phone"
    EMAIL = "email"


@dataclass(frozen=True)
class Contact:
    type: str
    value: str
    confidence: float = 0.5
    source: str = ""
    captured_at: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", str(self.type or "").strip().casefold())
        object.__setattr__(self, "value", str(self.value or "").strip())
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError):
            confidence = 0.0
        object.__setattr__(self, "confidence", min(1.0, max(0.0, confidence)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "value": self.value,
            "confidence": self.confidence,
            "source": self.source,
            "captured_at": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Contact":
        return cls(
            type=data.get("type") or "",
            value=data.get("value") or "",
            confidence=data.get("confidence", 0.5),
            source=str(data.get("source") or ""),
            captured_at=str(data.get("captured_at") or data.get("capturedAt") or ""),
        )


@dataclass(frozen=True)
class StructuredAddress:
    street_line: str
    unit: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    @property
    def is_partial(self) -> bool:
        return not (self.city and self.state and self.postal_code)

    def one_line(self) -> str:
        street = " ".join(p for p in (self.street_line, self.unit) if p)
        locality = " ".join(p for p in (self.state, self.postal_code) if p)
        return ", ".join(p for p in (street, self.city, locality) if p)

    def to_dict(self) -> Dict[str, str]:
        return {
            "street_line": self.street_line,
            "unit": self.unit,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StructuredAddress":
        return cls(
            street_line=str(data.get("street_line") or ""),
            unit=str(data.get("unit") or ""),
            city=str(data.get("city") or ""),
            state=str(data.get("state") or ""),
            postal_code=str(data.get("postal_code") or ""),
        )


def _contacts_from(values: Iterable[Any], source: str, captured_at: str) -> Tuple[Contact, ...]:
    out: List[Contact] = []
    for value in values or ():
        if isinstance(value, Contact):
            contact = value
        elif isinstance(value, Mapping):
            contact = Contact.from_dict(value)
        else:
            continue
        if not contact.source or not contact.captured_at:
            contact = Contact(
                type=contact.type,
                value=contact.value,
                confidence=contact.confidence,
                source=contact.source or source,
                captured_at=contact.captured_at or captured_at,
            )
        out.append(contact)
    return tuple(out)


@dataclass(frozen=True)
class RawPropertyObservation:
    """One source's view of a property at capture time. Immutable."""

    source: Source
    address_text: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    owner_name: Optional[str] = None
    price_hint: Optional[float] = None
    distress_signals: FrozenSet[str] = frozenset()
    contacts: Tuple[Contact, ...] = ()
    source_url: str = ""
    captured_at: str = ""
    extras: Mapping[str, str] = field(default_factory=dict)
    source_label: str = ""

    def __post_init__(self) -> None:
        label = self.source_label or str(self.source)
        source = resolve_source(self.source)
        known, extras = split_attributes(self.attributes)
        extras = {**extras, **dict(self.extras or {})}
        owner = coerce_value(PropertyField.OWNER_NAME, self.owner_name)
        price = coerce_value(PropertyField.PRICE_HINT, self.price_hint)
        signals = frozenset(
            s for s in (normalize_signal(t) for t in signal_values(self.distress_signals)) if s
        )
        object.__setattr__(self, "source", source)
        object.__setattr__(self, "source_label", label)
        object.__setattr__(self, "address_text", str(self.address_text or ""))
        object.__setattr__(self, "attributes", MappingProxyType(known))
        object.__setattr__(self, "extras", MappingProxyType(extras))
        object.__setattr__(self, "owner_name", owner)
        object.__setattr__(self, "price_hint", price)
        object.__setattr__(self, "distress_signals", signals)
        object.__setattr__(
            self,
            "contacts",
            _contacts_from(self.contacts, source.value, self.captured_at or ""),
        )
        object.__setattr__(self, "source_url", str(self.source_url or ""))
        object.__setattr__(self, "captured_at", str(self.captured_at or ""))

    def field_values(self) -> Dict[str, Any]:
        """Candidate values this observation offers for canonical fields."""

        values = dict(self.attributes)
        if self.owner_name is not None:
            values[PropertyField.OWNER_NAME.value] = self.owner_name
        if self.price_hint is not None:
            values[PropertyField.PRICE_HINT.value] = self.price_hint
        return values

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        *,
        aliases: Mapping[str, Source] = SOURCE_ALIASES,
    ) -> "RawPropertyObservation":
        """Build an observation from an importer/scraper JSON object.

        Accepts both snake_case and camelCase keys. A missing capture time is
        stamped with the current time.
        """

        label = str(data.get("source") or data.get("sourceKey") or "")
        address = data.get("address_text", data.get("addressText", data.get("address")))
        if isinstance(address, Mapping):
            address = ", ".join(
                str(address.get(k) or "")
                for k in ("line1", "city", "state", "zip")
                if address.get(k)
            )
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, Mapping):
            raise MalformedObservation("attributes", "expected an object")
        contacts = data.get("contacts") or ()
        if not isinstance(contacts, (list, tuple)):
            raise MalformedObservation("contacts", "expected a list")
        return cls(
            source=resolve_source(label, aliases),
            source_label=label,
            address_text=str(address or ""),
            attributes=attributes,
            owner_name=data.get("owner_name", data.get("ownerName")),
            price_hint=data.get("price_hint", data.get("priceHint")),
            distress_signals=signal_values(
                data.get("distress_signals") or data.get("distressSignals")
            ),
            contacts=tuple(contacts),
            source_url=str(data.get("source_url") or data.get("sourceUrl") or ""),
            captured_at=str(
                data.get("captured_at") or data.get("capturedAt") or utc_now_iso()
            ),
        )


@dataclass(frozen=True)
class Provenance:
    source: str
    captured_at: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "captured_at": self.captured_at}


@dataclass(frozen=True)
class SourceRef:
    source: str
    source_url: str
    captured_at: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "source_url": self.source_url,
            "captured_at": self.captured_at,
        }


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Any
    new_value: Any
    winning_source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "winning_source": self.winning_source,
        }


@dataclass(frozen=True)
class RejectedCandidate:
    field: str
    value: Any
    source: str
    captured_at: str
    reason: str
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "value": self.value,
            "source": self.source,
            "captured_at": self.captured_at,
            "reason": self.reason,
            "detail": self.detail,
        }


@dataclass
class ChangeReport:
    identity_key: str
    fused_at: str
    changes: List[FieldChange] = field(default_factory=list)
    rejected: List[RejectedCandidate] = field(default_factory=list)
    observations: int = 0
    enrichment_used: bool = False
    policy_version: str = ""

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def changed_fields(self) -> List[str]:
        return [c.field for c in self.changes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_key": self.identity_key,
            "fused_at": self.fused_at,
            "changes": [c.to_dict() for c in self.changes],
            "rejected": [r.to_dict() for r in self.rejected],
            "observations": self.observations,
            "enrichment_used": self.enrichment_used,
            "policy_version": self.policy_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChangeReport":
        return cls(
            identity_key=str(data.get("identity_key") or ""),
            fused_at=str(data.get("fused_at") or ""),
            changes=[FieldChange(**c) for c in data.get("changes") or []],
            rejected=[RejectedCandidate(**r) for r in data.get("rejected") or []],
            observations=int(data.get("observations") or 0),
            enrichment_used=bool(data.get("enrichment_used")),
            policy_version=str(data.get("policy_version") or ""),
        )


@dataclass
class CanonicalPropertyRecord:
    """The fused, authoritative view of one property."""

    identity_key: str
    address: StructuredAddress
    fields: Dict[str, Any] = field(default_factory=dict)
    provenance: Dict[str, Provenance] = field(default_factory=dict)
    distress_signals: Set[str] = field(default_factory=set)
    contacts: List[Contact] = field(default_factory=list)
    sources: List[SourceRef] = field(default_factory=list)
    unreviewed_extras: Dict[str, Dict[str, str]] = field(default_factory=dict)
    created_at: str = ""
    last_fused_at: Optional[str] = None
    observation_count: int = 0

    @classmethod
    def empty(
        cls,
        identity_key: str,
        address: StructuredAddress,
        created_at: Optional[str] = None,
    ) -> "CanonicalPropertyRecord":
        return cls(
            identity_key=identity_key,
            address=address,
            created_at=created_at or utc_now_iso(),
        )

    def copy(self) -> "CanonicalPropertyRecord":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_key": self.identity_key,
            "address": self.address.to_dict(),
            "fields": dict(self.fields),
            "provenance": {k: v.to_dict() for k, v in sorted(self.provenance.items())},
            "distress_signals": sorted(self.distress_signals),
            "contacts": [c.to_dict() for c in self.contacts],
            "sources": [s.to_dict() for s in self.sources],
            "unreviewed_extras": {k: dict(v) for k, v in self.unreviewed_extras.items()},
            "created_at": self.created_at,
            "last_fused_at": self.last_fused_at,
            "observation_count": self.observation_count,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=True, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CanonicalPropertyRecord":
        return cls(
            identity_key=str(data.get("identity_key") or ""),
            address=StructuredAddress.from_dict(data.get("address") or {}),
            fields=dict(data.get("fields") or {}),
            provenance={
                k: Provenance(source=str(v.get("source") or ""), captured_at=str(v.get("captured_at") or ""))
                for k, v in (data.get("provenance") or {}).items()
            },
            distress_signals=set(data.get("distress_signals") or []),
            contacts=[Contact.from_dict(c) for c in data.get("contacts") or []],
            sources=[
                SourceRef(
                    source=str(s.get("source") or ""),
                    source_url=str(s.get("source_url") or ""),
                    captured_at=str(s.get("captured_at") or ""),
                )
                for s in data.get("sources") or []
            ],
            unreviewed_extras={
                k: dict(v) for k, v in (data.get("unreviewed_extras") or {}).items()
            },
            created_at=str(data.get("created_at") or ""),
            last_fused_at=data.get("last_fused_at"),
            observation_count=int(data.get("observation_count") or 0),
        )

    @classmethod
    def from_json(cls, text: str) -> "CanonicalPropertyRecord":
        return cls.from_dict(json.loads(text))
