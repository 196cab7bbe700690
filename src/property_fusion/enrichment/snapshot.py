from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..attributes import PropertyField
from ..models import RawPropertyObservation, Source, utc_now_iso


# Dotted provider paths -> canonical field names.
PROVIDER_FIELD_MAP: Dict[str, str] = {
    "identifier.obPropId": PropertyField.PARCEL_ID.value,
    "identifier.apn": PropertyField.APN.value,
    "building.size.universalsize": PropertyField.SQUARE_FEET.value,
    "building.size.livingsize": PropertyField.SQUARE_FEET.value,
    "building.rooms.beds": PropertyField.BEDROOMS.value,
    "building.rooms.bathstotal": PropertyField.BATHROOMS.value,
    "summary.yearbuilt": PropertyField.YEAR_BUILT.value,
    "building.yearbuilt": PropertyField.YEAR_BUILT.value,
    "summary.proptype": PropertyField.PROPERTY_TYPE.value,
    "lot.lotsize1": PropertyField.LOT_SIZE.value,
    "avm.amount.value": PropertyField.AVM.value,
    "sale.amount.saleamt": PropertyField.LAST_SALE_AMOUNT.value,
    "sale.salesearchdate": PropertyField.LAST_EVENT_DATE.value,
}

OWNER_PATHS = ("owner.owner1.name", "owner.owner1.fullname", "owner.owner1.fullName")


def get_nested(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def _address_text(payload: Mapping[str, Any]) -> str:
    address = payload.get("address")
    if not isinstance(address, Mapping):
        return ""
    if address.get("oneLine"):
        return str(address["oneLine"])
    locality = " ".join(
        str(address.get(k) or "") for k in ("countrySubd", "postal1") if address.get(k)
    )
    parts = [address.get("line1"), address.get("locality"), locality]
    return ", ".join(str(p) for p in parts if p)


class EnrichmentSnapshot(BaseModel):
    """Third-party property data for one identity key."""

    model_config = ConfigDict(frozen=True)

    identity_key: str
    provider: str = "attom"
    fetched_at: str = Field(default_factory=utc_now_iso)
    address_text: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    owner_name: Optional[str] = None
    distress_signals: List[str] = Field(default_factory=list)
    contacts: List[Dict[str, Any]] = Field(default_factory=list)
    source_url: str = ""

    @field_validator("attributes")
    @classmethod
    def _drop_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in value.items() if v not in (None, "")}

    @classmethod
    def from_provider_payload(
        cls,
        identity_key: str,
        payload: Mapping[str, Any],
        *,
        provider: str = "attom",
        fetched_at: Optional[str] = None,
        source_url: str = "",
    ) -> "EnrichmentSnapshot":
        attributes: Dict[str, Any] = {}
        for path, name in PROVIDER_FIELD_MAP.items():
            value = get_nested(payload, path)
            if value is not None and name not in attributes:
                attributes[name] = value
        owner = next(
            (get_nested(payload, p) for p in OWNER_PATHS if get_nested(payload, p)),
            None,
        )
        return cls(
            identity_key=identity_key,
            provider=provider,
            fetched_at=fetched_at or utc_now_iso(),
            address_text=_address_text(payload),
            attributes=attributes,
            owner_name=str(owner) if owner else None,
            source_url=source_url,
        )

    def to_observation(self) -> RawPropertyObservation:
        return RawPropertyObservation(
            source=Source.ENRICHMENT_PROVIDER,
            source_label=self.provider,
            address_text=self.address_text,
            attributes=dict(self.attributes),
            owner_name=self.owner_name,
            distress_signals=frozenset(self.distress_signals),
            contacts=tuple(self.contacts),
            source_url=self.source_url,
            captured_at=self.fetched_at,
        )
