from __future__ import annotations

import re
from enum import StrEnum
from typing import Any, Dict, Mapping, Optional, Tuple


class PropertyField(StrEnum):
    """Known semantic fields of a canonical property record."""

    BEDROOMS = "bedrooms"
    BATHROOMS = "bathrooms"
    SQUARE_FEET = "square_feet"
    LOT_SIZE = "lot_size"
    YEAR_BUILT = "year_built"
    PROPERTY_TYPE = "property_type"

    OWNER_NAME = "owner_name"
    PRICE_HINT = "price_hint"

    # enrichment identifiers / valuation
    APN = "apn"
    PARCEL_ID = "parcel_id"
    AVM = "avm"
    LAST_SALE_AMOUNT = "last_sale_amount"
    LAST_EVENT_DATE = "last_event_date"


INT_FIELDS = frozenset({PropertyField.BEDROOMS, PropertyField.YEAR_BUILT})
FLOAT_FIELDS = frozenset(
    {
        PropertyField.BATHROOMS,
        PropertyField.SQUARE_FEET,
        PropertyField.LOT_SIZE,
        PropertyField.PRICE_HINT,
        PropertyField.AVM,
        PropertyField.LAST_SALE_AMOUNT,
    }
)
NUMERIC_FIELDS = INT_FIELDS | FLOAT_FIELDS

# Attribute-bag fields; owner_name and price_hint travel as observation fields.
ATTRIBUTE_FIELDS = frozenset(PropertyField) - {
    PropertyField.OWNER_NAME,
    PropertyField.PRICE_HINT,
}

MAX_EXTRAS = 20
MAX_EXTRA_VALUE_LEN = 200

_KEY_RE = re.compile(r"[^a-z0-9]")

# Keyed by the folded form (lowercase, separators removed).
_ALIASES: Dict[str, PropertyField] = {
    "bedrooms": PropertyField.BEDROOMS,
    "beds": PropertyField.BEDROOMS,
    "bed": PropertyField.BEDROOMS,
    "br": PropertyField.BEDROOMS,
    "bathrooms": PropertyField.BATHROOMS,
    "baths": PropertyField.BATHROOMS,
    "bath": PropertyField.BATHROOMS,
    "bathstotal": PropertyField.BATHROOMS,
    "ba": PropertyField.BATHROOMS,
    "squarefeet": PropertyField.SQUARE_FEET,
    "squarefootage": PropertyField.SQUARE_FEET,
    "sqft": PropertyField.SQUARE_FEET,
    "sf": PropertyField.SQUARE_FEET,
    "livingarea": PropertyField.SQUARE_FEET,
    "livingsf": PropertyField.SQUARE_FEET,
    "buildingsize": PropertyField.SQUARE_FEET,
    "universalsize": PropertyField.SQUARE_FEET,
    "lotsize": PropertyField.LOT_SIZE,
    "lotsize1": PropertyField.LOT_SIZE,
    "lotsqft": PropertyField.LOT_SIZE,
    "landsize": PropertyField.LOT_SIZE,
    "yearbuilt": PropertyField.YEAR_BUILT,
    "built": PropertyField.YEAR_BUILT,
    "yrbuilt": PropertyField.YEAR_BUILT,
    "propertytype": PropertyField.PROPERTY_TYPE,
    "type": PropertyField.PROPERTY_TYPE,
    "usetype": PropertyField.PROPERTY_TYPE,
    "propertyclass": PropertyField.PROPERTY_TYPE,
    "apn": PropertyField.APN,
    "parcelid": PropertyField.PARCEL_ID,
    "parcel": PropertyField.PARCEL_ID,
    "avm": PropertyField.AVM,
    "lastsaleamount": PropertyField.LAST_SALE_AMOUNT,
    "lastsaleprice": PropertyField.LAST_SALE_AMOUNT,
    "lasteventdate": PropertyField.LAST_EVENT_DATE,
    "lastsaledate": PropertyField.LAST_EVENT_DATE,
}


def resolve_field(key: Any) -> Optional[PropertyField]:
    folded = _KEY_RE.sub("", str(key or "").casefold())
    if not folded:
        return None
    return _ALIASES.get(folded)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").replace("$", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def coerce_value(field: PropertyField, value: Any) -> Any:
    """Coerce a raw value for `field`; returns None when it cannot be used."""

    if field in INT_FIELDS:
        number = _to_float(value)
        return int(round(number)) if number is not None else None
    if field in FLOAT_FIELDS:
        number = _to_float(value)
        if number is None:
            return None
        return int(number) if number.is_integer() else number
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def split_attributes(
    raw: Optional[Mapping[str, Any]],
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Split a loosely-typed attribute bag into known fields and extras.

    Known keys are coerced and keyed by `PropertyField` value; values that do
    not coerce are dropped. Unrecognized keys land in a bounded extras bucket
    as strings and are never merged into canonical fields.
    """

    known: Dict[str, Any] = {}
    extras: Dict[str, str] = {}
    for key, value in (raw or {}).items():
        field = resolve_field(key)
        if field is not None and field in ATTRIBUTE_FIELDS:
            coerced = coerce_value(field, value)
            if coerced is not None and field.value not in known:
                known[field.value] = coerced
            continue
        if value is None or len(extras) >= MAX_EXTRAS:
            continue
        extras[str(key)[:MAX_EXTRA_VALUE_LEN]] = str(value)[:MAX_EXTRA_VALUE_LEN]
    return known, extras


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return not value
    return False
