import logging
import re
from functools import lru_cache
from typing import Optional, Pattern, Tuple

from property_fusion.address_tables import AddressTables, load_address_tables
from property_fusion.config import get_settings
from property_fusion.errors import MalformedAddress
from property_fusion.identity import compute_identity_key
from property_fusion.models import StructuredAddress

logger = logging.getLogger("pfe.normalize")


_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WORD_RE = re.compile(r"[^\s,]+")
_ZIP_TAIL_RE = re.compile(r"[\s,]*\b(\d{5})(?:\s*-\s*\d{4})?\s*$")


def normalize_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned.casefold()


def normalize_address(value: Optional[str]) -> str:
    cleaned = normalize_text(value)
    cleaned = _PUNCT_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    return cleaned


@lru_cache(maxsize=8)
def _tables_from(path: Optional[str]) -> AddressTables:
    if path:
        logger.info("Loading address tables from %s", path)
    return load_address_tables(path)


def get_address_tables() -> AddressTables:
    return _tables_from(get_settings().address_tables_path)


@lru_cache(maxsize=8)
def _unit_pattern(designators: Tuple[str, ...]) -> Pattern[str]:
    alternatives = "|".join(re.escape(d) for d in sorted(designators, key=len, reverse=True))
    return re.compile(
        rf"(?:^|[\s,])(?P<des>{alternatives})\.?\s*#?\s*(?P<id>[\w-]+)\s*$",
        re.UNICODE,
    )


def _bare(word: str) -> str:
    return _PUNCT_RE.sub("", word)


def _match_state_tail(text: str, tables: AddressTables) -> Optional[Tuple[str, int]]:
    words = list(_WORD_RE.finditer(text))
    for n in (3, 2, 1):
        if len(words) <= n:
            continue
        tail = words[-n:]
        candidate = " ".join(_bare(w.group(0)) for w in tail)
        code = tables.canonical_state(candidate)
        if code:
            return code, tail[0].start()
    return None


def _split_city(text: str, tables: AddressTables) -> Tuple[str, str]:
    if "," in text:
        street, _, city = text.rpartition(",")
        return street.strip(" ,"), city.strip(" ,")
    # No comma: only split when the city follows a street type cleanly.
    words = text.split()
    for i in range(len(words) - 1, 0, -1):
        if _bare(words[i]) not in tables.street_types:
            continue
        tail = words[i + 1 :]
        if (
            tail
            and not any(ch.isdigit() for word in tail for ch in word)
            and _bare(tail[0]) not in tables.unit_designators
        ):
            return " ".join(words[: i + 1]), " ".join(tail)
        break
    return text, ""


def split_locality(text: str, tables: AddressTables) -> Tuple[str, str, str, str]:
    """Split a trailing ``city, st zip`` segment off normalized address text.

    Returns ``(street_part, city, state, postal_code)``. When neither a state
    nor a ZIP can be found the whole text is returned as the street part.
    """

    remaining = text.strip(" ,")
    postal = ""
    zip_match = _ZIP_TAIL_RE.search(remaining)
    if zip_match and zip_match.start() > 0:
        postal = zip_match.group(1)
        remaining = remaining[: zip_match.start()].rstrip(" ,")

    state = ""
    state_match = _match_state_tail(remaining, tables)
    if state_match:
        code, start = state_match
        before = remaining[:start]
        # "12 pine ct 06101" is a street, not Connecticut.
        if "," in before or (postal and code not in tables.street_types):
            state = code
            remaining = before.rstrip(" ,")

    if not state and not postal:
        return text, "", "", ""
    street, city = _split_city(remaining, tables)
    return street, city, state, postal


def split_unit(street: str, tables: AddressTables) -> Tuple[str, str]:
    """Move a trailing apartment/suite designator into its own field."""

    match = _unit_pattern(tuple(tables.unit_designators.keys())).search(street)
    if not match:
        return street, ""
    unit_id = match.group("id").strip("-")
    # Single letters or anything with a digit; "lot st" is a street name.
    if not unit_id or (len(unit_id) > 1 and not any(ch.isdigit() for ch in unit_id)):
        return street, ""
    designator = tables.unit_designators[match.group("des")]
    return street[: match.start()].strip(" ,"), f"{designator} {unit_id}"


def canonicalize_street(street: str, tables: AddressTables) -> str:
    words = normalize_address(street).split()
    out = []
    last = len(words) - 1
    for i, word in enumerate(words):
        if i > 0 and word in tables.street_types:
            word = tables.street_types[word]
        elif word in tables.directionals and i in (1, last):
            word = tables.directionals[word]
        out.append(word)
    return " ".join(out)


def normalize(
    address_text: Optional[str], tables: Optional[AddressTables] = None
) -> Tuple[StructuredAddress, str]:
    """Parse free address text into a structured address and its identity key.

    Raises MalformedAddress when no street line can be isolated.
    """

    if not isinstance(address_text, str):
        raise MalformedAddress(address_text, "not text")
    tables = tables or get_address_tables()
    text = normalize_text(address_text)
    if not text:
        raise MalformedAddress(address_text, "empty")

    street_part, city, state, postal = split_locality(text, tables)
    street_part, unit = split_unit(street_part, tables)
    street_line = canonicalize_street(street_part, tables)
    if not street_line:
        raise MalformedAddress(address_text)

    address = StructuredAddress(
        street_line=street_line,
        unit=unit,
        city=normalize_address(city),
        state=state,
        postal_code=postal,
    )
    if address.is_partial:
        logger.debug("Partial address, identity key is weak")
    return address, compute_identity_key(address)
