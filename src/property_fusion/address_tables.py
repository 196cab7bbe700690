"""Lookup tables used by the address normalizer.

The tables are plain data. `load_address_tables` merges an optional JSON
override file on top of the built-in defaults, so deployments can extend the
street-type or unit vocabularies without touching code. Keys are matched after
case-folding and punctuation removal; values are the canonical spellings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


# Canonical spellings follow the USPS suffix abbreviations.
STREET_TYPES: Dict[str, str] = {
    "alley": "aly",
    "aly": "aly",
    "avenue": "ave",
    "av": "ave",
    "ave": "ave",
    "aven": "ave",
    "boulevard": "blvd",
    "blvd": "blvd",
    "boul": "blvd",
    "circle": "cir",
    "cir": "cir",
    "circ": "cir",
    "court": "ct",
    "ct": "ct",
    "crossing": "xing",
    "xing": "xing",
    "drive": "dr",
    "dr": "dr",
    "drv": "dr",
    "expressway": "expy",
    "expy": "expy",
    "freeway": "fwy",
    "fwy": "fwy",
    "highway": "hwy",
    "hwy": "hwy",
    "lane": "ln",
    "ln": "ln",
    "loop": "loop",
    "parkway": "pkwy",
    "pkwy": "pkwy",
    "pky": "pkwy",
    "place": "pl",
    "pl": "pl",
    "plaza": "plz",
    "plz": "plz",
    "point": "pt",
    "pt": "pt",
    "road": "rd",
    "rd": "rd",
    "route": "rte",
    "rte": "rte",
    "square": "sq",
    "sq": "sq",
    "street": "st",
    "st": "st",
    "str": "st",
    "strt": "st",
    "terrace": "ter",
    "ter": "ter",
    "trail": "trl",
    "trl": "trl",
    "turnpike": "tpke",
    "tpke": "tpke",
    "way": "way",
    "wy": "way",
}

DIRECTIONALS: Dict[str, str] = {
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
    "northeast": "ne",
    "northwest": "nw",
    "southeast": "se",
    "southwest": "sw",
    "n": "n",
    "s": "s",
    "e": "e",
    "w": "w",
    "ne": "ne",
    "nw": "nw",
    "se": "se",
    "sw": "sw",
}

UNIT_DESIGNATORS: Dict[str, str] = {
    "apartment": "apt",
    "apt": "apt",
    "building": "bldg",
    "bldg": "bldg",
    "floor": "fl",
    "fl": "fl",
    "lot": "lot",
    "room": "rm",
    "rm": "rm",
    "space": "spc",
    "spc": "spc",
    "suite": "ste",
    "ste": "ste",
    "trailer": "trlr",
    "trlr": "trlr",
    "unit": "unit",
    "#": "unit",
}

STATES: Dict[str, str] = {
    "alabama": "al",
    "alaska": "ak",
    "arizona": "az",
    "arkansas": "ar",
    "california": "ca",
    "colorado": "co",
    "connecticut": "ct",
    "delaware": "de",
    "district of columbia": "dc",
    "florida": "fl",
    "georgia": "ga",
    "hawaii": "hi",
    "idaho": "id",
    "illinois": "il",
    "indiana": "in",
    "iowa": "ia",
    "kansas": "ks",
    "kentucky": "ky",
    "louisiana": "la",
    "maine": "me",
    "maryland": "md",
    "massachusetts": "ma",
    "michigan": "mi",
    "minnesota": "mn",
    "mississippi": "ms",
    "missouri": "mo",
    "montana": "mt",
    "nebraska": "ne",
    "nevada": "nv",
    "new hampshire": "nh",
    "new jersey": "nj",
    "new mexico": "nm",
    "new york": "ny",
    "north carolina": "nc",
    "north dakota": "nd",
    "ohio": "oh",
    "oklahoma": "ok",
    "oregon": "or",
    "pennsylvania": "pa",
    "rhode island": "ri",
    "south carolina": "sc",
    "south dakota": "sd",
    "tennessee": "tn",
    "texas": "tx",
    "utah": "ut",
    "vermont": "vt",
    "virginia": "va",
    "washington": "wa",
    "west virginia": "wv",
    "wisconsin": "wi",
    "wyoming": "wy",
    "puerto rico": "pr",
}


def _frozen(mapping: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({str(k).casefold(): str(v).casefold() for k, v in mapping.items()})


@dataclass(frozen=True)
class AddressTables:
    street_types: Mapping[str, str] = field(default_factory=lambda: _frozen(STREET_TYPES))
    directionals: Mapping[str, str] = field(default_factory=lambda: _frozen(DIRECTIONALS))
    unit_designators: Mapping[str, str] = field(
        default_factory=lambda: _frozen(UNIT_DESIGNATORS)
    )
    states: Mapping[str, str] = field(default_factory=lambda: _frozen(STATES))

    @property
    def state_codes(self) -> frozenset[str]:
        return frozenset(self.states.values())

    def canonical_state(self, token: str) -> Optional[str]:
        value = (token or "").strip().casefold()
        if value in self.state_codes:
            return value
        return self.states.get(value)


DEFAULT_TABLES = AddressTables()


def load_address_tables(path: Optional[str | Path] = None) -> AddressTables:
    """Return the default tables, extended by the JSON file at `path` if given.

    The file holds an object with any of the keys `street_types`,
    `directionals`, `unit_designators`, `states`, each mapping a spelling to
    its canonical form.
    """

    if not path:
        return DEFAULT_TABLES
    raw: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("address tables file must contain a JSON object")

    def _merged(name: str, base: Dict[str, str]) -> Mapping[str, str]:
        extra = raw.get(name) or {}
        if not isinstance(extra, dict):
            raise ValueError(f"{name} must be an object")
        return _frozen({**base, **extra})

    return AddressTables(
        street_types=_merged("street_types", STREET_TYPES),
        directionals=_merged("directionals", DIRECTIONALS),
        unit_designators=_merged("unit_designators", UNIT_DESIGNATORS),
        states=_merged("states", STATES),
    )
