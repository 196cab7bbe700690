"""Conflict resolution policy.

The policy is configuration, not logic: which sources outrank which (globally
and per field), which numeric fields get the plausibility filter and with what
bounds. Its `version` is stamped onto every change report so a fused value can
always be traced back to the rules that produced it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from .attributes import PropertyField
from .models import SOURCE_ALIASES, Source, resolve_source


DEFAULT_SOURCE_RANKING: Tuple[Source, ...] = (
    Source.ENRICHMENT_PROVIDER,
    Source.RECORD_FEED,
    Source.AUCTION_SITE,
    Source.LISTING_SITE,
    Source.MANUAL,
)

# (low, high); None on the high side of year_built means "current year + 1".
DEFAULT_NUMERIC_BOUNDS: Mapping[str, Tuple[Optional[float], Optional[float]]] = MappingProxyType(
    {
        PropertyField.BEDROOMS.value: (0, 100),
        PropertyField.BATHROOMS.value: (0, 100),
        PropertyField.SQUARE_FEET.value: (1, 2_000_000),
        PropertyField.LOT_SIZE.value: (1, 5_000_000_000),
        PropertyField.YEAR_BUILT.value: (1600, None),
        PropertyField.PRICE_HINT.value: (0, 10_000_000_000),
        PropertyField.AVM.value: (0, 10_000_000_000),
        PropertyField.LAST_SALE_AMOUNT.value: (0, 10_000_000_000),
    }
)

# price_hint is excluded: its meaning varies by source (list price, opening bid,
# assessed value), so large swings are expected.
DEFAULT_MAGNITUDE_FIELDS: FrozenSet[str] = frozenset(
    {
        PropertyField.SQUARE_FEET.value,
        PropertyField.LOT_SIZE.value,
        PropertyField.YEAR_BUILT.value,
        PropertyField.BEDROOMS.value,
        PropertyField.BATHROOMS.value,
    }
)


@dataclass(frozen=True)
class ConflictResolutionPolicy:
    version: str = "1"
    source_ranking: Tuple[Source, ...] = DEFAULT_SOURCE_RANKING
    field_rankings: Mapping[str, Tuple[Source, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    numeric_bounds: Mapping[str, Tuple[Optional[float], Optional[float]]] = field(
        default_factory=lambda: DEFAULT_NUMERIC_BOUNDS
    )
    magnitude_fields: FrozenSet[str] = DEFAULT_MAGNITUDE_FIELDS
    max_magnitude_ratio: float = 10.0
    source_aliases: Mapping[str, Source] = field(default_factory=lambda: SOURCE_ALIASES)
    max_sources: int = 50

    def ranking_for(self, field_name: Optional[str] = None) -> Tuple[Source, ...]:
        if field_name and field_name in self.field_rankings:
            return tuple(self.field_rankings[field_name])
        return tuple(self.source_ranking)

    def priority(self, source: Any, field_name: Optional[str] = None) -> int:
        """Higher is more trusted; sources missing from the ranking score 0."""

        ranking = self.ranking_for(field_name)
        resolved = self.resolve_source(source)
        if resolved not in ranking:
            return 0
        return len(ranking) - ranking.index(resolved)

    def resolve_source(self, label: Any) -> Source:
        return resolve_source(label, self.source_aliases)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source_ranking": [s.value for s in self.source_ranking],
            "field_rankings": {
                k: [s.value for s in v] for k, v in sorted(self.field_rankings.items())
            },
            "numeric_bounds": {k: list(v) for k, v in sorted(self.numeric_bounds.items())},
            "magnitude_fields": sorted(self.magnitude_fields),
            "max_magnitude_ratio": self.max_magnitude_ratio,
            "max_sources": self.max_sources,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConflictResolutionPolicy":
        base = cls()

        def _ranking(values: Any) -> Tuple[Source, ...]:
            return tuple(Source(str(v)) for v in values)

        bounds = data.get("numeric_bounds")
        return cls(
            version=str(data.get("version") or base.version),
            source_ranking=_ranking(data["source_ranking"])
            if data.get("source_ranking")
            else base.source_ranking,
            field_rankings=MappingProxyType(
                {k: _ranking(v) for k, v in (data.get("field_rankings") or {}).items()}
            ),
            numeric_bounds=MappingProxyType(
                {k: (v[0], v[1]) for k, v in bounds.items()}
            )
            if bounds
            else base.numeric_bounds,
            magnitude_fields=frozenset(data.get("magnitude_fields") or base.magnitude_fields),
            max_magnitude_ratio=float(data.get("max_magnitude_ratio") or base.max_magnitude_ratio),
            max_sources=int(data.get("max_sources") or base.max_sources),
        )


DEFAULT_POLICY = ConflictResolutionPolicy()
