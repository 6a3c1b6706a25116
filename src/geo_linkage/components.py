from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from .errors import InvalidPolygonError


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"
    NONE = "none"


class MatchMethod(str, Enum):
    EXACT_GEO = "exact_geo"
    NEAR_GEO_TEXT = "near_geo_text"
    EXTENDED_GEO_TEXT = "extended_geo_text"
    GLOBAL_TEXT = "global_text"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point in decimal degrees."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        # Decimal and numeric strings from storage become floats; values that
        # cannot be converted are kept as-is and make the point invalid.
        for name in ("lat", "lng"):
            value = getattr(self, name)
            if isinstance(value, float):
                continue
            try:
                object.__setattr__(self, name, float(value))
            except (TypeError, ValueError):
                pass

    def is_valid(self) -> bool:
        """Return True when both values are finite floats inside their ranges."""
        if not isinstance(self.lat, float) or not isinstance(self.lng, float):
            return False
        if math.isnan(self.lat) or math.isnan(self.lng):
            return False
        return -90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    def contains(self, point: Coordinate) -> bool:
        return (
            self.min_lat <= point.lat <= self.max_lat
            and self.min_lng <= point.lng <= self.max_lng
        )

    def as_rtree_bounds(self) -> Tuple[float, float, float, float]:
        """Bounds in the interleaved x/y order the R-tree expects."""
        return (self.min_lng, self.min_lat, self.max_lng, self.max_lat)


class Polygon:
    """A closed ring of coordinates.

    The ring is closed implicitly: if the caller repeats the first vertex at
    the end, the duplicate is dropped so ``vertices`` always holds the open
    ring. Construction fails with :class:`InvalidPolygonError` when fewer than
    three vertices remain or any vertex is not a valid coordinate.
    """

    __slots__ = ("_vertices",)

    def __init__(self, vertices: Iterable[Coordinate]) -> None:
        ring = list(vertices)
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring.pop()
        if len(ring) < 3:
            raise InvalidPolygonError(
                f"polygon needs at least 3 distinct vertices, got {len(ring)}"
            )
        for vertex in ring:
            if not isinstance(vertex, Coordinate) or not vertex.is_valid():
                raise InvalidPolygonError(f"invalid polygon vertex: {vertex!r}")
        self._vertices: Tuple[Coordinate, ...] = tuple(ring)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Sequence[float]]) -> "Polygon":
        """Build a polygon from ``(lat, lng)`` pairs."""
        return cls(Coordinate(float(lat), float(lng)) for lat, lng in pairs)

    @property
    def vertices(self) -> Tuple[Coordinate, ...]:
        return self._vertices

    def edges(self) -> Iterable[Tuple[Coordinate, Coordinate]]:
        count = len(self._vertices)
        for idx in range(count):
            yield self._vertices[idx], self._vertices[(idx + 1) % count]

    def __len__(self) -> int:
        return len(self._vertices)

    def __iter__(self):
        return iter(self._vertices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Polygon):
            return NotImplemented
        return self._vertices == other._vertices

    def __hash__(self) -> int:
        return hash(self._vertices)

    def __repr__(self) -> str:
        return f"Polygon({len(self._vertices)} vertices)"


@dataclass(frozen=True)
class AddressRecord:
    """A canonical registry entry we can match against."""

    address_id: Any
    canonical_text: str
    coordinate: Coordinate
    metadata: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class IncomingRecord:
    """An incoming listing that requires address resolution."""

    external_id: Any
    raw_text: str
    coordinate: Coordinate
    attributes: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


@dataclass
class MatchCandidate:
    """A registry record scored against an incoming record by one stage."""

    address: AddressRecord
    distance_meters: float
    text_similarity: float
    composite_score: float
    order: int
    stage: str

    def sort_key(self) -> Tuple[float, float, int]:
        """Highest score first, then nearest, then registry order."""
        return (-self.composite_score, self.distance_meters, self.order)


@dataclass
class MatchResult:
    """Outcome of resolving one incoming record."""

    record_id: Any
    matched_address_id: Optional[Any]
    confidence_tier: ConfidenceTier
    method: MatchMethod
    distance_meters: float = 0.0
    text_similarity: float = 0.0
    composite_score: float = 0.0
    diagnostics: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.text_similarity = _clamp_unit(self.text_similarity)
        self.composite_score = _clamp_unit(self.composite_score)
        self.distance_meters = max(0.0, float(self.distance_meters))

    @property
    def matched(self) -> bool:
        return self.matched_address_id is not None

    @classmethod
    def no_match(cls, record_id: Any, **diagnostics: str) -> "MatchResult":
        return cls(
            record_id=record_id,
            matched_address_id=None,
            confidence_tier=ConfidenceTier.NONE,
            method=MatchMethod.NO_MATCH,
            diagnostics=dict(diagnostics),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "matched_address_id": self.matched_address_id,
            "confidence_tier": self.confidence_tier.value,
            "method": self.method.value,
            "distance_meters": self.distance_meters,
            "text_similarity": self.text_similarity,
            "composite_score": self.composite_score,
            "diagnostics": dict(self.diagnostics),
        }
