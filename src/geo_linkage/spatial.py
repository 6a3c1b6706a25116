from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from rtree import index as rtree_index

from .components import AddressRecord, Coordinate, Polygon
from .errors import IndexBuildError, IndexNotBuiltError
from .geometry import bounding_box, distance, point_in_polygon, radius_to_bbox

logger = logging.getLogger(__name__)


def _address_coordinate(record: AddressRecord) -> Coordinate:
    return record.coordinate


def _address_id(record: AddressRecord) -> Any:
    return record.address_id


@dataclass(frozen=True)
class Neighbor:
    """A record confirmed inside a radius query, with its exact distance."""

    record: Any
    distance_meters: float
    order: int


class SpatialIndex:
    """Read-only R-tree over point records.

    The tree stores integer slots only; ``_records`` maps each slot back to
    the full record and ``_slots`` maps record ids to slots. Build through
    :meth:`build`, which returns only once the tree is fully loaded.
    """

    def __init__(
        self,
        tree: Optional[rtree_index.Index] = None,
        records: Sequence[Any] = (),
        coordinates: Sequence[Coordinate] = (),
        id_of: Callable[[Any], Any] = _address_id,
        skipped: int = 0,
    ) -> None:
        self._tree = tree
        self._records: Tuple[Any, ...] = tuple(records)
        self._coordinates: Tuple[Coordinate, ...] = tuple(coordinates)
        self._id_of = id_of
        self._slots: Dict[Any, int] = {id_of(record): slot for slot, record in enumerate(self._records)}
        self.skipped = skipped
        self.built_at = datetime.now()
        self._lock = threading.Lock()

    @classmethod
    def build(
        cls,
        records: Iterable[Any],
        coordinate_of: Callable[[Any], Coordinate] = _address_coordinate,
        id_of: Callable[[Any], Any] = _address_id,
    ) -> "SpatialIndex":
        kept: List[Any] = []
        coordinates: List[Coordinate] = []
        seen_ids = set()
        skipped = 0

        for record in records:
            coordinate = coordinate_of(record)
            if coordinate is None or not coordinate.is_valid():
                skipped += 1
                logger.warning("Skipping record %r with invalid coordinate %r", id_of(record), coordinate)
                continue
            record_id = id_of(record)
            if record_id in seen_ids:
                raise IndexBuildError(f"duplicate record id in registry: {record_id!r}")
            seen_ids.add(record_id)
            kept.append(record)
            coordinates.append(coordinate)

        entries = [
            (slot, (point.lng, point.lat, point.lng, point.lat), None)
            for slot, point in enumerate(coordinates)
        ]
        try:
            tree = rtree_index.Index(entries) if entries else rtree_index.Index()
        except Exception as exc:
            raise IndexBuildError(f"failed to bulk-load {len(entries)} points: {exc}") from exc

        logger.info("Built spatial index with %d points (%d skipped)", len(kept), skipped)
        return cls(tree, kept, coordinates, id_of=id_of, skipped=skipped)

    @property
    def is_built(self) -> bool:
        return self._tree is not None

    def _require_tree(self) -> rtree_index.Index:
        if self._tree is None:
            raise IndexNotBuiltError("spatial index queried before build() or after close()")
        return self._tree

    def _candidate_slots(self, bounds: Tuple[float, float, float, float]) -> List[int]:
        tree = self._require_tree()
        with self._lock:
            slots = list(tree.intersection(bounds))
        slots.sort()
        return slots

    def query_polygon(self, polygon: Polygon) -> List[Any]:
        """Ids of the records inside ``polygon`` (boundary counts as inside)."""
        box = bounding_box(polygon)
        return [
            self._id_of(self._records[slot])
            for slot in self._candidate_slots(box.as_rtree_bounds())
            if point_in_polygon(self._coordinates[slot], polygon)
        ]

    def query_radius_with_distance(self, center: Coordinate, radius_meters: float) -> List[Neighbor]:
        """Records within ``radius_meters`` of ``center``, nearest first."""
        box = radius_to_bbox(center, radius_meters)
        neighbors = []
        for slot in self._candidate_slots(box.as_rtree_bounds()):
            meters = distance(center, self._coordinates[slot])
            if meters <= radius_meters:
                neighbors.append(Neighbor(self._records[slot], meters, slot))
        neighbors.sort(key=lambda n: (n.distance_meters, n.order))
        return neighbors

    def query_radius(self, center: Coordinate, radius_meters: float) -> List[Any]:
        """Ids of the records within ``radius_meters`` of ``center``, in registry order."""
        neighbors = self.query_radius_with_distance(center, radius_meters)
        return [self._id_of(n.record) for n in sorted(neighbors, key=lambda n: n.order)]

    def neighbors_of_all(self, center: Coordinate) -> Iterator[Neighbor]:
        """Every indexed record with its distance from ``center``."""
        self._require_tree()
        for slot, record in enumerate(self._records):
            yield Neighbor(record, distance(center, self._coordinates[slot]), slot)

    def records(self) -> Tuple[Any, ...]:
        return self._records

    def get(self, record_id: Any) -> Optional[Any]:
        slot = self._slots.get(record_id)
        return None if slot is None else self._records[slot]

    def stats(self) -> Dict[str, Any]:
        return {
            "count": len(self._records),
            "skipped": self.skipped,
            "built": self.is_built,
            "built_at": self.built_at.isoformat(),
        }

    def close(self) -> None:
        if self._tree is not None:
            self._tree.close()
            self._tree = None

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._slots


def build_index(records: Iterable[AddressRecord]) -> SpatialIndex:
    return SpatialIndex.build(records)


def query_polygon(index: SpatialIndex, polygon: Polygon) -> List[Any]:
    return index.query_polygon(polygon)


@dataclass
class _RegistryEntry:
    index: SpatialIndex
    data_count: int
    last_updated: datetime
    coordinate_of: Callable[[Any], Coordinate] = _address_coordinate
    id_of: Callable[[Any], Any] = _address_id


class IndexRegistry:
    """Named spatial indexes (addresses, listings, ...) kept side by side.

    Re-creating a name builds a fresh index and replaces the old one; indexes
    are never mutated in place.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._entries: Dict[str, _RegistryEntry] = {}

    def create(
        self,
        name: str,
        records: Iterable[Any],
        coordinate_of: Callable[[Any], Coordinate] = _address_coordinate,
        id_of: Callable[[Any], Any] = _address_id,
    ) -> SpatialIndex:
        built = SpatialIndex.build(records, coordinate_of=coordinate_of, id_of=id_of)
        previous = self._entries.get(name)
        self._entries[name] = _RegistryEntry(built, len(built), self._clock(), coordinate_of, id_of)
        if previous is not None:
            logger.debug("Replaced spatial index %r (%d -> %d points)", name, previous.data_count, len(built))
        return built

    def get(self, name: str) -> Optional[SpatialIndex]:
        entry = self._entries.get(name)
        return entry.index if entry else None

    def find_in_area(self, name: str, polygon: Polygon) -> List[Any]:
        entry = self._entries.get(name)
        if entry is None:
            logger.warning("Index %s not found", name)
            return []
        return entry.index.query_polygon(polygon)

    def is_fresh(self, name: str, max_age: timedelta = timedelta(minutes=30)) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        return self._clock() - entry.last_updated < max_age

    def refresh_if_stale(
        self,
        name: str,
        data_provider: Callable[[], Iterable[Any]],
        max_age: timedelta = timedelta(minutes=30),
    ) -> SpatialIndex:
        """Rebuild ``name`` from ``data_provider`` unless it is still fresh.

        A rebuild reuses the accessors the index was created with. The
        provider is only called when a rebuild happens.
        """
        entry = self._entries.get(name)
        if entry is not None and self.is_fresh(name, max_age):
            return entry.index
        if entry is None:
            return self.create(name, data_provider())
        logger.info("Refreshing stale spatial index %r", name)
        return self.create(name, data_provider(), coordinate_of=entry.coordinate_of, id_of=entry.id_of)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "data_count": entry.data_count,
                "last_updated": entry.last_updated.isoformat(),
            }
            for name, entry in self._entries.items()
        }

    def remove(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._entries
