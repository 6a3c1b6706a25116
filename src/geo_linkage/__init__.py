"""Geospatial record linkage and polygon membership engine."""

from .batch import BatchLinkageRunner, BatchStats, run_batch
from .components import (
    AddressRecord,
    BoundingBox,
    ConfidenceTier,
    Coordinate,
    IncomingRecord,
    MatchCandidate,
    MatchMethod,
    MatchResult,
    Polygon,
)
from .config import BatchConfig, LinkageConfig, ResolverConfig, load_config
from .engine import AddressResolver, ResolutionContext, resolve
from .errors import (
    EmptyTextError,
    GeoLinkageError,
    IndexBuildError,
    IndexNotBuiltError,
    InvalidCoordinateError,
    InvalidPolygonError,
)
from .spatial import IndexRegistry, SpatialIndex, build_index, query_polygon

__all__ = [
    "AddressRecord",
    "AddressResolver",
    "BatchConfig",
    "BatchLinkageRunner",
    "BatchStats",
    "BoundingBox",
    "ConfidenceTier",
    "Coordinate",
    "EmptyTextError",
    "GeoLinkageError",
    "IncomingRecord",
    "IndexBuildError",
    "IndexNotBuiltError",
    "IndexRegistry",
    "InvalidCoordinateError",
    "InvalidPolygonError",
    "LinkageConfig",
    "MatchCandidate",
    "MatchMethod",
    "MatchResult",
    "Polygon",
    "ResolutionContext",
    "ResolverConfig",
    "SpatialIndex",
    "build_index",
    "load_config",
    "query_polygon",
    "resolve",
    "run_batch",
]
