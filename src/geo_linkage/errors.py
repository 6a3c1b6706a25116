from __future__ import annotations


class GeoLinkageError(Exception):
    """Base class for errors raised by the linkage engine."""


class InvalidCoordinateError(GeoLinkageError, ValueError):
    """A coordinate is NaN, non-numeric or outside the lat/lng ranges."""


class EmptyTextError(GeoLinkageError, ValueError):
    """An incoming record has no usable address text."""


class InvalidPolygonError(GeoLinkageError, ValueError):
    """A polygon has fewer than three vertices or an invalid vertex."""


class IndexBuildError(GeoLinkageError):
    """The registry could not be loaded into a spatial index."""


class IndexNotBuiltError(GeoLinkageError, RuntimeError):
    """A query was issued against an index that was never built or was closed."""
