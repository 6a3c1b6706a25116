from __future__ import annotations

import math
from typing import Sequence

from .components import BoundingBox, Coordinate, Polygon
from .errors import InvalidCoordinateError, InvalidPolygonError

EARTH_RADIUS_M = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_320.0
BOUNDARY_TOLERANCE = 1e-12
DEFAULT_BUFFER_STEPS = 16


def _require_valid(point: Coordinate) -> None:
    if not point.is_valid():
        raise InvalidCoordinateError(f"invalid coordinate: {point!r}")


def distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters (haversine)."""
    _require_valid(a)
    _require_valid(b)
    phi1, phi2 = math.radians(a.lat), math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))


def _on_segment(p: Coordinate, a: Coordinate, b: Coordinate) -> bool:
    cross = (b.lng - a.lng) * (p.lat - a.lat) - (b.lat - a.lat) * (p.lng - a.lng)
    if abs(cross) > BOUNDARY_TOLERANCE:
        return False
    return (
        min(a.lng, b.lng) - BOUNDARY_TOLERANCE <= p.lng <= max(a.lng, b.lng) + BOUNDARY_TOLERANCE
        and min(a.lat, b.lat) - BOUNDARY_TOLERANCE <= p.lat <= max(a.lat, b.lat) + BOUNDARY_TOLERANCE
    )


def point_in_polygon(point: Coordinate, polygon: Polygon) -> bool:
    """Ray-casting containment test on the closed ring.

    Points lying exactly on an edge or a vertex count as inside. Coordinates
    are treated as planar (lng as x, lat as y); rings crossing the
    antimeridian are not supported.
    """
    if not point.is_valid():
        return False

    inside = False
    for a, b in polygon.edges():
        if _on_segment(point, a, b):
            return True
        if (a.lat > point.lat) != (b.lat > point.lat):
            crossing = a.lng + (point.lat - a.lat) * (b.lng - a.lng) / (b.lat - a.lat)
            if point.lng < crossing:
                inside = not inside
    return inside


def bounding_box(polygon: Polygon) -> BoundingBox:
    lats = [vertex.lat for vertex in polygon.vertices]
    lngs = [vertex.lng for vertex in polygon.vertices]
    return BoundingBox(min(lats), min(lngs), max(lats), max(lngs))


def centroid(polygon: Polygon) -> Coordinate:
    """Area-weighted centroid of the ring, vertex mean for a degenerate ring."""
    origin = polygon.vertices[0]
    doubled_area = 0.0
    cx = 0.0
    cy = 0.0
    for a, b in polygon.edges():
        ax, ay = a.lng - origin.lng, a.lat - origin.lat
        bx, by = b.lng - origin.lng, b.lat - origin.lat
        cross = ax * by - bx * ay
        doubled_area += cross
        cx += (ax + bx) * cross
        cy += (ay + by) * cross

    if abs(doubled_area) < BOUNDARY_TOLERANCE:
        count = len(polygon)
        return Coordinate(
            sum(v.lat for v in polygon.vertices) / count,
            sum(v.lng for v in polygon.vertices) / count,
        )

    factor = 1.0 / (3.0 * doubled_area)
    return Coordinate(origin.lat + cy * factor, origin.lng + cx * factor)


def area(polygon: Polygon) -> float:
    """Approximate polygon area in square meters.

    Shoelace formula on raw degrees, scaled by the meters-per-degree factors
    at the ring's mean latitude. This is an equirectangular approximation:
    for rings a few kilometers across at mid latitudes the error stays well
    below 1%; it grows with the ring's latitude span and near the poles.
    """
    origin = polygon.vertices[0]
    doubled = 0.0
    for a, b in polygon.edges():
        doubled += (a.lng - origin.lng) * (b.lat - origin.lat)
        doubled -= (b.lng - origin.lng) * (a.lat - origin.lat)

    mean_lat = sum(v.lat for v in polygon.vertices) / len(polygon)
    lng_factor = METERS_PER_DEGREE_LAT * math.cos(math.radians(mean_lat))
    return abs(doubled) / 2.0 * METERS_PER_DEGREE_LAT * lng_factor


def _wrap_lng(lng: float) -> float:
    if -180.0 <= lng <= 180.0:
        return lng
    return ((lng + 180.0) % 360.0) - 180.0


def buffer(point: Coordinate, radius_meters: float, steps: int = DEFAULT_BUFFER_STEPS) -> Polygon:
    """Approximate a circle around ``point`` with a regular ``steps``-gon."""
    _require_valid(point)
    if radius_meters <= 0:
        raise InvalidPolygonError(f"buffer radius must be positive, got {radius_meters}")
    if steps < 3:
        raise InvalidPolygonError(f"buffer needs at least 3 steps, got {steps}")

    angular = math.degrees(radius_meters / EARTH_RADIUS_M)
    cos_lat = max(math.cos(math.radians(point.lat)), 1e-12)
    ring = []
    for step in range(steps):
        angle = 2 * math.pi * step / steps
        lat = point.lat + angular * math.sin(angle)
        lng = point.lng + angular * math.cos(angle) / cos_lat
        ring.append(Coordinate(min(90.0, max(-90.0, lat)), _wrap_lng(lng)))
    return Polygon(ring)


def is_valid_polygon(points: Sequence[Coordinate]) -> bool:
    try:
        Polygon(points)
    except (InvalidPolygonError, TypeError):
        return False
    return True


def radius_to_bbox(center: Coordinate, radius_meters: float) -> BoundingBox:
    """Smallest lat/lng box that contains every point within ``radius_meters``.

    The longitude half-span is the exact spherical-cap extent
    ``asin(sin(r/R) / cos(lat))``. When the cap reaches a pole or crosses the
    antimeridian, the box widens to the full longitude range.
    """
    _require_valid(center)
    if radius_meters < 0:
        raise ValueError(f"radius must be non-negative, got {radius_meters}")

    angular = radius_meters / EARTH_RADIUS_M
    dlat = math.degrees(angular) + BOUNDARY_TOLERANCE
    min_lat = center.lat - dlat
    max_lat = center.lat + dlat

    cos_lat = math.cos(math.radians(center.lat))
    full_width = min_lat <= -90.0 or max_lat >= 90.0 or math.sin(angular) >= cos_lat
    if not full_width:
        dlng = math.degrees(math.asin(math.sin(angular) / cos_lat)) + BOUNDARY_TOLERANCE
        min_lng = center.lng - dlng
        max_lng = center.lng + dlng
        full_width = min_lng < -180.0 or max_lng > 180.0

    if full_width:
        min_lng, max_lng = -180.0, 180.0

    return BoundingBox(max(-90.0, min_lat), min_lng, min(90.0, max_lat), max_lng)
