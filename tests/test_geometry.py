import math
from decimal import Decimal

import pytest

from geo_linkage.components import Coordinate, Polygon
from geo_linkage.errors import InvalidCoordinateError, InvalidPolygonError
from geo_linkage.geometry import (
    EARTH_RADIUS_M,
    area,
    bounding_box,
    buffer,
    centroid,
    distance,
    is_valid_polygon,
    point_in_polygon,
    radius_to_bbox,
)

SQUARE = Polygon.from_pairs([(0, 0), (0, 1), (1, 1), (1, 0)])
# L-shape with the notch at the top right.
L_SHAPE = Polygon.from_pairs([(0, 0), (2, 0), (2, 1), (1, 1), (1, 2), (0, 2)])


def test_distance_zero_and_short_hop():
    origin = Coordinate(55.0, 82.9)
    assert distance(origin, origin) == 0.0
    assert 12.0 < distance(origin, Coordinate(55.0001, 82.9001)) < 14.0


def test_distance_one_degree_of_latitude():
    expected = EARTH_RADIUS_M * math.pi / 180
    assert distance(Coordinate(0, 0), Coordinate(1, 0)) == pytest.approx(expected, rel=1e-9)


def test_distance_rejects_invalid_coordinate():
    with pytest.raises(InvalidCoordinateError):
        distance(Coordinate(float("nan"), 0), Coordinate(0, 0))
    with pytest.raises(InvalidCoordinateError):
        distance(Coordinate(0, 0), Coordinate(91, 0))


def test_coordinate_coerces_numeric_values():
    point = Coordinate(Decimal("55.5"), "82.9")
    assert isinstance(point.lat, float) and isinstance(point.lng, float)
    assert point == Coordinate(55.5, 82.9)
    assert point.is_valid()
    assert not Coordinate("north", 0).is_valid()


def test_coordinate_validity():
    assert Coordinate(90, 180).is_valid()
    assert Coordinate(-90, -180).is_valid()
    assert not Coordinate(90.0001, 0).is_valid()
    assert not Coordinate(0, -180.5).is_valid()
    assert not Coordinate(float("nan"), 0).is_valid()
    assert not Coordinate(None, 0).is_valid()


def test_point_in_polygon_interior_and_exterior():
    assert point_in_polygon(Coordinate(0.5, 0.5), SQUARE)
    assert not point_in_polygon(Coordinate(1.5, 0.5), SQUARE)
    assert not point_in_polygon(Coordinate(-0.1, -0.1), SQUARE)


def test_point_in_polygon_concave_notch_is_outside():
    assert point_in_polygon(Coordinate(0.5, 1.5), L_SHAPE)
    assert point_in_polygon(Coordinate(1.5, 0.5), L_SHAPE)
    assert not point_in_polygon(Coordinate(1.5, 1.5), L_SHAPE)


@pytest.mark.parametrize(
    "lat,lng",
    [
        (0.0, 0.5),  # bottom edge
        (0.5, 1.0),  # right edge
        (1.0, 0.25),  # top edge
        (0.75, 0.0),  # left edge
        (0.0, 0.0),  # vertex
        (1.0, 1.0),  # vertex
    ],
)
def test_point_on_boundary_counts_as_inside(lat, lng):
    assert point_in_polygon(Coordinate(lat, lng), SQUARE)


def test_point_on_concave_boundary_counts_as_inside():
    assert point_in_polygon(Coordinate(1.0, 1.5), L_SHAPE)
    assert point_in_polygon(Coordinate(1.5, 1.0), L_SHAPE)
    assert point_in_polygon(Coordinate(1.0, 1.0), L_SHAPE)


def test_point_in_polygon_invalid_point_is_outside():
    assert not point_in_polygon(Coordinate(float("nan"), 0.5), SQUARE)


def test_polygon_closure_and_validation():
    closed = Polygon.from_pairs([(0, 0), (0, 1), (1, 1), (0, 0)])
    assert len(closed) == 3
    with pytest.raises(InvalidPolygonError):
        Polygon.from_pairs([(0, 0), (0, 1)])
    with pytest.raises(InvalidPolygonError):
        Polygon.from_pairs([(0, 0), (0, 1), (0, 0)])
    with pytest.raises(InvalidPolygonError):
        Polygon.from_pairs([(0, 0), (0, 1), (95, 1)])


def test_is_valid_polygon():
    assert is_valid_polygon([Coordinate(0, 0), Coordinate(0, 1), Coordinate(1, 1)])
    assert not is_valid_polygon([Coordinate(0, 0), Coordinate(0, 1)])
    assert not is_valid_polygon([Coordinate(0, 0), Coordinate(0, 1), Coordinate(float("nan"), 1)])


def test_bounding_box():
    box = bounding_box(L_SHAPE)
    assert (box.min_lat, box.min_lng, box.max_lat, box.max_lng) == (0, 0, 2, 2)
    assert box.as_rtree_bounds() == (0, 0, 2, 2)
    assert box.contains(Coordinate(2, 2))


def test_centroid():
    square = Polygon.from_pairs([(0, 0), (0, 2), (2, 2), (2, 0)])
    center = centroid(square)
    assert center.lat == pytest.approx(1.0)
    assert center.lng == pytest.approx(1.0)
    triangle = Polygon.from_pairs([(0, 0), (0, 3), (3, 0)])
    center = centroid(triangle)
    assert center.lat == pytest.approx(1.0)
    assert center.lng == pytest.approx(1.0)


def test_centroid_of_degenerate_ring_is_vertex_mean():
    line = Polygon.from_pairs([(0, 0), (1, 1), (2, 2)])
    center = centroid(line)
    assert center.lat == pytest.approx(1.0)
    assert center.lng == pytest.approx(1.0)


def test_area_matches_side_lengths_at_city_scale():
    cell = Polygon.from_pairs([(55.0, 82.9), (55.0, 82.91), (55.01, 82.91), (55.01, 82.9)])
    width = distance(Coordinate(55.005, 82.9), Coordinate(55.005, 82.91))
    height = distance(Coordinate(55.0, 82.905), Coordinate(55.01, 82.905))
    assert area(cell) == pytest.approx(width * height, rel=0.01)


def test_buffer_vertices_sit_on_the_radius():
    center = Coordinate(55.0, 82.9)
    ring = buffer(center, 250.0)
    assert len(ring) == 16
    for vertex in ring:
        assert distance(center, vertex) == pytest.approx(250.0, rel=0.01)
    assert point_in_polygon(center, ring)


def test_buffer_rejects_bad_arguments():
    with pytest.raises(InvalidPolygonError):
        buffer(Coordinate(0, 0), 0)
    with pytest.raises(InvalidPolygonError):
        buffer(Coordinate(0, 0), 10, steps=2)


@pytest.mark.parametrize("lat", [0.0, 55.0, 70.0, -60.0])
def test_radius_bbox_contains_the_circle(lat):
    center = Coordinate(lat, 30.0)
    box = radius_to_bbox(center, 1000.0)
    for vertex in buffer(center, 999.0, steps=64):
        assert box.contains(vertex)


def test_radius_bbox_near_pole_spans_all_longitudes():
    box = radius_to_bbox(Coordinate(89.9999, 10.0), 1000.0)
    assert (box.min_lng, box.max_lng) == (-180.0, 180.0)
    assert box.max_lat == 90.0


def test_radius_bbox_across_antimeridian_spans_all_longitudes():
    box = radius_to_bbox(Coordinate(0.0, 179.9999), 1000.0)
    assert (box.min_lng, box.max_lng) == (-180.0, 180.0)
