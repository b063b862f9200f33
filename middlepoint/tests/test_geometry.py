import math

import pytest
from geopy.distance import great_circle

from middlepoint.errors import AppError, ErrorCode
from middlepoint.geometry import (
    BoundingBox,
    bounding_box,
    euclidean_degree_distance,
    geographic_centroid,
    grid_points,
    haversine_distance,
    median_coordinate,
    pairwise_midpoints,
    validate_bounding_box,
    validate_coordinate_bounds,
)
from middlepoint.models import Coordinate

from conftest import make_location


def test_coordinate_bounds():
    assert validate_coordinate_bounds(Coordinate(90, 180))
    assert validate_coordinate_bounds(Coordinate(-90, -180))
    assert not validate_coordinate_bounds(Coordinate(90.0001, 0))
    assert not validate_coordinate_bounds(Coordinate(0, -180.5))
    assert not validate_coordinate_bounds(Coordinate(math.nan, 0))
    assert not validate_coordinate_bounds(Coordinate(0, math.inf))


def test_centroid_and_median():
    locations = [make_location(0, 0, 0), make_location(1, 10, 20), make_location(2, 2, 1)]
    centroid = geographic_centroid(locations)
    assert centroid.latitude == pytest.approx(4.0)
    assert centroid.longitude == pytest.approx(7.0)

    median = median_coordinate(locations)
    assert median == Coordinate(2, 1)


def test_median_even_count_averages_middle_values():
    locations = [make_location(i, lat, lng) for i, (lat, lng) in enumerate([(0, 0), (1, 5), (3, 7), (10, 9)])]
    assert median_coordinate(locations) == Coordinate(2.0, 6.0)


def test_centroid_of_nothing_fails():
    with pytest.raises(AppError) as exc:
        geographic_centroid([])
    assert exc.value.code == ErrorCode.ANCHOR_GENERATION_FAILED
    assert 'empty locations array' in exc.value.message


def test_pairwise_midpoints_order():
    locations = [make_location(0, 0, 0), make_location(1, 2, 2), make_location(2, 4, 0)]
    mids = pairwise_midpoints(locations)
    assert mids == [Coordinate(1, 1), Coordinate(2, 0), Coordinate(3, 1)]


def test_pairwise_midpoints_needs_two():
    with pytest.raises(AppError) as exc:
        pairwise_midpoints([make_location(0, 1, 1)])
    assert 'At least 2 locations required' in exc.value.message


def test_bounding_box_padding_is_uniform_degrees():
    box = bounding_box([make_location(0, 40.0, -74.0), make_location(1, 41.0, -73.0)], padding_km=11.1)
    assert box.north == pytest.approx(41.1)
    assert box.south == pytest.approx(39.9)
    assert box.east == pytest.approx(-72.9)
    assert box.west == pytest.approx(-74.1)


def test_bounding_box_clamps_to_globe():
    box = bounding_box([make_location(0, 89.99, 179.99), make_location(1, 89.0, 179.0)], padding_km=50)
    assert box.north == 90.0
    assert box.east == 180.0


def test_bounding_box_rejects_negative_padding():
    with pytest.raises(AppError) as exc:
        bounding_box([make_location(0, 0, 0)], padding_km=-1)
    assert exc.value.code == ErrorCode.INVALID_PARAMETER


def test_degenerate_box_is_reported():
    problems = validate_bounding_box(BoundingBox(north=1.0, south=1.0, east=2.0, west=1.0))
    assert any('north' in p for p in problems)


def test_grid_points_are_cell_centres():
    box = BoundingBox(north=2.0, south=0.0, east=2.0, west=0.0)
    points = grid_points(box, 2)
    assert points == [Coordinate(0.5, 0.5), Coordinate(0.5, 1.5), Coordinate(1.5, 0.5), Coordinate(1.5, 1.5)]
    assert all(box.contains(p) for p in points)


@pytest.mark.parametrize('n', [0, 21])
def test_grid_resolution_limits(n):
    with pytest.raises(AppError) as exc:
        grid_points(BoundingBox(north=1, south=0, east=1, west=0), n)
    assert exc.value.code == ErrorCode.INVALID_PARAMETER
    assert 'Invalid grid resolution' in exc.value.message


def test_haversine_zero_and_symmetric():
    a = Coordinate(40.7128, -74.0060)
    b = Coordinate(51.5074, -0.1278)
    assert haversine_distance(a, a) == 0
    assert haversine_distance(a, b) == pytest.approx(haversine_distance(b, a))


def test_haversine_agrees_with_geopy_great_circle():
    a = Coordinate(40.7128, -74.0060)
    b = Coordinate(40.6782, -73.9442)
    expected = great_circle((a.latitude, a.longitude), (b.latitude, b.longitude)).meters
    assert haversine_distance(a, b) == pytest.approx(expected, rel=1e-3)


def test_euclidean_degree_distance():
    assert euclidean_degree_distance(Coordinate(0, 0), Coordinate(3, 4)) == pytest.approx(5.0)
