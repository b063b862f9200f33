import pytest

from middlepoint.coarse_grid import expected_grid_point_count, generate_coarse_grid, validate_grid_parameters
from middlepoint.errors import AppError, ErrorCode
from middlepoint.geometry import bounding_box
from middlepoint.models import HypothesisPointType, Phase

from conftest import make_location


@pytest.mark.parametrize('k', [1, 3, 5, 10])
def test_grid_size_yields_k_squared_points(two_locations, k):
    points = generate_coarse_grid(two_locations, grid_size=k, padding_km=5.0)
    assert len(points) == expected_grid_point_count(k) == k * k
    assert [p.id for p in points] == [f"coarse_grid_{i}" for i in range(k * k)]
    assert len({(p.coordinate.latitude, p.coordinate.longitude) for p in points}) == k * k


def test_points_lie_inside_padded_box(three_locations):
    box = bounding_box(three_locations, 5.0)
    points = generate_coarse_grid(three_locations, grid_size=4, padding_km=5.0)
    assert all(box.contains(p.coordinate) for p in points)
    assert all(p.phase == Phase.COARSE_GRID and p.type == HypothesisPointType.COARSE_GRID_CELL for p in points)


def test_zero_padding_on_single_point_is_degenerate():
    with pytest.raises(AppError) as exc:
        generate_coarse_grid([make_location(0, 40.0, -74.0)], grid_size=3, padding_km=0)
    assert exc.value.code == ErrorCode.GRID_GENERATION_FAILED


def test_empty_locations():
    with pytest.raises(AppError) as exc:
        generate_coarse_grid([])
    assert exc.value.code == ErrorCode.GRID_GENERATION_FAILED


@pytest.mark.parametrize('grid_size,padding_km', [(0, 5.0), (21, 5.0), (5, -1.0), (5, 51.0)])
def test_invalid_parameters(two_locations, grid_size, padding_km):
    assert validate_grid_parameters(grid_size, padding_km)
    with pytest.raises(AppError) as exc:
        generate_coarse_grid(two_locations, grid_size=grid_size, padding_km=padding_km)
    assert exc.value.code == ErrorCode.INVALID_PARAMETER
