"""Phase 1: uniform coarse grid over the padded bounding box of all participants."""

import logging
from typing import List, Sequence

from .constants import (
    DEFAULT_GRID_SIZE,
    DEFAULT_PADDING_KM,
    MAX_GRID_SIZE,
    MAX_PADDING_KM,
    MIN_GRID_SIZE,
)
from .errors import AppError, ErrorCode
from .geometry import bounding_box, grid_points, validate_bounding_box, validate_coordinate_bounds
from .models import HypothesisPoint, HypothesisPointType, Location, Phase

logger = logging.getLogger(__name__)


def validate_grid_parameters(grid_size, padding_km) -> List[str]:
    problems: List[str] = []
    if not isinstance(grid_size, int) or isinstance(grid_size, bool) or not (MIN_GRID_SIZE <= grid_size <= MAX_GRID_SIZE):
        problems.append(f"grid_size must be an integer between {MIN_GRID_SIZE} and {MAX_GRID_SIZE}, got {grid_size}")
    if not isinstance(padding_km, (int, float)) or not (0 <= padding_km <= MAX_PADDING_KM):
        problems.append(f"padding_km must be between 0 and {MAX_PADDING_KM}, got {padding_km}")
    return problems


def expected_grid_point_count(grid_size: int) -> int:
    return grid_size * grid_size


def generate_coarse_grid(
    locations: Sequence[Location],
    grid_size: int = DEFAULT_GRID_SIZE,
    padding_km: float = DEFAULT_PADDING_KM,
) -> List[HypothesisPoint]:
    """
    Emit grid_size^2 COARSE_GRID_CELL points, ids coarse_grid_{k} in row-major
    order. An invalid box or cell is fatal.
    """
    if not locations:
        raise AppError(ErrorCode.GRID_GENERATION_FAILED,
                       'Cannot generate coarse grid: at least one location is required')
    problems = validate_grid_parameters(grid_size, padding_km)
    if problems:
        raise AppError(ErrorCode.INVALID_PARAMETER, f"Invalid coarse grid parameters: {'; '.join(problems)}",
                       details={'grid_size': grid_size, 'padding_km': padding_km})

    box = bounding_box(locations, padding_km)
    box_problems = validate_bounding_box(box)
    if box_problems:
        raise AppError(ErrorCode.GRID_GENERATION_FAILED,
                       f"Invalid bounding box for coarse grid: {'; '.join(box_problems)}",
                       details={'north': box.north, 'south': box.south, 'east': box.east, 'west': box.west})

    cells = grid_points(box, grid_size)
    points = [
        HypothesisPoint(
            id=f"coarse_grid_{k}",
            coordinate=c,
            type=HypothesisPointType.COARSE_GRID_CELL,
            phase=Phase.COARSE_GRID,
        )
        for k, c in enumerate(cells)
    ]

    invalid = [p.id for p in points if not validate_coordinate_bounds(p.coordinate)]
    if invalid:
        raise AppError(ErrorCode.GRID_GENERATION_FAILED,
                       f"Generated invalid coarse grid points: {', '.join(invalid)}")

    logger.info(f"Generated {len(points)} coarse grid points ({grid_size}x{grid_size}, padding {padding_km}km)")
    return points
