"""
Phase 2: fine local grids around the best Phase 0/1 candidates.

Survivor merging here is a planar approximation in degrees; refinement spans
are a few kilometres so the error is negligible. The local box corrects the
longitude half-width by cos(latitude), unlike the coarse grid box.
"""

import logging
import math
from typing import List, Sequence

from .constants import (
    DEDUPLICATION_THRESHOLD_M,
    DEFAULT_FINE_GRID_RESOLUTION,
    DEFAULT_REFINEMENT_RADIUS_KM,
    KM_PER_DEGREE,
    MAX_DEDUPLICATION_THRESHOLD_M,
    MAX_FINE_GRID_RESOLUTION,
    MAX_REFINEMENT_RADIUS_KM,
    MAX_TOP_M,
    METERS_PER_DEGREE,
    MIN_FINE_GRID_RESOLUTION,
    MIN_REFINEMENT_RADIUS_KM,
    MIN_REFINEMENT_THRESHOLD_M,
    TOP_M,
)
from .errors import AppError, ErrorCode
from .geometry import BoundingBox, euclidean_degree_distance, grid_points, midpoint, validate_coordinate_bounds
from .models import CandidatePoint, Coordinate, HypothesisPoint, HypothesisPointType, Phase

logger = logging.getLogger(__name__)


def validate_refinement_parameters(top_m, dedup_threshold_m, refinement_radius_km, fine_grid_resolution) -> None:
    problems: List[str] = []
    if not isinstance(top_m, int) or not (1 <= top_m <= MAX_TOP_M):
        problems.append(f"top_m must be between 1 and {MAX_TOP_M}, got {top_m}")
    if not (MIN_REFINEMENT_THRESHOLD_M <= dedup_threshold_m <= MAX_DEDUPLICATION_THRESHOLD_M):
        problems.append(
            f"dedup_threshold_m must be between {MIN_REFINEMENT_THRESHOLD_M:g} and {MAX_DEDUPLICATION_THRESHOLD_M:g}, got {dedup_threshold_m}")
    if not (MIN_REFINEMENT_RADIUS_KM <= refinement_radius_km <= MAX_REFINEMENT_RADIUS_KM):
        problems.append(
            f"refinement_radius_km must be between {MIN_REFINEMENT_RADIUS_KM} and {MAX_REFINEMENT_RADIUS_KM}, got {refinement_radius_km}")
    if not isinstance(fine_grid_resolution, int) or not (MIN_FINE_GRID_RESOLUTION <= fine_grid_resolution <= MAX_FINE_GRID_RESOLUTION):
        problems.append(
            f"fine_grid_resolution must be between {MIN_FINE_GRID_RESOLUTION} and {MAX_FINE_GRID_RESOLUTION}, got {fine_grid_resolution}")
    if problems:
        raise AppError(ErrorCode.INVALID_PARAMETER, f"Invalid local refinement parameters: {'; '.join(problems)}")


def best_candidates(candidates: Sequence[CandidatePoint], top_m: int) -> List[CandidatePoint]:
    """Stable sort by max travel time, keep the first top_m."""
    return sorted(candidates, key=lambda c: c.max_travel_time)[:top_m]


def merge_nearby_candidates(candidates: Sequence[CandidatePoint], threshold_m: float) -> List[CandidatePoint]:
    threshold_deg = threshold_m / METERS_PER_DEGREE
    survivors: List[CandidatePoint] = []
    for cand in candidates:
        for k, kept in enumerate(survivors):
            if euclidean_degree_distance(cand.coordinate, kept.coordinate) < threshold_deg:
                survivors[k] = CandidatePoint(
                    coordinate=midpoint(kept.coordinate, cand.coordinate),
                    max_travel_time=min(kept.max_travel_time, cand.max_travel_time),
                    id=kept.id,
                )
                break
        else:
            survivors.append(cand)
    return survivors


def local_bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    lat_pad = radius_km / KM_PER_DEGREE
    lng_pad = radius_km / (KM_PER_DEGREE * math.cos(math.radians(center.latitude)))
    return BoundingBox(
        north=min(90.0, center.latitude + lat_pad),
        south=max(-90.0, center.latitude - lat_pad),
        east=min(180.0, center.longitude + abs(lng_pad)),
        west=max(-180.0, center.longitude - abs(lng_pad)),
    )


def _local_grid(center: Coordinate, radius_km: float, resolution: int, candidate_index: int) -> List[HypothesisPoint]:
    if not validate_coordinate_bounds(center):
        raise AppError(ErrorCode.LOCAL_REFINEMENT_FAILED, f"Invalid candidate centre: {center}")
    box = local_bounding_box(center, radius_km)
    return [
        HypothesisPoint(
            id=f"local_refinement_{candidate_index}_{g}",
            coordinate=c,
            type=HypothesisPointType.LOCAL_REFINEMENT_CELL,
            phase=Phase.LOCAL_REFINEMENT,
        )
        for g, c in enumerate(grid_points(box, resolution))
    ]


def generate_local_refinement_groups(
    candidates: Sequence[CandidatePoint],
    top_m: int = TOP_M,
    dedup_threshold_m: float = DEDUPLICATION_THRESHOLD_M,
    refinement_radius_km: float = DEFAULT_REFINEMENT_RADIUS_KM,
    fine_grid_resolution: int = DEFAULT_FINE_GRID_RESOLUTION,
) -> List[List[HypothesisPoint]]:
    """One local grid per surviving candidate; a candidate that fails is skipped."""
    validate_refinement_parameters(top_m, dedup_threshold_m, refinement_radius_km, fine_grid_resolution)
    if not candidates:
        logger.info("No candidates provided for local refinement")
        return []

    survivors = merge_nearby_candidates(best_candidates(candidates, top_m), dedup_threshold_m)
    logger.info(f"Local refinement: {len(survivors)} survivors from {min(top_m, len(candidates))} top candidates")

    groups: List[List[HypothesisPoint]] = []
    for idx, cand in enumerate(survivors):
        try:
            groups.append(_local_grid(cand.coordinate, refinement_radius_km, fine_grid_resolution, idx))
        except AppError as e:
            logger.warning(f"Failed to generate local grid for candidate {idx}: {e.message}")

    if survivors and not groups:
        logger.warning("Local refinement produced no grids: every candidate failed")
    return groups


def generate_local_refinement(
    candidates: Sequence[CandidatePoint],
    top_m: int = TOP_M,
    dedup_threshold_m: float = DEDUPLICATION_THRESHOLD_M,
    refinement_radius_km: float = DEFAULT_REFINEMENT_RADIUS_KM,
    fine_grid_resolution: int = DEFAULT_FINE_GRID_RESOLUTION,
) -> List[HypothesisPoint]:
    groups = generate_local_refinement_groups(
        candidates, top_m, dedup_threshold_m, refinement_radius_km, fine_grid_resolution)
    return [p for group in groups for p in group]


def expected_local_refinement_count(top_m: int, fine_grid_resolution: int, reduction: float = 0.2) -> int:
    """Estimate assuming a fraction of survivors collapse during merging."""
    survivors = max(1, math.floor(top_m * (1 - reduction)))
    return survivors * fine_grid_resolution * fine_grid_resolution
