"""
Proximity deduplication for hypothesis points of any phase.

Points closer than a Haversine threshold are merged pairwise: the first operand
is replaced by a new point at the mean coordinate and the second is dropped.
Survivors are then re-ranked with a fully deterministic ordering.
"""

import functools
import logging
from typing import Dict, List, Optional, Sequence

from .constants import COORDINATE_TIE_TOLERANCE, MAX_DEDUPLICATION_THRESHOLD_M
from .errors import AppError, ErrorCode
from .geometry import haversine_distance, midpoint, validate_coordinate_bounds
from .models import HypothesisPoint, PointMetadata

logger = logging.getLogger(__name__)


def combine_metadata(first: Optional[PointMetadata], second: Optional[PointMetadata],
                     first_id: str, second_id: str) -> PointMetadata:
    """Participant and pair ids concatenate; merged_from keeps the full audit trail."""
    a = first or PointMetadata()
    b = second or PointMetadata()
    return PointMetadata(
        participant_ids=a.participant_ids + b.participant_ids,
        pair_ids=a.pair_ids + b.pair_ids,
        merged_from=a.merged_from + b.merged_from + (first_id, second_id),
    )


def merge_points(first: HypothesisPoint, second: HypothesisPoint) -> HypothesisPoint:
    coord = midpoint(first.coordinate, second.coordinate)
    if not validate_coordinate_bounds(coord):
        raise AppError(ErrorCode.DEDUPLICATION_FAILED,
                       f"Merging {first.id} and {second.id} produced invalid coordinates: {coord}")
    return HypothesisPoint(
        id=f"merged_{first.id}_{second.id}",
        coordinate=coord,
        type=first.type,
        phase=first.phase,
        metadata=combine_metadata(first.metadata, second.metadata, first.id, second.id),
        score=first.score,
        travel_time_metrics=first.travel_time_metrics,
    )


def _find_mergeable_pair(points: List[HypothesisPoint], threshold_m: float):
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            distance = haversine_distance(points[i].coordinate, points[j].coordinate)
            if distance <= threshold_m:
                return i, j, distance
    return None


def deduplicate(points: Sequence[HypothesisPoint], threshold_m: float) -> List[HypothesisPoint]:
    """
    Merge every pair within threshold_m meters, then re-rank.

    Input should be sorted best-first: the first operand of a merge keeps its
    type, phase, score and metrics. The scan restarts after each merge and is
    bounded by len(points) passes.
    """
    if not points:
        return []
    if not (0 <= threshold_m <= MAX_DEDUPLICATION_THRESHOLD_M):
        raise AppError(ErrorCode.DEDUPLICATION_FAILED,
                       f"Invalid distance threshold: {threshold_m}m. Must be between 0 and {MAX_DEDUPLICATION_THRESHOLD_M:g}",
                       details={'threshold_m': threshold_m})

    working = list(points)
    max_passes = len(points)
    passes = 0
    merged = True

    while merged and passes < max_passes:
        passes += 1
        merged = False
        found = _find_mergeable_pair(working, threshold_m)
        if found is None:
            break
        i, j, distance = found
        first, second = working[i], working[j]
        working[i] = merge_points(first, second)
        del working[j]
        merged = True
        logger.debug(f"Merged {first.id} and {second.id} (distance: {distance:.1f}m)")

    if merged and _find_mergeable_pair(working, threshold_m) is not None:
        logger.warning(f"Deduplication stopped after {max_passes} passes with mergeable points remaining")

    ranked = recalculate_rankings(working)
    logger.info(f"Deduplication complete: {len(points)} -> {len(ranked)} points ({len(points) - len(ranked)} merged)")
    return ranked


def _compare(a: HypothesisPoint, b: HypothesisPoint) -> int:
    if a.score is not None and b.score is not None:
        if a.score != b.score:
            return -1 if a.score < b.score else 1
    elif a.score is not None:
        return -1
    elif b.score is not None:
        return 1

    if a.type.value != b.type.value:
        return -1 if a.type.value < b.type.value else 1

    dlat = a.coordinate.latitude - b.coordinate.latitude
    if abs(dlat) > COORDINATE_TIE_TOLERANCE:
        return -1 if dlat < 0 else 1
    dlng = a.coordinate.longitude - b.coordinate.longitude
    if abs(dlng) > COORDINATE_TIE_TOLERANCE:
        return -1 if dlng < 0 else 1

    if a.id != b.id:
        return -1 if a.id < b.id else 1
    return 0


def recalculate_rankings(points: Sequence[HypothesisPoint]) -> List[HypothesisPoint]:
    """Score ascending (unscored last), then type, latitude, longitude and id."""
    return sorted(points, key=functools.cmp_to_key(_compare))


def deduplication_stats(original: Sequence[HypothesisPoint], final: Sequence[HypothesisPoint]) -> Dict:
    original_count = len(original)
    final_count = len(final)
    merged = original_count - final_count
    reduction = round(merged / original_count * 100, 2) if original_count else 0.0
    return {
        'original_count': original_count,
        'final_count': final_count,
        'merged_count': merged,
        'reduction_percentage': reduction,
    }


def select_top_candidates(points: Sequence[HypothesisPoint], top_m: int, threshold_m: float) -> List[HypothesisPoint]:
    """Deduplicate a best-first list, then keep the first top_m survivors."""
    if top_m < 1:
        raise AppError(ErrorCode.INVALID_PARAMETER, f"top_m must be at least 1, got {top_m}")
    return deduplicate(points, threshold_m)[:top_m]
