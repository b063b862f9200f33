"""
Phase 0: anchor hypothesis points.

Anchors are cheap closed-form candidates: the geographic centroid, the
per-axis median, every participant location and every pairwise midpoint.
"""

import logging
from typing import List, Sequence

from .errors import AppError, ErrorCode
from .geometry import (
    geographic_centroid,
    median_coordinate,
    pairwise_midpoints,
    validate_coordinate_bounds,
)
from .models import HypothesisPoint, HypothesisPointType, Location, Phase, PointMetadata

logger = logging.getLogger(__name__)


def generate_anchors(locations: Sequence[Location]) -> List[HypothesisPoint]:
    """
    Build the Phase 0 candidate set.

    Centroid, median and pairwise failures are logged and skipped. An invalid
    participant coordinate, or any invalid point after assembly, is fatal.
    """
    if not locations:
        raise AppError(ErrorCode.ANCHOR_GENERATION_FAILED,
                       'Cannot generate anchor points: at least one location is required')

    anchors: List[HypothesisPoint] = []

    try:
        anchors.append(HypothesisPoint(
            id='anchor_geographic_centroid',
            coordinate=geographic_centroid(locations),
            type=HypothesisPointType.GEOGRAPHIC_CENTROID,
            phase=Phase.ANCHOR,
        ))
    except AppError as e:
        logger.warning(f"Skipping geographic centroid anchor: {e.message}")

    try:
        anchors.append(HypothesisPoint(
            id='anchor_median_coordinate',
            coordinate=median_coordinate(locations),
            type=HypothesisPointType.MEDIAN_COORDINATE,
            phase=Phase.ANCHOR,
        ))
    except AppError as e:
        logger.warning(f"Skipping median coordinate anchor: {e.message}")

    for i, loc in enumerate(locations):
        if not validate_coordinate_bounds(loc.coordinate):
            raise AppError(
                ErrorCode.ANCHOR_GENERATION_FAILED,
                f"Invalid coordinates for participant {i} ({loc.id}): {loc.coordinate}",
                details={'participant_index': i, 'participant_id': loc.id},
            )
        anchors.append(HypothesisPoint(
            id=f"anchor_participant_{i}",
            coordinate=loc.coordinate,
            type=HypothesisPointType.PARTICIPANT_LOCATION,
            phase=Phase.ANCHOR,
            metadata=PointMetadata(participant_ids=(loc.id,)),
        ))

    if len(locations) >= 2:
        try:
            midpoints = pairwise_midpoints(locations)
        except AppError as e:
            logger.warning(f"Skipping pairwise midpoint anchors: {e.message}")
        else:
            pairs = [(i, j) for i in range(len(locations)) for j in range(i + 1, len(locations))]
            for (i, j), mid in zip(pairs, midpoints):
                anchors.append(HypothesisPoint(
                    id=f"anchor_pairwise_{i}_{j}",
                    coordinate=mid,
                    type=HypothesisPointType.PAIRWISE_MIDPOINT,
                    phase=Phase.ANCHOR,
                    metadata=PointMetadata(pair_ids=(locations[i].id, locations[j].id)),
                ))

    invalid = [p.id for p in anchors if not validate_coordinate_bounds(p.coordinate)]
    if invalid:
        raise AppError(ErrorCode.ANCHOR_GENERATION_FAILED,
                       f"Generated invalid anchor points: {', '.join(invalid)}",
                       details={'invalid_ids': invalid})

    logger.info(f"Generated {len(anchors)} anchor points for {len(locations)} locations")
    return anchors


def expected_anchor_count(n: int) -> int:
    """2 + n + C(n, 2); the pairwise term only applies from two locations up."""
    if n < 1:
        return 0
    pairwise = n * (n - 1) // 2 if n >= 2 else 0
    return 2 + n + pairwise
