"""Travel-time metrics and goal-dependent scores for hypothesis points."""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from .errors import AppError, ErrorCode
from .models import (
    HypothesisPoint,
    OptimizationGoal,
    TravelTimeMatrix,
    TravelTimeMetrics,
    is_valid_travel_time,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringConfig:
    optimization_goal: OptimizationGoal = OptimizationGoal.MINIMAX
    include_variance: bool = False


def calculate_metrics(travel_times: Sequence[float], include_variance: bool = False) -> Optional[TravelTimeMetrics]:
    """Metrics over the usable readings only; None when nothing is usable."""
    valid = [float(t) for t in travel_times if is_valid_travel_time(t)]
    if not valid:
        return None
    arr = np.asarray(valid, dtype=float)
    return TravelTimeMetrics(
        max_travel_time=float(arr.max()),
        average_travel_time=float(arr.mean()),
        total_travel_time=float(arr.sum()),
        variance=float(arr.var()) if include_variance else None,
    )


def _score_for_goal(metrics: TravelTimeMetrics, goal: OptimizationGoal, point_id: str) -> float:
    if goal == OptimizationGoal.MINIMAX:
        return metrics.max_travel_time
    if goal == OptimizationGoal.MINIMIZE_TOTAL:
        return metrics.total_travel_time
    if goal == OptimizationGoal.MINIMIZE_VARIANCE:
        if metrics.variance is None:
            raise AppError(ErrorCode.INTERNAL_ERROR, f"Variance not calculated for point {point_id}")
        return metrics.variance
    raise AppError(ErrorCode.INVALID_PARAMETER, f"Unknown optimization goal: {goal}")


def score_points(
    points: Sequence[HypothesisPoint],
    travel_times: Sequence[Sequence[float]],
    config: ScoringConfig,
) -> List[HypothesisPoint]:
    """
    Score each point from its per-origin travel times and sort ascending.

    travel_times[k] holds one reading per origin for points[k]. Points with no
    usable reading are skipped; if none can be scored the call fails.
    """
    if len(points) != len(travel_times):
        raise AppError(ErrorCode.INVALID_PARAMETER,
                       f"Hypothesis points ({len(points)}) and travel times ({len(travel_times)}) must have the same length")
    if config is None or config.optimization_goal is None:
        raise AppError(ErrorCode.INVALID_PARAMETER, 'Optimization goal is required for scoring')

    try:
        goal = OptimizationGoal(config.optimization_goal)
    except ValueError:
        raise AppError(ErrorCode.INVALID_PARAMETER, f"Unknown optimization goal: {config.optimization_goal}")
    needs_variance = config.include_variance or goal == OptimizationGoal.MINIMIZE_VARIANCE

    scored: List[HypothesisPoint] = []
    for point, times in zip(points, travel_times):
        metrics = calculate_metrics(times, include_variance=needs_variance)
        if metrics is None:
            logger.warning(f"Skipping point {point.id}: no valid travel times")
            continue
        score = _score_for_goal(metrics, goal, point.id)
        scored.append(replace(point, score=score, travel_time_metrics=metrics))

    if not scored:
        raise AppError(ErrorCode.NO_SCORABLE_POINTS, 'No hypothesis points could be scored successfully')

    scored.sort(key=lambda p: p.score)
    logger.info(f"Scored {len(scored)}/{len(points)} points using {goal.value}")
    return scored


# --- Matrix helpers ---

def extract_travel_times_for_destination(matrix: TravelTimeMatrix, index: int) -> List[Optional[float]]:
    if index < 0 or index >= len(matrix.destinations):
        raise AppError(ErrorCode.INVALID_PARAMETER,
                       f"Destination index {index} out of range (0..{len(matrix.destinations) - 1})")
    return matrix.column(index)


def travel_times_by_destination(matrix: TravelTimeMatrix) -> List[List[Optional[float]]]:
    """Transpose origin rows into one list of readings per destination."""
    matrix.validate_dimensions()
    return [matrix.column(j) for j in range(len(matrix.destinations))]


def score_matrix(matrix: TravelTimeMatrix, goal: OptimizationGoal = OptimizationGoal.MINIMAX,
                 include_variance: bool = False) -> List[HypothesisPoint]:
    return score_points(matrix.destinations, travel_times_by_destination(matrix),
                        ScoringConfig(optimization_goal=goal, include_variance=include_variance))
