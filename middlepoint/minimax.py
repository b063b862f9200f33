"""
Minimax selection over a travel-time matrix.

The optimal destination is the column whose worst per-origin travel time is
smallest. Exact ties are settled by, in order: earlier phase, lower average
travel time, and smaller planar distance to the participants' centroid. When
all of these are still equal the first column seen wins; that choice is
deterministic but not unique.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import AVERAGE_TIE_TOLERANCE, DEFAULT_EPSILON_MINUTES, MAX_TIE_TOLERANCE
from .errors import AppError, ErrorCode
from .geometry import euclidean_degree_distance, geographic_centroid
from .matrix_orchestrator import BatchedMatrixResult
from .models import (
    Coordinate,
    HypothesisPoint,
    Phase,
    PhaseMatrixResult,
    TravelTimeMatrix,
    is_valid_travel_time,
)

logger = logging.getLogger(__name__)

TIE_BREAK_NONE = 'none'
TIE_BREAK_PHASE = 'phase'
TIE_BREAK_AVERAGE = 'average'
TIE_BREAK_CENTROID = 'centroid'
TIE_BREAK_FIRST_SEEN = 'first_seen'


@dataclass
class MinimaxResult:
    optimal_index: int
    max_travel_time: float
    average_travel_time: float
    optimal_phase: Optional[Phase] = None
    tie_break_rule: str = TIE_BREAK_NONE
    optimal_point: Optional[HypothesisPoint] = None

    def to_dict(self) -> Dict:
        return {
            'optimal_index': self.optimal_index,
            'max_travel_time': self.max_travel_time,
            'average_travel_time': self.average_travel_time,
            'optimal_phase': self.optimal_phase.value if self.optimal_phase else None,
            'tie_break_rule': self.tie_break_rule,
            'optimal_point': self.optimal_point.to_dict() if self.optimal_point else None,
        }


@dataclass
class _Column:
    index: int
    max_time: float
    avg_time: float
    phase: Optional[Phase]


def _qualifying_columns(matrix: TravelTimeMatrix, phases: Optional[Sequence[Phase]]) -> List[_Column]:
    columns: List[_Column] = []
    n_origins = len(matrix.origins)
    for j in range(len(matrix.destinations)):
        times = matrix.column(j)
        valid = [t for t in times if is_valid_travel_time(t)]
        if len(valid) < n_origins:
            logger.debug(f"Skipping hypothesis point {j}: unreachable from {n_origins - len(valid)} origins")
            continue
        columns.append(_Column(
            index=j,
            max_time=float(max(valid)),
            avg_time=sum(valid) / len(valid),
            phase=phases[j] if phases is not None else None,
        ))
    return columns


def _break_ties(tied: List[_Column], matrix: TravelTimeMatrix, centroid: Optional[Coordinate]) -> Tuple[_Column, str]:
    rule = TIE_BREAK_NONE
    if len(tied) == 1:
        return tied[0], rule

    if all(c.phase is not None for c in tied):
        best_rank = min(c.phase.rank for c in tied)
        narrowed = [c for c in tied if c.phase.rank == best_rank]
        if len(narrowed) < len(tied):
            rule = TIE_BREAK_PHASE
        tied = narrowed
        if len(tied) == 1:
            return tied[0], rule

    min_avg = min(c.avg_time for c in tied)
    narrowed = [c for c in tied if abs(c.avg_time - min_avg) < AVERAGE_TIE_TOLERANCE]
    if len(narrowed) < len(tied):
        rule = TIE_BREAK_AVERAGE
    tied = narrowed
    if len(tied) == 1:
        return tied[0], rule

    if centroid is None:
        return tied[0], TIE_BREAK_FIRST_SEEN

    best = None
    best_distance = float('inf')
    for c in tied:
        distance = euclidean_degree_distance(matrix.destinations[c.index].coordinate, centroid)
        # Strict comparison keeps the first-seen column among exact distance ties
        if distance < best_distance:
            best, best_distance = c, distance
    distinct = sum(1 for c in tied
                   if euclidean_degree_distance(matrix.destinations[c.index].coordinate, centroid) == best_distance)
    return best, (TIE_BREAK_CENTROID if distinct == 1 else TIE_BREAK_FIRST_SEEN)


def find_minimax_optimal(matrix: TravelTimeMatrix, phases: Optional[Sequence[Phase]] = None) -> MinimaxResult:
    """
    Select the destination minimizing the maximum travel time over all origins.

    Columns missing a reading from any origin, or holding a non-finite or
    negative value, are never selected. phases, when given, tags each column
    for the phase-preference tie-break.
    """
    if matrix is None or not matrix.origins:
        raise AppError(ErrorCode.INSUFFICIENT_LOCATIONS, 'Invalid travel time matrix: no origins provided')
    if not matrix.destinations:
        raise AppError(ErrorCode.NO_VALID_POINTS, 'Invalid travel time matrix: no destinations provided')
    matrix.validate_dimensions()
    if phases is not None and len(phases) != len(matrix.destinations):
        raise AppError(ErrorCode.INVALID_PARAMETER,
                       f"Expected {len(matrix.destinations)} phase tags, got {len(phases)}")

    logger.info(f"Analyzing travel time matrix: {len(matrix.origins)} origins x {len(matrix.destinations)} destinations")
    columns = _qualifying_columns(matrix, phases)
    if not columns:
        raise AppError(ErrorCode.NO_REACHABLE_POINTS,
                       'No valid hypothesis points found: all destinations are unreachable from one or more origins')

    best_max = min(c.max_time for c in columns)
    tied = [c for c in columns if abs(c.max_time - best_max) <= MAX_TIE_TOLERANCE]

    centroid = None
    if len(tied) > 1:
        logger.info(f"Applying tie-breaking rules for {len(tied)} candidates with equal max travel time")
        try:
            centroid = geographic_centroid(matrix.origins)
        except AppError as e:
            logger.warning(f"Centroid unavailable for tie-breaking: {e.message}")

    chosen, rule = _break_ties(tied, matrix, centroid)
    if rule == TIE_BREAK_FIRST_SEEN:
        logger.info(f"Tie unresolved by all rules; keeping first-seen index {chosen.index}")

    result = MinimaxResult(
        optimal_index=chosen.index,
        max_travel_time=chosen.max_time,
        average_travel_time=chosen.avg_time,
        optimal_phase=chosen.phase if chosen.phase is not None else matrix.destinations[chosen.index].phase,
        tie_break_rule=rule,
        optimal_point=matrix.destinations[chosen.index],
    )
    logger.info(f"Minimax optimization complete: optimal index {result.optimal_index}, "
                f"max time {result.max_travel_time}min, avg time {result.average_travel_time:.1f}min")
    return result


def merge_matrix_results(base: TravelTimeMatrix, extra: Optional[TravelTimeMatrix]) -> TravelTimeMatrix:
    """Concatenate extra's columns after base's; origins must match."""
    if extra is None:
        return base
    if [o.id for o in base.origins] != [o.id for o in extra.origins]:
        raise AppError(ErrorCode.MATRIX_DIMENSION_MISMATCH,
                       'Origin mismatch between matrices being merged')
    rows = [list(a) + list(b) for a, b in zip(base.travel_times, extra.travel_times)]
    return TravelTimeMatrix(
        origins=base.origins,
        destinations=list(base.destinations) + list(extra.destinations),
        travel_times=rows,
        travel_mode=base.travel_mode,
    )


def find_multi_phase_minimax_optimal(batched: BatchedMatrixResult,
                                     phase2: Optional[PhaseMatrixResult] = None) -> MinimaxResult:
    """Optimize across Phase 0+1 and, when present, the combined Phase 2 result."""
    merged = merge_matrix_results(batched.combined_matrix, phase2.matrix if phase2 else None)
    phases = [p.phase for p in merged.destinations]
    result = find_minimax_optimal(merged, phases)
    logger.info(f"Multi-phase optimization complete: optimal point from {result.optimal_phase.value} "
                f"at index {result.optimal_index}")
    return result


def validate_epsilon_improvement(baseline: MinimaxResult, improved: MinimaxResult,
                                 epsilon_minutes: float = DEFAULT_EPSILON_MINUTES) -> Dict:
    """How much the multi-phase search improved on the baseline's worst-case time."""
    if baseline is None or improved is None:
        raise AppError(ErrorCode.INVALID_PARAMETER, 'Both baseline and multi-phase results are required')
    if epsilon_minutes < 0:
        raise AppError(ErrorCode.INVALID_PARAMETER, 'Epsilon threshold must be non-negative')

    improvement = baseline.max_travel_time - improved.max_travel_time
    percentage = (improvement / baseline.max_travel_time * 100) if baseline.max_travel_time > 0 else 0.0
    analysis = {
        'has_improvement': improvement > 0,
        'improvement_minutes': improvement,
        'improvement_percentage': percentage,
        'is_significant': improvement >= epsilon_minutes,
    }
    logger.info(f"Epsilon-optimality: improvement={improvement:.2f}min ({percentage:.1f}%), "
                f"significant={analysis['is_significant']} (threshold={epsilon_minutes}min)")
    return analysis
