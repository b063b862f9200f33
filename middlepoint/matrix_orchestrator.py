"""
Matrix evaluation orchestration.

Turns hypothesis point sets into bounded calls to the travel-time oracle:
a single combined call for Phase 0+1, one separate call per Phase 2 local
grid, result validation, unreachable-column filtering, one retry for
transient failures and a Phase-0-only fallback.

The oracle is any callable evaluate_matrix(origins, destinations, mode)
returning a rows x cols list of minutes (None or inf for unreachable) and
raising OracleError on failure.
"""

import asyncio
import concurrent.futures
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .constants import MATRIX_MAX_RETRIES
from .errors import (
    AppError,
    ErrorCode,
    OracleError,
    dimension_mismatch_error,
    from_oracle_error,
    invalid_coordinates_error,
)
from .geometry import validate_coordinate_bounds
from .models import (
    Coordinate,
    HypothesisPoint,
    Location,
    Phase,
    PhaseMatrixResult,
    TravelMode,
    TravelTimeMatrix,
)

logger = logging.getLogger(__name__)

MatrixEvaluator = Callable[[List[Coordinate], List[Coordinate], TravelMode], List[List[Optional[float]]]]

# Errors after which a reduced Phase 0 call cannot succeed either
_NO_FALLBACK_CODES = frozenset({
    ErrorCode.INVALID_API_KEY,
    ErrorCode.MISSING_API_KEY,
    ErrorCode.API_RATE_LIMIT,
    ErrorCode.MATRIX_DIMENSION_MISMATCH,
})


@dataclass
class SingleMatrixResult:
    matrix: TravelTimeMatrix
    hypothesis_points: List[HypothesisPoint]
    api_call_count: int
    total_hypothesis_points: int
    unreachable: Dict[str, str] = field(default_factory=dict)


@dataclass
class BatchedMatrixResult:
    combined_matrix: TravelTimeMatrix
    phase_results: List[PhaseMatrixResult]
    hypothesis_points: List[HypothesisPoint]
    api_call_count: int
    total_hypothesis_points: int
    unreachable: Dict[str, str] = field(default_factory=dict)
    used_fallback: bool = False

    def phase_tags(self) -> List[Phase]:
        return [p.phase for p in self.hypothesis_points]


def unreachable_reason(value) -> Optional[str]:
    """Why a single cell cannot be used, or None when it is a valid reading."""
    if value is None:
        return 'null'
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 'invalid type'
    if math.isnan(value):
        return 'nan'
    if math.isinf(value):
        return 'infinity'
    if value < 0:
        return 'negative'
    return None


def find_unreachable_columns(matrix: TravelTimeMatrix) -> Dict[int, str]:
    """Column index -> reason; one bad origin row flags the whole column."""
    reasons: Dict[int, str] = {}
    for i, row in enumerate(matrix.travel_times):
        for j, value in enumerate(row):
            if j in reasons:
                continue
            reason = unreachable_reason(value)
            if reason:
                reasons[j] = f"origin {i}: {reason}"
    return reasons


def validate_matrix_dimensions(matrix: TravelTimeMatrix, expected_origins: int, expected_destinations: int) -> None:
    if len(matrix.travel_times) != expected_origins:
        raise dimension_mismatch_error(
            f"expected {expected_origins} origin rows, got {len(matrix.travel_times)}")
    for i, row in enumerate(matrix.travel_times):
        if not isinstance(row, (list, tuple)):
            raise dimension_mismatch_error(f"row {i} is not a list")
        if len(row) != expected_destinations:
            raise dimension_mismatch_error(
                f"row {i} has {len(row)} columns, expected {expected_destinations}")


def combine_local_grid_results(results: Sequence[PhaseMatrixResult]) -> PhaseMatrixResult:
    """Concatenate per-group Phase 2 results column-wise."""
    if not results:
        raise AppError(ErrorCode.MATRIX_CALCULATION_FAILED, 'No local grid results provided for combination')
    template = results[0].matrix
    for r in results[1:]:
        if [o.id for o in r.matrix.origins] != [o.id for o in template.origins]:
            raise AppError(ErrorCode.MATRIX_DIMENSION_MISMATCH,
                           'Cannot combine local grid results with different origin ordering')
    points = [p for r in results for p in r.hypothesis_points]
    rows = []
    for i in range(len(template.origins)):
        row: List[Optional[float]] = []
        for r in results:
            row.extend(r.matrix.travel_times[i])
        rows.append(row)
    combined = TravelTimeMatrix(origins=template.origins, destinations=points,
                                travel_times=rows, travel_mode=template.travel_mode)
    return PhaseMatrixResult(phase=Phase.LOCAL_REFINEMENT, matrix=combined,
                             hypothesis_points=points, start_index=0, end_index=len(points))


class MatrixOrchestrator:
    """Cost-accounted matrix evaluation for one search run"""

    def __init__(self, evaluate_matrix: MatrixEvaluator, max_retries: int = MATRIX_MAX_RETRIES,
                 executor: Optional[concurrent.futures.Executor] = None):
        if evaluate_matrix is None:
            raise ValueError("A matrix evaluator is required")
        self.evaluate_matrix = evaluate_matrix
        self.max_retries = max_retries
        self.executor = executor
        self._api_call_count = 0
        self._lock = threading.Lock()

    # --- Call accounting ---
    @property
    def api_call_count(self) -> int:
        with self._lock:
            return self._api_call_count

    def reset_api_call_count(self) -> None:
        with self._lock:
            self._api_call_count = 0

    def _record_call(self) -> int:
        with self._lock:
            self._api_call_count += 1
            return self._api_call_count

    # --- Oracle access ---
    def _call_oracle(self, origins: List[Coordinate], destinations: List[Coordinate],
                     mode: TravelMode, label: str) -> List[List[Optional[float]]]:
        """One oracle call plus up to max_retries retries for transient failures."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            count = self._record_call()
            try:
                result = self.evaluate_matrix(origins, destinations, mode)
                logger.info(f"{label}: matrix call succeeded ({len(origins)}x{len(destinations)}, API calls: {count})")
                return result
            except OracleError as e:
                if e.retryable and attempt < attempts:
                    logger.warning(f"{label}: transient {e.kind.value} error, retrying ({attempt}/{self.max_retries}): {e.message}")
                    continue
                logger.error(f"{label}: matrix call failed ({e.kind.value}): {e.message}")
                raise from_oracle_error(e, label)
            except AppError as e:
                if e.is_retryable and attempt < attempts:
                    logger.warning(f"{label}: transient {e.code.value} error, retrying: {e.message}")
                    continue
                raise
            except Exception as e:
                logger.error(f"{label}: unexpected matrix error: {e}", exc_info=True)
                raise AppError(ErrorCode.MATRIX_CALCULATION_FAILED, f"{label} failed: {e}")
        raise AppError(ErrorCode.MATRIX_CALCULATION_FAILED, f"{label} failed after {attempts} attempts")

    def _evaluate(self, origins: Sequence[Location], points: Sequence[HypothesisPoint],
                  mode: TravelMode, label: str) -> TravelTimeMatrix:
        raw = self._call_oracle([o.coordinate for o in origins], [p.coordinate for p in points], mode, label)
        if not isinstance(raw, (list, tuple)):
            raise dimension_mismatch_error(f"{label} returned {type(raw).__name__}, expected a list of rows")
        matrix = TravelTimeMatrix(origins=list(origins), destinations=list(points),
                                  travel_times=[list(r) if isinstance(r, (list, tuple)) else r for r in raw],
                                  travel_mode=mode)
        validate_matrix_dimensions(matrix, len(origins), len(points))
        return matrix

    @staticmethod
    def _validate_inputs(origins: Sequence[Location], points: Sequence[HypothesisPoint]) -> None:
        if not origins:
            raise AppError(ErrorCode.INSUFFICIENT_LOCATIONS, 'No origins provided for matrix evaluation')
        if not points:
            raise AppError(ErrorCode.NO_VALID_POINTS, 'No hypothesis points provided for matrix evaluation')
        for o in origins:
            if not validate_coordinate_bounds(o.coordinate):
                raise invalid_coordinates_error(o.coordinate.latitude, o.coordinate.longitude, f"origin {o.id}")
        for p in points:
            if not validate_coordinate_bounds(p.coordinate):
                raise invalid_coordinates_error(p.coordinate.latitude, p.coordinate.longitude, f"hypothesis point {p.id}")

    # --- Unreachability ---
    @staticmethod
    def _filter_unreachable(matrix: TravelTimeMatrix, anchor_count: int) -> Tuple[TravelTimeMatrix, Dict[str, str]]:
        """
        Drop unreachable columns. Fatal only when nothing is reachable; a dark
        sub-phase (all anchors or all grid cells) is logged and tolerated.
        """
        reasons = find_unreachable_columns(matrix)
        total = len(matrix.destinations)
        if not reasons:
            return matrix, {}

        if len(reasons) == total:
            raise AppError(ErrorCode.NO_REACHABLE_POINTS,
                           f"All {total} hypothesis points are unreachable from one or more origins",
                           details={'total_hypothesis_points': total})

        grid_count = total - anchor_count
        if anchor_count and all(j in reasons for j in range(anchor_count)):
            logger.warning(f"All {anchor_count} anchor points are unreachable; continuing with grid points only")
        if grid_count and all(j in reasons for j in range(anchor_count, total)):
            logger.warning(f"All {grid_count} grid points are unreachable; continuing with anchor points only")

        logger.warning(f"Filtering {len(reasons)}/{total} unreachable hypothesis points")
        for j, reason in sorted(reasons.items()):
            logger.debug(f"Unreachable {matrix.destinations[j].id}: {reason}")

        keep = [j for j in range(total) if j not in reasons]
        by_id = {matrix.destinations[j].id: reason for j, reason in reasons.items()}
        return matrix.select_columns(keep), by_id

    # --- Single combined evaluation ---
    def evaluate_all_hypothesis_points(self, origins: Sequence[Location], anchors: Sequence[HypothesisPoint],
                                       grid_points: Sequence[HypothesisPoint], mode: TravelMode) -> SingleMatrixResult:
        """Evaluate anchors and grid points with exactly one oracle call (plus one retry)."""
        self.reset_api_call_count()
        points = list(anchors) + list(grid_points)
        self._validate_inputs(origins, points)

        logger.info(f"Evaluating {len(points)} hypothesis points in a single matrix call "
                    f"(anchors: {len(anchors)}, grid: {len(grid_points)})")
        matrix = self._evaluate(origins, points, mode, 'Combined matrix evaluation')
        filtered, unreachable = self._filter_unreachable(matrix, len(anchors))

        return SingleMatrixResult(
            matrix=filtered,
            hypothesis_points=list(filtered.destinations),
            api_call_count=self.api_call_count,
            total_hypothesis_points=len(points),
            unreachable=unreachable,
        )

    # --- Batched Phase 0+1 ---
    def evaluate_coarse_grid_batched(self, origins: Sequence[Location], anchors: Sequence[HypothesisPoint],
                                     grid_points: Sequence[HypothesisPoint], mode: TravelMode) -> BatchedMatrixResult:
        """
        One combined call for Phase 0+1. If it fails and grid points were
        included, fall back to a Phase 0 only call.
        """
        self.reset_api_call_count()
        anchors = list(anchors)
        grid_points = list(grid_points)
        points = anchors + grid_points
        if not anchors:
            raise AppError(ErrorCode.NO_VALID_POINTS, "No Phase 0 hypothesis points provided for batched matrix evaluation")
        self._validate_inputs(origins, points)

        used_fallback = False
        try:
            matrix = self._evaluate(origins, points, mode, 'Phase 0+1 matrix evaluation')
        except AppError as e:
            if not grid_points or e.code in _NO_FALLBACK_CODES:
                raise
            logger.warning(f"Phase 0+1 evaluation failed ({e.code.value}); falling back to Phase 0 only")
            try:
                matrix = self._evaluate(origins, anchors, mode, 'Phase 0 fallback evaluation')
            except AppError as fallback_error:
                logger.error(f"Phase 0 fallback also failed: {fallback_error.message}")
                raise AppError(
                    fallback_error.code,
                    f"Coarse grid matrix evaluation failed and Phase 0 fallback failed: {fallback_error.message}",
                    user_message=fallback_error.user_message,
                    details={'primary_error': e.code.value, 'fallback_error': fallback_error.code.value},
                )
            used_fallback = True
            grid_points = []
            points = anchors

        filtered, unreachable = self._filter_unreachable(matrix, len(anchors))
        kept = list(filtered.destinations)
        anchor_ids = {p.id for p in anchors}
        anchor_kept = sum(1 for p in kept if p.id in anchor_ids)

        phase_results: List[PhaseMatrixResult] = []
        if anchor_kept:
            phase_results.append(PhaseMatrixResult(
                phase=Phase.ANCHOR, matrix=filtered.slice_columns(0, anchor_kept),
                hypothesis_points=kept[:anchor_kept], start_index=0, end_index=anchor_kept))
        if len(kept) > anchor_kept:
            phase_results.append(PhaseMatrixResult(
                phase=Phase.COARSE_GRID, matrix=filtered.slice_columns(anchor_kept, len(kept)),
                hypothesis_points=kept[anchor_kept:], start_index=anchor_kept, end_index=len(kept)))

        logger.info(f"Batched matrix evaluation complete: {len(phase_results)} phases, "
                    f"{len(kept)}/{len(points)} reachable points, API calls: {self.api_call_count}")
        return BatchedMatrixResult(
            combined_matrix=filtered,
            phase_results=phase_results,
            hypothesis_points=kept,
            api_call_count=self.api_call_count,
            total_hypothesis_points=len(points),
            unreachable=unreachable,
            used_fallback=used_fallback,
        )

    # --- Phase 2: one call per local grid ---
    def _evaluate_group(self, origins: Sequence[Location], group: Sequence[HypothesisPoint],
                        mode: TravelMode, group_index: int) -> TravelTimeMatrix:
        label = f"Local grid {group_index} evaluation"
        matrix = self._evaluate(origins, group, mode, label)
        reasons = find_unreachable_columns(matrix)
        if len(reasons) == len(group):
            raise AppError(ErrorCode.NO_REACHABLE_POINTS, f"{label}: every point is unreachable")
        if reasons:
            logger.warning(f"{label}: filtering {len(reasons)}/{len(group)} unreachable points")
            matrix = matrix.select_columns([j for j in range(len(group)) if j not in reasons])
        return matrix

    async def evaluate_local_grids_separately(self, origins: Sequence[Location],
                                              groups: Sequence[Sequence[HypothesisPoint]],
                                              mode: TravelMode) -> List[PhaseMatrixResult]:
        """
        Evaluate each local grid with its own oracle call, concurrently.
        Failed groups are skipped; fails only if every group fails.
        """
        if not origins:
            raise AppError(ErrorCode.INSUFFICIENT_LOCATIONS, 'No origins provided for local grid evaluation')
        if not groups:
            raise AppError(ErrorCode.NO_VALID_POINTS, 'No local grid groups provided for evaluation')

        indexed = []
        for idx, group in enumerate(groups):
            if not group:
                logger.warning(f"Skipping empty local grid {idx}")
                continue
            indexed.append((idx, list(group)))
        if not indexed:
            raise AppError(ErrorCode.MATRIX_CALCULATION_FAILED, 'All local grid groups are empty')

        logger.info(f"Evaluating {len(indexed)} local grids with separate matrix calls")
        loop = asyncio.get_event_loop()
        tasks = [
            loop.run_in_executor(self.executor, self._evaluate_group, origins, group, mode, idx)
            for idx, group in indexed
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: List[PhaseMatrixResult] = []
        offset = 0
        failures: List[str] = []
        for (idx, _group), outcome in zip(indexed, outcomes):
            if isinstance(outcome, AppError):
                logger.warning(f"Skipping local grid {idx} after evaluation failure: {outcome.message}")
                failures.append(outcome.code.value)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            count = len(outcome.destinations)
            results.append(PhaseMatrixResult(
                phase=Phase.LOCAL_REFINEMENT, matrix=outcome, hypothesis_points=list(outcome.destinations),
                start_index=offset, end_index=offset + count))
            offset += count

        if not results:
            raise AppError(ErrorCode.MATRIX_CALCULATION_FAILED,
                           'All local grid evaluations failed - no results available',
                           details={'failures': failures})

        logger.info(f"Local grid evaluation complete: {len(results)}/{len(indexed)} grids succeeded "
                    f"(API calls: {self.api_call_count})")
        return results
