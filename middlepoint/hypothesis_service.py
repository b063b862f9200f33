"""
End-to-end hypothesis search.

Phase 0 anchors and the Phase 1 coarse grid are evaluated with one batched
matrix call, scored, and reduced to a baseline minimax optimum. When local
refinement is on, fine grids around the best candidates are evaluated with
one call each and the optimum is recomputed across all phases. The final
candidates are deduplicated and the top N returned as points of interest.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from geopy.distance import geodesic

from .anchors import generate_anchors
from .coarse_grid import generate_coarse_grid
from .constants import (
    DEFAULT_PADDING_KM,
    HIGH_API_CALL_WARNING,
    MAX_DEDUPLICATION_THRESHOLD_M,
    MAX_LOCATIONS,
    MAX_TOP_M,
    MAX_TOP_N,
    MIN_LOCATIONS,
    MIN_REFINEMENT_THRESHOLD_M,
    PIPELINE_DEDUPLICATION_THRESHOLD_M,
    PIPELINE_FINE_GRID_RESOLUTION,
    PIPELINE_GRID_RESOLUTION,
    PIPELINE_REFINEMENT_RADIUS_KM,
    PIPELINE_TOP_M,
    PIPELINE_TOP_N,
)
from .deduplication import deduplicate, select_top_candidates
from .errors import (
    AppError,
    ErrorCode,
    insufficient_locations_error,
    invalid_coordinates_error,
    too_many_locations_error,
    travel_mode_error,
    validation_error,
)
from .geometry import validate_coordinate_bounds
from .local_refinement import generate_local_refinement_groups
from .matrix_orchestrator import BatchedMatrixResult, MatrixEvaluator, MatrixOrchestrator, combine_local_grid_results
from .minimax import MinimaxResult, find_multi_phase_minimax_optimal, validate_epsilon_improvement
from .models import (
    CandidatePoint,
    HypothesisPoint,
    Location,
    OptimizationGoal,
    Phase,
    PhaseMatrixResult,
    TravelMode,
)
from .optimization import OptimizationConfig, OptimizationMode
from .scoring import score_matrix

logger = logging.getLogger(__name__)


@dataclass
class HypothesisRequest:
    locations: List[Location]
    travel_mode: TravelMode
    optimization_goal: OptimizationGoal = OptimizationGoal.MINIMAX
    enable_local_refinement: bool = True
    top_m: int = PIPELINE_TOP_M
    top_n: int = PIPELINE_TOP_N
    deduplication_threshold_m: float = PIPELINE_DEDUPLICATION_THRESHOLD_M
    optimization_config: Optional[OptimizationConfig] = None


@dataclass
class HypothesisResult:
    anchor_points: List[HypothesisPoint]
    coarse_grid_points: List[HypothesisPoint]
    local_refinement_points: List[HypothesisPoint]
    final_points: List[HypothesisPoint]
    points_of_interest: List[HypothesisPoint]
    optimal: MinimaxResult
    baseline: MinimaxResult
    matrix_api_calls: int
    total_hypothesis_points: int
    epsilon_analysis: Optional[Dict] = None
    unreachable: Dict[str, str] = field(default_factory=dict)
    used_fallback: bool = False
    optimization_mode: Optional[OptimizationMode] = None
    optimal_point_distances_km: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'anchor_points': [p.to_dict() for p in self.anchor_points],
            'coarse_grid_points': [p.to_dict() for p in self.coarse_grid_points],
            'local_refinement_points': [p.to_dict() for p in self.local_refinement_points],
            'final_points': [p.to_dict() for p in self.final_points],
            'points_of_interest': [p.to_dict() for p in self.points_of_interest],
            'optimal_point': self.optimal.optimal_point.to_dict() if self.optimal.optimal_point else None,
            'optimal_phase': self.optimal.optimal_phase.value if self.optimal.optimal_phase else None,
            'optimal_max_travel_time': self.optimal.max_travel_time,
            'optimal_average_travel_time': self.optimal.average_travel_time,
            'tie_break_rule': self.optimal.tie_break_rule,
            'optimal_point_distances_km': self.optimal_point_distances_km,
            'baseline': self.baseline.to_dict(),
            'epsilon_analysis': self.epsilon_analysis,
            'matrix_api_calls': self.matrix_api_calls,
            'total_hypothesis_points': self.total_hypothesis_points,
            'unreachable_points': self.unreachable,
            'used_fallback': self.used_fallback,
            'optimization_mode': self.optimization_mode.value if self.optimization_mode else None,
        }


@dataclass(frozen=True)
class SearchPlan:
    """Phase switches and grid sizes for one run."""
    grid_enabled: bool
    padding_km: float
    grid_resolution: int
    refinement_enabled: bool
    top_k: int
    refinement_radius_km: float
    fine_grid_resolution: int
    mode: Optional[OptimizationMode] = None


def build_search_plan(request: HypothesisRequest) -> SearchPlan:
    """An explicit optimization config decides every phase; otherwise the request flags do."""
    config = request.optimization_config
    if config is None:
        return SearchPlan(
            grid_enabled=True,
            padding_km=DEFAULT_PADDING_KM,
            grid_resolution=PIPELINE_GRID_RESOLUTION,
            refinement_enabled=request.enable_local_refinement,
            top_k=request.top_m,
            refinement_radius_km=PIPELINE_REFINEMENT_RADIUS_KM,
            fine_grid_resolution=PIPELINE_FINE_GRID_RESOLUTION,
        )
    return SearchPlan(
        grid_enabled=config.mode != OptimizationMode.BASELINE and config.coarse_grid.enabled,
        padding_km=config.coarse_grid.padding_km,
        grid_resolution=config.coarse_grid.grid_resolution,
        refinement_enabled=config.mode == OptimizationMode.FULL_REFINEMENT and config.local_refinement.enabled,
        top_k=config.local_refinement.top_k,
        refinement_radius_km=config.local_refinement.refinement_radius_km,
        fine_grid_resolution=config.local_refinement.fine_grid_resolution,
        mode=config.mode,
    )


def validate_request(request: HypothesisRequest) -> None:
    """Reject a request before any oracle call is made."""
    count = len(request.locations) if request.locations else 0
    if count < MIN_LOCATIONS:
        raise insufficient_locations_error(count)
    if count > MAX_LOCATIONS:
        raise too_many_locations_error(count, MAX_LOCATIONS)
    try:
        TravelMode(request.travel_mode)
    except ValueError:
        raise travel_mode_error(request.travel_mode)
    try:
        OptimizationGoal(request.optimization_goal)
    except ValueError:
        raise validation_error(f"Unknown optimization goal: {request.optimization_goal}",
                               optimization_goal=str(request.optimization_goal))

    for index, loc in enumerate(request.locations):
        if not validate_coordinate_bounds(loc.coordinate):
            raise invalid_coordinates_error(loc.coordinate.latitude, loc.coordinate.longitude,
                                            f"location {index + 1}")

    if isinstance(request.top_m, bool) or not isinstance(request.top_m, int) or not (1 <= request.top_m <= MAX_TOP_M):
        raise validation_error(f"top_m must be an integer between 1 and {MAX_TOP_M}, got {request.top_m}",
                               top_m=request.top_m)
    if isinstance(request.top_n, bool) or not isinstance(request.top_n, int) or not (1 <= request.top_n <= MAX_TOP_N):
        raise validation_error(f"top_n must be an integer between 1 and {MAX_TOP_N}, got {request.top_n}",
                               top_n=request.top_n)
    threshold = request.deduplication_threshold_m
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) \
            or not (0 <= threshold <= MAX_DEDUPLICATION_THRESHOLD_M):
        raise validation_error(
            f"deduplication_threshold must be between 0 and {MAX_DEDUPLICATION_THRESHOLD_M:g} meters, got {threshold}",
            deduplication_threshold=threshold)


def straight_line_distances_km(point: HypothesisPoint, locations: List[Location]) -> Dict[str, float]:
    """Geodesic distance from each participant to a point, in km."""
    target = (point.coordinate.latitude, point.coordinate.longitude)
    return {
        loc.id: round(geodesic((loc.coordinate.latitude, loc.coordinate.longitude), target).km, 3)
        for loc in locations
    }


def select_points_of_interest(points: List[HypothesisPoint], top_n: int, threshold_m: float) -> List[HypothesisPoint]:
    """Deduplicate best-first, keep top_n and mark them as final output."""
    if not points:
        logger.warning("No points provided for points of interest selection")
        return []
    ordered = sorted(points, key=lambda p: p.score if p.score is not None else 0.0)
    survivors = deduplicate(ordered, threshold_m)[:top_n]
    final = [p.with_phase(Phase.FINAL_OUTPUT) for p in survivors]
    logger.info(f"Selected {len(final)} points of interest from {len(points)} total points after deduplication")
    return final


class HypothesisService:
    """Runs the multi-phase search against a travel-time matrix oracle"""

    def __init__(self, evaluate_matrix: MatrixEvaluator, default_config: Optional[OptimizationConfig] = None):
        if evaluate_matrix is None:
            raise ValueError("A matrix evaluator is required")
        self.evaluate_matrix = evaluate_matrix
        self.default_config = default_config

    def generate_hypothesis_points(self, request: HypothesisRequest) -> HypothesisResult:
        """Synchronous entry point; runs the async pipeline on a private event loop."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(self.generate_hypothesis_points_async(request))
        finally:
            loop.run_until_complete(loop.shutdown_default_executor())
            asyncio.set_event_loop(None)
            loop.close()

    async def generate_hypothesis_points_async(self, request: HypothesisRequest) -> HypothesisResult:
        validate_request(request)
        if request.optimization_config is None and self.default_config is not None:
            request = replace(request, optimization_config=self.default_config)
        plan = build_search_plan(request)
        locations = list(request.locations)
        mode = TravelMode(request.travel_mode)
        goal = OptimizationGoal(request.optimization_goal)
        orchestrator = MatrixOrchestrator(self.evaluate_matrix)

        logger.info(f"Starting hypothesis generation for {len(locations)} locations "
                    f"(mode: {mode.value}, goal: {goal.value}, refinement: {plan.refinement_enabled})")

        # Phase 0
        anchors = generate_anchors(locations)
        logger.info(f"Phase 0: generated {len(anchors)} anchor points")

        # Phase 1
        grid: List[HypothesisPoint] = []
        if plan.grid_enabled:
            grid = generate_coarse_grid(locations, plan.grid_resolution, plan.padding_km)
            logger.info(f"Phase 1: generated {len(grid)} coarse grid points")

        loop = asyncio.get_event_loop()
        batched: BatchedMatrixResult = await loop.run_in_executor(
            None, orchestrator.evaluate_coarse_grid_batched, locations, anchors, grid, mode)
        if batched.used_fallback:
            logger.warning(f"Continuing without {len(grid)} coarse grid points after Phase 0 fallback")

        scored = score_matrix(batched.combined_matrix, goal)
        baseline = find_multi_phase_minimax_optimal(batched)
        optimal = baseline
        epsilon_analysis = None
        final_points = list(scored)

        # Phase 2
        refinement_points: List[HypothesisPoint] = []
        if plan.refinement_enabled:
            phase2 = await self._refine(orchestrator, locations, scored, request, plan, mode)
            if phase2 is not None:
                refinement_points, phase2_result = phase2
                final_points = final_points + score_matrix(phase2_result.matrix, goal)
                optimal = find_multi_phase_minimax_optimal(batched, phase2_result)
                epsilon_analysis = validate_epsilon_improvement(baseline, optimal)

        points_of_interest = select_points_of_interest(final_points, request.top_n, request.deduplication_threshold_m)
        if not points_of_interest:
            raise AppError(ErrorCode.NO_VALID_POINTS,
                           'No valid points of interest generated: all hypothesis points may be unreachable')

        api_calls = orchestrator.api_call_count
        if api_calls > HIGH_API_CALL_WARNING:
            logger.warning(f"High Matrix API usage: {api_calls} calls made during hypothesis generation")
        logger.info(f"Hypothesis generation complete: {len(points_of_interest)} points of interest, "
                    f"{api_calls} Matrix API calls, optimum from {optimal.optimal_phase.value}")

        return HypothesisResult(
            anchor_points=anchors,
            coarse_grid_points=grid,
            local_refinement_points=refinement_points,
            final_points=final_points,
            points_of_interest=points_of_interest,
            optimal=optimal,
            baseline=baseline,
            matrix_api_calls=api_calls,
            total_hypothesis_points=batched.total_hypothesis_points + len(refinement_points),
            epsilon_analysis=epsilon_analysis,
            unreachable=dict(batched.unreachable),
            used_fallback=batched.used_fallback,
            optimization_mode=plan.mode,
            optimal_point_distances_km=straight_line_distances_km(optimal.optimal_point, locations),
        )

    async def _refine(self, orchestrator: MatrixOrchestrator, locations: List[Location],
                      scored: List[HypothesisPoint], request: HypothesisRequest, plan: SearchPlan,
                      mode: TravelMode):
        """
        Build and evaluate the local grids. Returns (points, combined result),
        or None when refinement produced nothing usable.
        """
        top = select_top_candidates(scored, plan.top_k, request.deduplication_threshold_m)
        if not top:
            logger.info("No candidates selected for local refinement after deduplication")
            return None

        candidates = [
            CandidatePoint(
                coordinate=p.coordinate,
                max_travel_time=p.travel_time_metrics.max_travel_time if p.travel_time_metrics else 0.0,
                id=p.id,
            )
            for p in top
        ]
        groups = generate_local_refinement_groups(
            candidates,
            top_m=len(candidates),
            dedup_threshold_m=max(request.deduplication_threshold_m, MIN_REFINEMENT_THRESHOLD_M),
            refinement_radius_km=plan.refinement_radius_km,
            fine_grid_resolution=plan.fine_grid_resolution,
        )
        if not groups:
            logger.warning("Local refinement produced no grids; keeping Phase 0+1 results")
            return None
        points = [p for group in groups for p in group]
        logger.info(f"Phase 2: generated {len(points)} local refinement points in {len(groups)} grids")

        try:
            results: List[PhaseMatrixResult] = await orchestrator.evaluate_local_grids_separately(locations, groups, mode)
        except AppError as e:
            if e.code != ErrorCode.MATRIX_CALCULATION_FAILED:
                raise
            logger.warning(f"Local refinement evaluation failed; keeping Phase 0+1 results: {e.message}")
            return None

        combined = combine_local_grid_results(results)
        logger.info(f"Phase 2 complete: {len(results)} local grids evaluated, "
                    f"{len(combined.hypothesis_points)} reachable points")
        return points, combined
