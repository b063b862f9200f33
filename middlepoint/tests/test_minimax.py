import math

import pytest

from middlepoint.errors import AppError, ErrorCode
from middlepoint.matrix_orchestrator import BatchedMatrixResult
from middlepoint.minimax import (
    TIE_BREAK_AVERAGE,
    TIE_BREAK_CENTROID,
    TIE_BREAK_FIRST_SEEN,
    TIE_BREAK_NONE,
    TIE_BREAK_PHASE,
    MinimaxResult,
    find_minimax_optimal,
    find_multi_phase_minimax_optimal,
    merge_matrix_results,
    validate_epsilon_improvement,
)
from middlepoint.models import Phase, PhaseMatrixResult, TravelMode, TravelTimeMatrix

from conftest import make_location, make_point

MODE = TravelMode.DRIVING_CAR


def origins():
    return [make_location(0, 0.0, 0.0), make_location(1, 0.0, 2.0)]


def matrix(rows, points):
    return TravelTimeMatrix(origins=origins(), destinations=points, travel_times=rows, travel_mode=MODE)


def test_picks_smallest_worst_case():
    points = [make_point('a', 0, 0.5), make_point('b', 0, 1.5)]
    result = find_minimax_optimal(matrix([[10, 30], [15, 5]], points))
    assert result.optimal_index == 0
    assert result.max_travel_time == 15
    assert result.average_travel_time == 12.5
    assert result.tie_break_rule == TIE_BREAK_NONE
    assert result.optimal_point.id == 'a'


def test_column_unreachable_from_one_origin_is_excluded():
    points = [make_point('dark', 0, 1), make_point('lit', 0, 1.5)]
    result = find_minimax_optimal(matrix([[1, 40], [math.inf, 40]], points))
    assert result.optimal_index == 1


def test_all_unreachable():
    points = [make_point('a', 0, 1)]
    with pytest.raises(AppError) as exc:
        find_minimax_optimal(matrix([[None], [5]], points))
    assert exc.value.code == ErrorCode.NO_REACHABLE_POINTS


def test_tie_broken_by_phase():
    points = [make_point('grid', 0, 1, phase=Phase.COARSE_GRID), make_point('anchor', 0, 1.2, phase=Phase.ANCHOR)]
    result = find_minimax_optimal(matrix([[10, 10], [10, 10]], points), [p.phase for p in points])
    assert result.optimal_index == 1
    assert result.tie_break_rule == TIE_BREAK_PHASE
    assert result.optimal_phase == Phase.ANCHOR


def test_tie_broken_by_average():
    points = [make_point('a', 0, 1), make_point('b', 0, 1.5)]
    result = find_minimax_optimal(matrix([[20, 20], [10, 20]], points))
    assert result.optimal_index == 0
    assert result.tie_break_rule == TIE_BREAK_AVERAGE


def test_equal_max_and_average_resolve_to_centroid():
    # centroid of the origins is (0, 1)
    points = [make_point('off', 0, 1.8), make_point('near', 0, 1.1)]
    result = find_minimax_optimal(matrix([[10, 10], [10, 10]], points))
    assert result.optimal_index == 1
    assert result.tie_break_rule == TIE_BREAK_CENTROID


def test_fully_equal_columns_keep_first_seen():
    points = [make_point('first', 0, 1), make_point('second', 0, 1)]
    result = find_minimax_optimal(matrix([[10, 10], [10, 10]], points))
    assert result.optimal_index == 0
    assert result.tie_break_rule == TIE_BREAK_FIRST_SEEN


def test_invalid_matrices():
    with pytest.raises(AppError) as exc:
        find_minimax_optimal(TravelTimeMatrix([], [make_point('a', 0, 0)], [], MODE))
    assert exc.value.code == ErrorCode.INSUFFICIENT_LOCATIONS
    with pytest.raises(AppError) as exc:
        find_minimax_optimal(matrix([[], []], []))
    assert exc.value.code == ErrorCode.NO_VALID_POINTS
    with pytest.raises(AppError) as exc:
        find_minimax_optimal(matrix([[1, 2]], [make_point('a', 0, 0), make_point('b', 0, 1)]))
    assert exc.value.code == ErrorCode.MATRIX_DIMENSION_MISMATCH


def test_merge_requires_same_origins():
    base = matrix([[1], [2]], [make_point('a', 0, 0)])
    other = TravelTimeMatrix([make_location(5, 1, 1)], [make_point('b', 0, 1)], [[3]], MODE)
    with pytest.raises(AppError) as exc:
        merge_matrix_results(base, other)
    assert exc.value.code == ErrorCode.MATRIX_DIMENSION_MISMATCH
    assert merge_matrix_results(base, None) is base


def test_multi_phase_prefers_refined_point_when_better():
    anchor = make_point('anchor', 0, 1, phase=Phase.ANCHOR)
    base = matrix([[20], [20]], [anchor])
    batched = BatchedMatrixResult(
        combined_matrix=base,
        phase_results=[PhaseMatrixResult(Phase.ANCHOR, base, [anchor], 0, 1)],
        hypothesis_points=[anchor],
        api_call_count=1,
        total_hypothesis_points=1,
    )
    local = make_point('local_refinement_0_0', 0, 1.01, phase=Phase.LOCAL_REFINEMENT)
    phase2_matrix = matrix([[12], [14]], [local])
    phase2 = PhaseMatrixResult(Phase.LOCAL_REFINEMENT, phase2_matrix, [local], 0, 1)

    baseline = find_multi_phase_minimax_optimal(batched)
    improved = find_multi_phase_minimax_optimal(batched, phase2)
    assert baseline.optimal_point.id == 'anchor'
    assert improved.optimal_point.id == 'local_refinement_0_0'
    assert improved.optimal_phase == Phase.LOCAL_REFINEMENT
    assert improved.optimal_index == 1


def test_epsilon_improvement():
    baseline = MinimaxResult(optimal_index=0, max_travel_time=20, average_travel_time=18)
    improved = MinimaxResult(optimal_index=3, max_travel_time=15, average_travel_time=14)
    analysis = validate_epsilon_improvement(baseline, improved, epsilon_minutes=2)
    assert analysis == {
        'has_improvement': True,
        'improvement_minutes': 5,
        'improvement_percentage': 25.0,
        'is_significant': True,
    }
    assert not validate_epsilon_improvement(baseline, baseline)['has_improvement']
    with pytest.raises(AppError):
        validate_epsilon_improvement(baseline, improved, epsilon_minutes=-1)
