import math

import pytest

from middlepoint.errors import AppError, ErrorCode
from middlepoint.local_refinement import (
    expected_local_refinement_count,
    generate_local_refinement,
    generate_local_refinement_groups,
    local_bounding_box,
    merge_nearby_candidates,
    best_candidates,
)
from middlepoint.models import CandidatePoint, Coordinate, Phase


def candidate(lat, lng, max_time, cid=None):
    return CandidatePoint(coordinate=Coordinate(lat, lng), max_travel_time=max_time, id=cid)


def test_select_top_candidates_is_stable():
    cands = [candidate(0, 0, 30, 'a'), candidate(1, 1, 10, 'b'), candidate(2, 2, 30, 'c'), candidate(3, 3, 5, 'd')]
    assert [c.id for c in best_candidates(cands, 3)] == ['d', 'b', 'a']


def test_merge_nearby_candidates_uses_midpoint_and_best_time():
    a = candidate(40.0, -74.0, 20, 'a')
    b = candidate(40.0005, -74.0, 15, 'b')
    far = candidate(41.0, -74.0, 25, 'far')
    merged = merge_nearby_candidates([a, b, far], threshold_m=100)
    assert len(merged) == 2
    assert merged[0].id == 'a'
    assert merged[0].max_travel_time == 15
    assert merged[0].coordinate.latitude == pytest.approx(40.00025)
    assert merged[1].id == 'far'


def test_local_box_corrects_longitude_for_latitude():
    box = local_bounding_box(Coordinate(60.0, 10.0), 2.0)
    lat_half = (box.north - box.south) / 2
    lng_half = (box.east - box.west) / 2
    assert lat_half == pytest.approx(2.0 / 111)
    assert lng_half == pytest.approx(2.0 / (111 * math.cos(math.radians(60.0))))


def test_groups_have_one_grid_per_survivor():
    cands = [candidate(40.0, -74.0, 20), candidate(40.5, -74.0, 25), candidate(41.0, -74.0, 30)]
    groups = generate_local_refinement_groups(cands, top_m=2, dedup_threshold_m=100,
                                              refinement_radius_km=1.0, fine_grid_resolution=3)
    assert len(groups) == 2
    assert [p.id for p in groups[1]] == [f"local_refinement_1_{g}" for g in range(9)]
    assert all(p.phase == Phase.LOCAL_REFINEMENT for g in groups for p in g)


def test_flat_generation_matches_groups():
    cands = [candidate(40.0, -74.0, 20), candidate(40.5, -74.0, 25)]
    assert len(generate_local_refinement(cands, top_m=2, dedup_threshold_m=100,
                                         refinement_radius_km=1.0, fine_grid_resolution=2)) == 8


def test_no_candidates_gives_no_groups():
    assert generate_local_refinement_groups([]) == []


def test_invalid_parameters_rejected():
    with pytest.raises(AppError) as exc:
        generate_local_refinement_groups([candidate(40, -74, 10)], top_m=0)
    assert exc.value.code == ErrorCode.INVALID_PARAMETER


def test_expected_count_assumes_some_merging():
    assert expected_local_refinement_count(3, 3) == 2 * 9
    assert expected_local_refinement_count(1, 4) == 16
