import pytest

from middlepoint.anchors import expected_anchor_count, generate_anchors
from middlepoint.errors import AppError, ErrorCode
from middlepoint.models import HypothesisPointType, Phase

from conftest import make_location


def test_expected_anchor_counts():
    assert [expected_anchor_count(n) for n in range(6)] == [0, 3, 5, 8, 12, 17]


@pytest.mark.parametrize('n', [1, 2, 3, 5])
def test_anchor_count_matches_formula(n):
    locations = [make_location(i, 40.0 + i * 0.01, -74.0 + i * 0.02) for i in range(n)]
    anchors = generate_anchors(locations)
    assert len(anchors) == expected_anchor_count(n)
    assert all(a.phase == Phase.ANCHOR for a in anchors)


def test_anchor_ids_and_metadata(three_locations):
    anchors = generate_anchors(three_locations)
    ids = [a.id for a in anchors]
    assert ids[:2] == ['anchor_geographic_centroid', 'anchor_median_coordinate']
    assert ids[2:5] == ['anchor_participant_0', 'anchor_participant_1', 'anchor_participant_2']
    assert ids[5:] == ['anchor_pairwise_0_1', 'anchor_pairwise_0_2', 'anchor_pairwise_1_2']

    participant = anchors[3]
    assert participant.type == HypothesisPointType.PARTICIPANT_LOCATION
    assert participant.coordinate == three_locations[1].coordinate
    assert participant.metadata.participant_id == 'location_1'

    pair = anchors[-1]
    assert pair.type == HypothesisPointType.PAIRWISE_MIDPOINT
    assert pair.metadata.pair_ids == ('location_1', 'location_2')


def test_no_locations_is_fatal():
    with pytest.raises(AppError) as exc:
        generate_anchors([])
    assert exc.value.code == ErrorCode.ANCHOR_GENERATION_FAILED


def test_invalid_participant_is_fatal():
    locations = [make_location(0, 40.0, -74.0), make_location(1, 95.0, -74.0)]
    with pytest.raises(AppError) as exc:
        generate_anchors(locations)
    assert exc.value.code in (ErrorCode.ANCHOR_GENERATION_FAILED, ErrorCode.INVALID_COORDINATES)
