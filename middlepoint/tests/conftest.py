"""Shared fixtures: participant locations and a scripted travel-time oracle."""

import math
import threading
from typing import Callable, List, Optional

import pytest

from middlepoint.geometry import haversine_distance
from middlepoint.models import Coordinate, HypothesisPoint, HypothesisPointType, Location, Phase


def make_location(index: int, latitude: float, longitude: float) -> Location:
    return Location(id=f"location_{index}", name=f"Location {index + 1}",
                    coordinate=Coordinate(latitude, longitude))


def make_point(point_id: str, latitude: float, longitude: float, phase: Phase = Phase.ANCHOR,
               point_type: HypothesisPointType = HypothesisPointType.GEOGRAPHIC_CENTROID,
               score: Optional[float] = None) -> HypothesisPoint:
    return HypothesisPoint(id=point_id, coordinate=Coordinate(latitude, longitude),
                           type=point_type, phase=phase, score=score)


class FakeOracle:
    """
    Distance-proportional travel times (1 minute per km, rounded), with
    optional scripted failures and unreachable destinations.
    """

    def __init__(self, errors: Optional[List[Exception]] = None,
                 unreachable: Optional[Callable[[Coordinate], bool]] = None,
                 minutes_per_km: float = 1.0):
        self.errors = list(errors or [])
        self.unreachable = unreachable
        self.minutes_per_km = minutes_per_km
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, origins, destinations, mode):
        with self._lock:
            self.calls.append((list(origins), list(destinations), mode))
            if self.errors:
                raise self.errors.pop(0)
        rows = []
        for o in origins:
            row = []
            for d in destinations:
                if self.unreachable is not None and self.unreachable(d):
                    row.append(math.inf)
                else:
                    row.append(round(haversine_distance(o, d) / 1000.0 * self.minutes_per_km, 3))
            rows.append(row)
        return rows


@pytest.fixture
def two_locations() -> List[Location]:
    return [make_location(0, 40.7128, -74.0060), make_location(1, 40.6782, -73.9442)]


@pytest.fixture
def three_locations() -> List[Location]:
    return [
        make_location(0, 40.7128, -74.0060),
        make_location(1, 40.6782, -73.9442),
        make_location(2, 40.7831, -73.9712),
    ]


@pytest.fixture
def fake_oracle() -> FakeOracle:
    return FakeOracle()
