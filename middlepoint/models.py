"""Data model shared by the generators, scorer, orchestrator and optimizer."""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import dimension_mismatch_error


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def to_dict(self) -> Dict:
        return {'latitude': self.latitude, 'longitude': self.longitude}

    def as_latlng(self) -> str:
        """Format as the 'lat,lng' string the Google APIs accept."""
        return f"{self.latitude},{self.longitude}"


@dataclass(frozen=True)
class Location:
    id: str
    name: str
    coordinate: Coordinate

    def to_dict(self) -> Dict:
        return {'id': self.id, 'name': self.name, 'coordinate': self.coordinate.to_dict()}


class HypothesisPointType(str, Enum):
    GEOGRAPHIC_CENTROID = 'GEOGRAPHIC_CENTROID'
    MEDIAN_COORDINATE = 'MEDIAN_COORDINATE'
    PARTICIPANT_LOCATION = 'PARTICIPANT_LOCATION'
    PAIRWISE_MIDPOINT = 'PAIRWISE_MIDPOINT'
    COARSE_GRID_CELL = 'COARSE_GRID_CELL'
    LOCAL_REFINEMENT_CELL = 'LOCAL_REFINEMENT_CELL'


class Phase(str, Enum):
    ANCHOR = 'ANCHOR'
    COARSE_GRID = 'COARSE_GRID'
    LOCAL_REFINEMENT = 'LOCAL_REFINEMENT'
    FINAL_OUTPUT = 'FINAL_OUTPUT'

    @property
    def rank(self) -> int:
        """Generation order; lower ranks win minimax ties."""
        return _PHASE_RANKS[self]


_PHASE_RANKS = {
    Phase.ANCHOR: 0,
    Phase.COARSE_GRID: 1,
    Phase.LOCAL_REFINEMENT: 2,
    Phase.FINAL_OUTPUT: 3,
}


class TravelMode(str, Enum):
    DRIVING_CAR = 'DRIVING_CAR'
    CYCLING_REGULAR = 'CYCLING_REGULAR'
    FOOT_WALKING = 'FOOT_WALKING'

    @property
    def google_mode(self) -> str:
        return _GOOGLE_MODES[self]


_GOOGLE_MODES = {
    TravelMode.DRIVING_CAR: 'driving',
    TravelMode.CYCLING_REGULAR: 'bicycling',
    TravelMode.FOOT_WALKING: 'walking',
}


class OptimizationGoal(str, Enum):
    MINIMAX = 'MINIMAX'
    MINIMIZE_VARIANCE = 'MINIMIZE_VARIANCE'
    MINIMIZE_TOTAL = 'MINIMIZE_TOTAL'


@dataclass(frozen=True)
class PointMetadata:
    participant_ids: Tuple[str, ...] = ()
    pair_ids: Tuple[str, ...] = ()
    merged_from: Tuple[str, ...] = ()

    @property
    def participant_id(self):
        """Single id for an unmerged participant, a list once merged."""
        if not self.participant_ids:
            return None
        if len(self.participant_ids) == 1:
            return self.participant_ids[0]
        return list(self.participant_ids)

    def to_dict(self) -> Dict:
        out: Dict = {}
        if self.participant_ids:
            out['participant_id'] = self.participant_id
        if self.pair_ids:
            out['pair_ids'] = list(self.pair_ids)
        if self.merged_from:
            out['merged_from'] = list(self.merged_from)
        return out


@dataclass(frozen=True)
class TravelTimeMetrics:
    max_travel_time: float
    average_travel_time: float
    total_travel_time: float
    variance: Optional[float] = None

    def to_dict(self) -> Dict:
        out = {
            'max_travel_time': self.max_travel_time,
            'average_travel_time': self.average_travel_time,
            'total_travel_time': self.total_travel_time,
        }
        if self.variance is not None:
            out['variance'] = self.variance
        return out


@dataclass
class HypothesisPoint:
    id: str
    coordinate: Coordinate
    type: HypothesisPointType
    phase: Phase
    metadata: Optional[PointMetadata] = None
    score: Optional[float] = None
    travel_time_metrics: Optional[TravelTimeMetrics] = None

    def with_phase(self, phase: Phase) -> 'HypothesisPoint':
        return replace(self, phase=phase)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'coordinate': self.coordinate.to_dict(),
            'type': self.type.value,
            'phase': self.phase.value,
            'metadata': self.metadata.to_dict() if self.metadata else None,
            'score': self.score,
            'travel_time_metrics': self.travel_time_metrics.to_dict() if self.travel_time_metrics else None,
        }


@dataclass
class TravelTimeMatrix:
    """Rows are origins, columns are destinations, cells are minutes."""
    origins: List[Location]
    destinations: List[HypothesisPoint]
    travel_times: List[List[Optional[float]]]
    travel_mode: TravelMode

    def validate_dimensions(self) -> None:
        if len(self.travel_times) != len(self.origins):
            raise dimension_mismatch_error(
                f"expected {len(self.origins)} origin rows, got {len(self.travel_times)}",
                expected_rows=len(self.origins), actual_rows=len(self.travel_times),
            )
        for i, row in enumerate(self.travel_times):
            if not isinstance(row, (list, tuple)) or len(row) != len(self.destinations):
                got = len(row) if isinstance(row, (list, tuple)) else 0
                raise dimension_mismatch_error(
                    f"row {i} has {got} columns, expected {len(self.destinations)}",
                    row=i, expected_columns=len(self.destinations), actual_columns=got,
                )

    def column(self, index: int) -> List[Optional[float]]:
        return [row[index] for row in self.travel_times]

    def slice_columns(self, start: int, end: int) -> 'TravelTimeMatrix':
        return TravelTimeMatrix(
            origins=self.origins,
            destinations=self.destinations[start:end],
            travel_times=[list(row[start:end]) for row in self.travel_times],
            travel_mode=self.travel_mode,
        )

    def select_columns(self, indices: Sequence[int]) -> 'TravelTimeMatrix':
        return TravelTimeMatrix(
            origins=self.origins,
            destinations=[self.destinations[j] for j in indices],
            travel_times=[[row[j] for j in indices] for row in self.travel_times],
            travel_mode=self.travel_mode,
        )


@dataclass
class PhaseMatrixResult:
    phase: Phase
    matrix: TravelTimeMatrix
    hypothesis_points: List[HypothesisPoint]
    start_index: int
    end_index: int


@dataclass
class CandidatePoint:
    coordinate: Coordinate
    max_travel_time: float
    id: Optional[str] = None


def is_valid_travel_time(value) -> bool:
    """A reading is usable when it is a finite, non-negative number."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0
