"""
Geometry primitives used by every candidate generator.

All functions take and return Coordinate values in decimal degrees. Every
derived coordinate is checked with validate_coordinate_bounds; a computation
that leaves the legal range raises instead of clamping.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence

from .constants import (
    EARTH_RADIUS_M,
    KM_PER_DEGREE,
    MAX_GRID_SIZE,
    MIN_BOX_SPAN_DEG,
    MIN_GRID_SIZE,
)
from .errors import AppError, ErrorCode
from .models import Coordinate, Location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    @property
    def lng_span(self) -> float:
        return self.east - self.west

    def contains(self, c: Coordinate) -> bool:
        return self.south <= c.latitude <= self.north and self.west <= c.longitude <= self.east


def validate_coordinate_bounds(c: Coordinate) -> bool:
    if c is None:
        return False
    lat, lng = c.latitude, c.longitude
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def _require_valid(c: Coordinate, what: str, code: ErrorCode = ErrorCode.INVALID_COORDINATES) -> Coordinate:
    if not validate_coordinate_bounds(c):
        raise AppError(code, f"{what} produced invalid coordinates: {c}",
                       details={'latitude': getattr(c, 'latitude', None), 'longitude': getattr(c, 'longitude', None)})
    return c


def _require_locations(locations: Sequence[Location], what: str, minimum: int = 1) -> None:
    if not locations or len(locations) < minimum:
        if minimum == 1:
            message = f"Cannot calculate {what} of empty locations array"
        else:
            message = f"At least {minimum} locations required for {what}"
        raise AppError(ErrorCode.ANCHOR_GENERATION_FAILED, message)
    for i, loc in enumerate(locations):
        if not validate_coordinate_bounds(loc.coordinate):
            raise AppError(ErrorCode.INVALID_COORDINATES,
                           f"Invalid coordinates for location {i}: {loc.coordinate}")


# --- Anchor geometry ---

def geographic_centroid(locations: Sequence[Location]) -> Coordinate:
    """Arithmetic mean of all participant coordinates."""
    _require_locations(locations, 'centroid')
    lat = sum(loc.coordinate.latitude for loc in locations) / len(locations)
    lng = sum(loc.coordinate.longitude for loc in locations) / len(locations)
    return _require_valid(Coordinate(lat, lng), 'Geographic centroid', ErrorCode.ANCHOR_GENERATION_FAILED)


def _median(values: List[float]) -> float:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def median_coordinate(locations: Sequence[Location]) -> Coordinate:
    """Independent per-axis median (not a joint median)."""
    _require_locations(locations, 'median')
    lat = _median([loc.coordinate.latitude for loc in locations])
    lng = _median([loc.coordinate.longitude for loc in locations])
    return _require_valid(Coordinate(lat, lng), 'Median coordinate', ErrorCode.ANCHOR_GENERATION_FAILED)


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    return Coordinate((a.latitude + b.latitude) / 2, (a.longitude + b.longitude) / 2)


def pairwise_midpoints(locations: Sequence[Location]) -> List[Coordinate]:
    """Midpoints for every pair i<j, in (i, j) loop order."""
    _require_locations(locations, 'pairwise midpoints', minimum=2)
    out: List[Coordinate] = []
    n = len(locations)
    for i in range(n):
        for j in range(i + 1, n):
            mid = midpoint(locations[i].coordinate, locations[j].coordinate)
            out.append(_require_valid(mid, f"Pairwise midpoint {i}-{j}", ErrorCode.ANCHOR_GENERATION_FAILED))
    return out


# --- Boxes and grids ---

def bounding_box(locations: Sequence[Location], padding_km: float = 0.0) -> BoundingBox:
    """
    Tight box around the locations, padded by padding_km on every side.
    Padding is converted with a flat km-per-degree factor on both axes and
    the result is clamped to legal coordinate ranges.
    """
    if not locations:
        raise AppError(ErrorCode.GRID_GENERATION_FAILED, 'Cannot calculate bounding box of empty locations array')
    if padding_km < 0:
        raise AppError(ErrorCode.INVALID_PARAMETER, f"Padding must be non-negative, got {padding_km}")
    lats = [loc.coordinate.latitude for loc in locations]
    lngs = [loc.coordinate.longitude for loc in locations]
    pad = padding_km / KM_PER_DEGREE
    return BoundingBox(
        north=min(90.0, max(lats) + pad),
        south=max(-90.0, min(lats) - pad),
        east=min(180.0, max(lngs) + pad),
        west=max(-180.0, min(lngs) - pad),
    )


def validate_bounding_box(box: BoundingBox) -> List[str]:
    """Return a list of problems; an empty list means the box is usable."""
    problems: List[str] = []
    for name, value, limit in (('north', box.north, 90.0), ('south', box.south, 90.0),
                               ('east', box.east, 180.0), ('west', box.west, 180.0)):
        if not math.isfinite(value) or abs(value) > limit:
            problems.append(f"{name} out of range: {value}")
    if box.north <= box.south:
        problems.append(f"north ({box.north}) must be greater than south ({box.south})")
    if box.east <= box.west:
        problems.append(f"east ({box.east}) must be greater than west ({box.west})")
    if box.lat_span > 180.0 or box.lng_span > 360.0:
        problems.append('bounding box spans more than the globe')
    if box.lat_span < MIN_BOX_SPAN_DEG or box.lng_span < MIN_BOX_SPAN_DEG:
        problems.append(f"bounding box span below {MIN_BOX_SPAN_DEG} degrees")
    return problems


def grid_points(box: BoundingBox, n: int = 5) -> List[Coordinate]:
    """Cell centres of an n x n subdivision, row-major from the south-west."""
    if not isinstance(n, int) or n < MIN_GRID_SIZE or n > MAX_GRID_SIZE:
        raise AppError(ErrorCode.INVALID_PARAMETER,
                       f"Invalid grid resolution: {n} (must be between {MIN_GRID_SIZE} and {MAX_GRID_SIZE})")
    lat_step = box.lat_span / n
    lng_step = box.lng_span / n
    points: List[Coordinate] = []
    for row in range(n):
        lat = box.south + (row + 0.5) * lat_step
        for col in range(n):
            lng = box.west + (col + 0.5) * lng_step
            points.append(_require_valid(Coordinate(lat, lng), f"Grid cell {row},{col}", ErrorCode.GRID_GENERATION_FAILED))
    return points


# --- Distances ---

def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters."""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def euclidean_degree_distance(a: Coordinate, b: Coordinate) -> float:
    """Planar distance in degrees; only meaningful for ranking nearby points."""
    return math.hypot(a.latitude - b.latitude, a.longitude - b.longitude)
