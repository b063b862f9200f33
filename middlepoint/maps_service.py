import googlemaps
from googlemaps import exceptions as gm_exceptions
from typing import List, Optional
import asyncio
import concurrent.futures
import logging
import math

from .constants import DISTANCE_MATRIX_MAX_DEST, DISTANCE_MATRIX_MAX_ELEMENTS, MATRIX_TIMEOUT_SECONDS
from .config import PLACEHOLDER_API_KEYS
from .errors import OracleError, OracleErrorKind, missing_api_key_error
from .models import Coordinate, TravelMode

logger = logging.getLogger(__name__)

# Distance Matrix statuses that mean the request itself was rejected
_RATE_LIMIT_STATUSES = ('OVER_QUERY_LIMIT', 'OVER_DAILY_LIMIT')
_AUTH_STATUSES = ('REQUEST_DENIED',)
_SERVER_STATUSES = ('UNKNOWN_ERROR',)


def classify_googlemaps_error(error: Exception) -> OracleError:
    """Map a googlemaps client exception onto a typed oracle error."""
    if isinstance(error, gm_exceptions.Timeout):
        return OracleError(OracleErrorKind.TIMEOUT, 'Distance Matrix request timed out')
    if isinstance(error, gm_exceptions.HTTPError):
        status = getattr(error, 'status_code', None)
        if status in (401, 403):
            kind = OracleErrorKind.AUTH
        elif status == 429:
            kind = OracleErrorKind.RATE_LIMIT
        elif status is not None and status >= 500:
            kind = OracleErrorKind.SERVER
        else:
            kind = OracleErrorKind.CLIENT
        return OracleError(kind, f"Distance Matrix HTTP error {status}", status_code=status)
    if isinstance(error, gm_exceptions.TransportError):
        return OracleError(OracleErrorKind.NETWORK, f"Distance Matrix transport error: {error}")
    if isinstance(error, gm_exceptions.ApiError):
        status = getattr(error, 'status', None)
        message = getattr(error, 'message', None) or str(error)
        if status in _RATE_LIMIT_STATUSES:
            kind = OracleErrorKind.RATE_LIMIT
        elif status in _AUTH_STATUSES:
            kind = OracleErrorKind.AUTH
        elif status in _SERVER_STATUSES:
            kind = OracleErrorKind.SERVER
        else:
            kind = OracleErrorKind.CLIENT
        return OracleError(kind, f"Distance Matrix API error {status}: {message}")
    return OracleError(OracleErrorKind.CLIENT, f"Distance Matrix error: {error}")


def chunk_size_for(origin_count: int) -> int:
    """Destinations per request so that origins x destinations stays within limits."""
    return max(1, min(DISTANCE_MATRIX_MAX_DEST, DISTANCE_MATRIX_MAX_ELEMENTS // max(1, origin_count)))


class GoogleMapsService:
    """Travel-time oracle backed by the Google Distance Matrix API"""

    def __init__(self, api_key: str, timeout: int = MATRIX_TIMEOUT_SECONDS, client=None):
        if not api_key or api_key in PLACEHOLDER_API_KEYS:
            raise missing_api_key_error()
        self.client = client if client is not None else googlemaps.Client(key=api_key, timeout=timeout)
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    @property
    def executor(self) -> concurrent.futures.ThreadPoolExecutor:
        """Thread pool for the async wrapper, created on first use"""
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=10)
        return self._executor

    def cleanup(self):
        """Clean up resources"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def get_travel_time_matrix(self, origins: List[Coordinate], destinations: List[Coordinate],
                               mode: TravelMode) -> List[List[float]]:
        """
        Batch travel durations using the Distance Matrix API. Returns a rows x
        cols matrix where rows = len(origins) and cols = len(destinations).
        Values are whole minutes, or inf where no route was found.
        Chunks destinations to respect API limits.
        """
        if not origins or not destinations:
            return [[] for _ in origins]

        origin_strs = [o.as_latlng() for o in origins]
        rows = len(origins)
        cols = len(destinations)
        matrix: List[List[float]] = [[math.inf for _ in range(cols)] for _ in range(rows)]
        step = chunk_size_for(rows)

        # Process destinations in chunks
        for start in range(0, cols, step):
            end = min(start + step, cols)
            dest_strs = [d.as_latlng() for d in destinations[start:end]]
            try:
                dm = self.client.distance_matrix(
                    origins=origin_strs,
                    destinations=dest_strs,
                    mode=TravelMode(mode).google_mode,
                )
            except gm_exceptions.ApiError as e:
                raise classify_googlemaps_error(e)
            except (gm_exceptions.Timeout, gm_exceptions.TransportError) as e:
                raise classify_googlemaps_error(e)

            dm_rows = (dm or {}).get('rows', [])
            if len(dm_rows) != rows:
                raise OracleError(OracleErrorKind.SERVER,
                                  f"Distance Matrix returned {len(dm_rows)} rows, expected {rows}")
            for i, row in enumerate(dm_rows):
                elements = row.get('elements', [])
                if len(elements) != end - start:
                    raise OracleError(OracleErrorKind.SERVER,
                                      f"Distance Matrix row {i} has {len(elements)} elements, expected {end - start}")
                for j, el in enumerate(elements):
                    matrix[i][start + j] = self._element_minutes(el)

        logger.debug(f"Distance Matrix {rows}x{cols} fetched in {math.ceil(cols / step)} request(s)")
        return matrix

    async def get_travel_time_matrix_async(self, origins: List[Coordinate], destinations: List[Coordinate],
                                           mode: TravelMode) -> List[List[float]]:
        """Async wrapper for get_travel_time_matrix"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.get_travel_time_matrix, origins, destinations, mode)

    def __call__(self, origins: List[Coordinate], destinations: List[Coordinate], mode: TravelMode) -> List[List[float]]:
        return self.get_travel_time_matrix(origins, destinations, mode)

    # --- Helpers ---
    @staticmethod
    def _element_minutes(el: Optional[dict]) -> float:
        if not el or el.get('status') != 'OK':
            return math.inf
        seconds = (el.get('duration') or {}).get('value')
        if seconds is None or seconds < 0:
            return math.inf
        return round(seconds / 60)
