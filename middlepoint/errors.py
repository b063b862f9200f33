"""
Typed errors for the hypothesis search engine.

Every fatal condition is raised as an AppError carrying an ErrorCode, a
technical message for the logs and a user-facing message for API clients.
The travel-time oracle reports its own failures as OracleError with an
OracleErrorKind, and the retry policy is derived from that kind.
"""

from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    # Validation
    INVALID_COORDINATES = 'INVALID_COORDINATES'
    INSUFFICIENT_LOCATIONS = 'INSUFFICIENT_LOCATIONS'
    TOO_MANY_LOCATIONS = 'TOO_MANY_LOCATIONS'
    INVALID_TRAVEL_MODE = 'INVALID_TRAVEL_MODE'
    INVALID_PARAMETER = 'INVALID_PARAMETER'
    INVALID_OPTIMIZATION_CONFIG = 'INVALID_OPTIMIZATION_CONFIG'

    # Credentials
    MISSING_API_KEY = 'MISSING_API_KEY'
    INVALID_API_KEY = 'INVALID_API_KEY'

    # Upstream oracle
    API_RATE_LIMIT = 'API_RATE_LIMIT'
    API_TIMEOUT = 'API_TIMEOUT'
    API_UNAVAILABLE = 'API_UNAVAILABLE'
    NETWORK_ERROR = 'NETWORK_ERROR'
    MATRIX_CALCULATION_FAILED = 'MATRIX_CALCULATION_FAILED'

    # Data integrity
    MATRIX_DIMENSION_MISMATCH = 'MATRIX_DIMENSION_MISMATCH'

    # Candidate generation
    ANCHOR_GENERATION_FAILED = 'ANCHOR_GENERATION_FAILED'
    GRID_GENERATION_FAILED = 'GRID_GENERATION_FAILED'
    LOCAL_REFINEMENT_FAILED = 'LOCAL_REFINEMENT_FAILED'
    DEDUPLICATION_FAILED = 'DEDUPLICATION_FAILED'

    # Total failure
    NO_REACHABLE_POINTS = 'NO_REACHABLE_POINTS'
    NO_SCORABLE_POINTS = 'NO_SCORABLE_POINTS'
    NO_VALID_POINTS = 'NO_VALID_POINTS'

    CACHE_ERROR = 'CACHE_ERROR'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


RETRYABLE_CODES = frozenset({
    ErrorCode.API_TIMEOUT,
    ErrorCode.API_UNAVAILABLE,
    ErrorCode.NETWORK_ERROR,
})

VALIDATION_CODES = frozenset({
    ErrorCode.INVALID_COORDINATES,
    ErrorCode.INSUFFICIENT_LOCATIONS,
    ErrorCode.TOO_MANY_LOCATIONS,
    ErrorCode.INVALID_TRAVEL_MODE,
    ErrorCode.INVALID_PARAMETER,
    ErrorCode.INVALID_OPTIMIZATION_CONFIG,
})

DEFAULT_USER_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.INVALID_COORDINATES: 'Invalid coordinates. Latitude must be between -90 and 90, longitude between -180 and 180.',
    ErrorCode.INSUFFICIENT_LOCATIONS: 'Please add at least 2 locations to calculate a fair meeting point.',
    ErrorCode.TOO_MANY_LOCATIONS: 'Maximum of 12 locations supported. Please remove some locations and try again.',
    ErrorCode.INVALID_TRAVEL_MODE: 'Invalid travel mode selected. Please choose from driving, cycling, or walking.',
    ErrorCode.INVALID_PARAMETER: 'One of the request parameters is out of range. Please adjust your settings.',
    ErrorCode.INVALID_OPTIMIZATION_CONFIG: 'The optimization settings are invalid. Please adjust your settings.',
    ErrorCode.MISSING_API_KEY: 'Configuration error: no API key is configured for the mapping service.',
    ErrorCode.INVALID_API_KEY: 'Configuration error: Invalid API key for mapping service. Please check your API key configuration.',
    ErrorCode.API_RATE_LIMIT: 'Service temporarily unavailable due to rate limits. Please try again in a few minutes.',
    ErrorCode.API_TIMEOUT: 'Request timed out. Please try again with fewer locations or a different travel mode.',
    ErrorCode.API_UNAVAILABLE: 'The travel time service is temporarily unavailable. Please try again shortly.',
    ErrorCode.NETWORK_ERROR: 'Could not reach the travel time service. Please check your connection and try again.',
    ErrorCode.MATRIX_CALCULATION_FAILED: 'Failed to calculate travel times between locations. Please check your locations and try again.',
    ErrorCode.MATRIX_DIMENSION_MISMATCH: 'The travel time service returned an incomplete result. Please try again.',
    ErrorCode.ANCHOR_GENERATION_FAILED: 'Unable to build candidate meeting points from the given locations.',
    ErrorCode.GRID_GENERATION_FAILED: 'Unable to build a search grid around the given locations.',
    ErrorCode.LOCAL_REFINEMENT_FAILED: 'Unable to refine the search around the best candidates.',
    ErrorCode.DEDUPLICATION_FAILED: 'Unable to merge nearby candidate meeting points.',
    ErrorCode.NO_REACHABLE_POINTS: 'No valid meeting points found. All generated locations may be unreachable by the selected travel mode.',
    ErrorCode.NO_SCORABLE_POINTS: 'No candidate meeting point could be scored with the available travel times.',
    ErrorCode.NO_VALID_POINTS: 'No valid meeting points found. Try different locations or a different travel mode.',
    ErrorCode.CACHE_ERROR: 'A temporary caching problem occurred.',
    ErrorCode.INTERNAL_ERROR: 'An unexpected error occurred. Please try again or contact support if the problem persists.',
}


class AppError(Exception):
    """Structured, fatal engine error"""

    def __init__(self, code: ErrorCode, message: str, user_message: Optional[str] = None,
                 details: Optional[Dict] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message or DEFAULT_USER_MESSAGES.get(code, DEFAULT_USER_MESSAGES[ErrorCode.INTERNAL_ERROR])
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @property
    def is_validation(self) -> bool:
        return self.code in VALIDATION_CODES

    def to_dict(self) -> Dict:
        return {
            'code': self.code.value,
            'message': self.user_message,
            'details': self.details,
        }

    def __repr__(self):
        return f"AppError(code={self.code.value}, message={self.message!r})"


class OracleErrorKind(str, Enum):
    """Failure classes reported by the travel-time oracle"""
    TIMEOUT = 'TIMEOUT'
    NETWORK = 'NETWORK'
    SERVER = 'SERVER'
    RATE_LIMIT = 'RATE_LIMIT'
    AUTH = 'AUTH'
    CLIENT = 'CLIENT'

    @property
    def retryable(self) -> bool:
        return self in (OracleErrorKind.TIMEOUT, OracleErrorKind.NETWORK, OracleErrorKind.SERVER)


_ORACLE_KIND_TO_CODE = {
    OracleErrorKind.TIMEOUT: ErrorCode.API_TIMEOUT,
    OracleErrorKind.NETWORK: ErrorCode.NETWORK_ERROR,
    OracleErrorKind.SERVER: ErrorCode.API_UNAVAILABLE,
    OracleErrorKind.RATE_LIMIT: ErrorCode.API_RATE_LIMIT,
    OracleErrorKind.AUTH: ErrorCode.INVALID_API_KEY,
    OracleErrorKind.CLIENT: ErrorCode.MATRIX_CALCULATION_FAILED,
}


class OracleError(Exception):
    """Error raised by a travel-time matrix provider"""

    def __init__(self, kind: OracleErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


# --- Factories ---

def from_oracle_error(error: OracleError, context: str = 'Matrix API call') -> AppError:
    code = _ORACLE_KIND_TO_CODE[error.kind]
    details = {'oracle_kind': error.kind.value}
    if error.status_code is not None:
        details['status_code'] = error.status_code
    return AppError(code, f"{context} failed ({error.kind.value}): {error.message}", details=details)


def validation_error(message: str, code: ErrorCode = ErrorCode.INVALID_PARAMETER, **details) -> AppError:
    return AppError(code, message, details=details or None)


def invalid_coordinates_error(latitude, longitude, context: str = '') -> AppError:
    where = f" for {context}" if context else ''
    return AppError(
        ErrorCode.INVALID_COORDINATES,
        f"Invalid coordinates{where}: {latitude}, {longitude}",
        details={'latitude': latitude, 'longitude': longitude},
    )


def insufficient_locations_error(count: int) -> AppError:
    return AppError(ErrorCode.INSUFFICIENT_LOCATIONS,
                    f"At least 2 locations are required, got {count}",
                    details={'count': count})


def too_many_locations_error(count: int, maximum: int) -> AppError:
    return AppError(ErrorCode.TOO_MANY_LOCATIONS,
                    f"At most {maximum} locations are supported, got {count}",
                    details={'count': count, 'maximum': maximum})


def travel_mode_error(mode) -> AppError:
    return AppError(ErrorCode.INVALID_TRAVEL_MODE, f"Unsupported travel mode: {mode}",
                    details={'travel_mode': str(mode)})


def missing_api_key_error() -> AppError:
    return AppError(ErrorCode.MISSING_API_KEY, 'Valid Google Maps API key is required')


def dimension_mismatch_error(message: str, **details) -> AppError:
    return AppError(ErrorCode.MATRIX_DIMENSION_MISMATCH, f"Matrix dimension mismatch: {message}", details=details or None)


def internal_error(error: Exception) -> AppError:
    return AppError(ErrorCode.INTERNAL_ERROR, f"Unexpected error: {error}")
