"""Shared numeric constants for the hypothesis search engine."""

# --- Geometry ---
EARTH_RADIUS_M = 6371000.0
KM_PER_DEGREE = 111.0
METERS_PER_DEGREE = 111000.0
MIN_BOX_SPAN_DEG = 0.001

# --- Participants ---
MIN_LOCATIONS = 2
MAX_LOCATIONS = 12

# --- Coarse grid (Phase 1) ---
DEFAULT_GRID_SIZE = 5
MIN_GRID_SIZE = 1
MAX_GRID_SIZE = 20
DEFAULT_PADDING_KM = 5.0
MAX_PADDING_KM = 50.0

# --- Local refinement (Phase 2) ---
TOP_M = 3
DEDUPLICATION_THRESHOLD_M = 2500.0
MIN_REFINEMENT_THRESHOLD_M = 10.0
MAX_DEDUPLICATION_THRESHOLD_M = 10000.0
DEFAULT_REFINEMENT_RADIUS_KM = 2.0
MIN_REFINEMENT_RADIUS_KM = 0.1
MAX_REFINEMENT_RADIUS_KM = 10.0
DEFAULT_FINE_GRID_RESOLUTION = 3
MIN_FINE_GRID_RESOLUTION = 2
MAX_FINE_GRID_RESOLUTION = 10
MAX_TOP_M = 20

# --- Minimax ---
MAX_TIE_TOLERANCE = 1e-9
AVERAGE_TIE_TOLERANCE = 0.01
COORDINATE_TIE_TOLERANCE = 1e-6
DEFAULT_EPSILON_MINUTES = 1.0

# --- Matrix oracle ---
DISTANCE_MATRIX_MAX_DEST = 25        # per-request destination cap
DISTANCE_MATRIX_MAX_ELEMENTS = 100   # origins x destinations per request
MATRIX_TIMEOUT_SECONDS = 45
MATRIX_MAX_RETRIES = 1
HIGH_API_CALL_WARNING = 10

# --- API usage budget ---
ESTIMATED_PHASE0_POINTS = 20
API_USAGE_WARNING_POINTS = 100
API_USAGE_MAX_POINTS = 200

# --- Cache ---
DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60
DEFAULT_CACHE_PRECISION_M = 100

# --- Pipeline defaults ---
PIPELINE_TOP_M = 5
PIPELINE_TOP_N = 5
MAX_TOP_N = 50
PIPELINE_DEDUPLICATION_THRESHOLD_M = 100.0
PIPELINE_GRID_RESOLUTION = 10
PIPELINE_REFINEMENT_RADIUS_KM = 2.0
PIPELINE_FINE_GRID_RESOLUTION = 5
