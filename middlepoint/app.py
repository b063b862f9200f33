from flask import Flask, request, jsonify, g
from flask_cors import CORS
import logging
import json
from time import perf_counter
from typing import Dict, Optional

from .cache import CachedMatrixEvaluator, create_cache
from .config import Settings, configure_logging
from .constants import PIPELINE_DEDUPLICATION_THRESHOLD_M, PIPELINE_TOP_M, PIPELINE_TOP_N
from .errors import AppError, ErrorCode, internal_error, invalid_coordinates_error, missing_api_key_error, travel_mode_error, validation_error
from .hypothesis_service import HypothesisRequest, HypothesisService
from .maps_service import GoogleMapsService
from .models import Coordinate, Location, OptimizationGoal, TravelMode
from .optimization import create_optimization_config

logger = logging.getLogger(__name__)

_UNAUTHORIZED_CODES = (ErrorCode.MISSING_API_KEY, ErrorCode.INVALID_API_KEY)
_UNAVAILABLE_CODES = (ErrorCode.API_UNAVAILABLE, ErrorCode.API_TIMEOUT, ErrorCode.NETWORK_ERROR)


def status_for_error(error: AppError) -> int:
    """HTTP status for an engine error."""
    if error.is_validation:
        return 400
    if error.code in _UNAUTHORIZED_CODES:
        return 401
    if error.code == ErrorCode.API_RATE_LIMIT:
        return 429
    if error.code in _UNAVAILABLE_CODES:
        return 503
    return 500


def error_response(error: AppError):
    return jsonify({'success': False, 'error': error.to_dict()}), status_for_error(error)


def _number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_hypothesis_request(data: Optional[Dict]) -> HypothesisRequest:
    """
    Build a HypothesisRequest from a JSON body:
    {"locations": [{"latitude", "longitude", "name"?}], "travel_mode", ...}
    """
    if not isinstance(data, dict):
        raise validation_error('JSON object body is required')

    raw_locations = data.get('locations')
    if not isinstance(raw_locations, list):
        raise validation_error('locations must be a list of {latitude, longitude} objects')
    locations = []
    for index, loc in enumerate(raw_locations):
        if not isinstance(loc, dict):
            raise validation_error(f"location {index + 1} must be an object", index=index)
        lat, lng = loc.get('latitude'), loc.get('longitude')
        if not _number(lat) or not _number(lng):
            raise invalid_coordinates_error(lat, lng, f"location {index + 1}")
        locations.append(Location(
            id=f"location_{index}",
            name=loc.get('name') or f"Location {index + 1}",
            coordinate=Coordinate(float(lat), float(lng)),
        ))

    try:
        travel_mode = TravelMode(data.get('travel_mode'))
    except ValueError:
        raise travel_mode_error(data.get('travel_mode'))
    try:
        goal = OptimizationGoal(data.get('optimization_goal') or OptimizationGoal.MINIMAX.value)
    except ValueError:
        raise validation_error(f"Unknown optimization goal: {data.get('optimization_goal')}",
                               optimization_goal=data.get('optimization_goal'))

    refinement = data.get('enable_local_refinement', True)
    if not isinstance(refinement, bool):
        raise validation_error('enable_local_refinement must be a boolean')

    config = None
    if data.get('optimization_mode'):
        config = create_optimization_config(
            data['optimization_mode'],
            coarse_grid=data.get('coarse_grid'),
            local_refinement=data.get('local_refinement'),
        )

    return HypothesisRequest(
        locations=locations,
        travel_mode=travel_mode,
        optimization_goal=goal,
        enable_local_refinement=refinement,
        top_m=data.get('top_m', PIPELINE_TOP_M),
        top_n=data.get('top_n', PIPELINE_TOP_N),
        deduplication_threshold_m=data.get('deduplication_threshold', PIPELINE_DEDUPLICATION_THRESHOLD_M),
        optimization_config=config,
    )


def build_service(settings: Settings) -> Optional[HypothesisService]:
    """Wire the Google oracle behind the matrix cache; None without an API key."""
    if not settings.has_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY not found or not configured in environment variables")
        return None
    logger.info("Initializing Google Maps service...")
    try:
        maps_service = GoogleMapsService(settings.google_maps_api_key, timeout=settings.matrix_timeout_seconds)
    except ValueError as e:
        # googlemaps.Client rejects malformed keys up front
        logger.error(f"Error initializing Google Maps service: {e}")
        return None
    evaluator = CachedMatrixEvaluator(maps_service, create_cache(settings),
                                      ttl_seconds=settings.cache_ttl_seconds,
                                      precision_m=settings.cache_precision_m)
    default_config = create_optimization_config(settings.optimization_mode) if settings.optimization_mode else None
    logger.info("Google Maps service initialized successfully")
    return HypothesisService(evaluator, default_config=default_config)


def create_app(service: Optional[HypothesisService] = None, settings: Optional[Settings] = None) -> Flask:
    settings = settings or Settings.from_env()
    if service is None:
        service = build_service(settings)

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.config['HYPOTHESIS_SERVICE'] = service
    app.config['SETTINGS'] = settings

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.teardown_request
    def _teardown_request_log(error=None):
        # If an unhandled exception occurred, still log the duration
        if error is not None:
            start = getattr(g, '_start_time', None)
            duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
            logger.error(
                "request error: method=%s path=%s duration_ms=%s error=%s",
                request.method,
                request.path,
                f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
                repr(error),
            )

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Meet in the Middle API is running!',
            'endpoints': {
                'hypothesis_points': '/api/hypothesis-points',
                'config': '/api/config',
                'health': '/'
            },
            'status': 'healthy'
        })

    @app.route('/api/config', methods=['GET'])
    def get_config():
        """Non-secret runtime configuration and matrix cache statistics"""
        data = settings.public_dict()
        svc = app.config['HYPOTHESIS_SERVICE']
        evaluator = svc.evaluate_matrix if svc is not None else None
        data['cache_stats'] = evaluator.stats() if isinstance(evaluator, CachedMatrixEvaluator) else None
        return jsonify({'success': True, 'data': data})

    @app.route('/api/hypothesis-points', methods=['POST'])
    def hypothesis_points():
        """
        Run the multi-phase meeting point search
        Expected JSON: {
            "locations": [{"latitude": 40.71, "longitude": -74.0, "name": "Alice"}, ...],
            "travel_mode": "DRIVING_CAR",
            "optimization_mode": "FULL_REFINEMENT"  // optional
        }
        """
        logger.info("=== HYPOTHESIS POINTS REQUEST ===")
        svc = app.config['HYPOTHESIS_SERVICE']
        try:
            if svc is None:
                raise missing_api_key_error()
            data = request.get_json(silent=True)
            logger.debug(f"Request data received: {json.dumps(data) if data else 'None'}")
            hypothesis_request = parse_hypothesis_request(data)

            _algo_start = perf_counter()
            result = svc.generate_hypothesis_points(hypothesis_request)
            _compute_ms = (perf_counter() - _algo_start) * 1000.0
            logger.info("Time to generate hypothesis points = %.1f ms (API calls: %d)",
                        _compute_ms, result.matrix_api_calls)
        except AppError as e:
            level = logging.WARNING if e.is_validation else logging.ERROR
            logger.log(level, f"Hypothesis generation failed [{e.code.value}]: {e.message}")
            return error_response(e)
        except Exception as e:
            logger.error(f"Exception in hypothesis_points: {str(e)}", exc_info=True)
            return error_response(internal_error(e))

        response = jsonify({'success': True, 'data': result.to_dict()})
        response.headers['X-Compute-Time-ms'] = f"{_compute_ms:.1f}"
        return response

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': {'code': 'NOT_FOUND', 'message': 'Endpoint not found',
                                                    'details': {}}}), 404

    @app.errorhandler(500)
    def internal_server_error(error):
        return jsonify({'success': False, 'error': internal_error(error).to_dict()}), 500

    return app


def create_default_app() -> Flask:
    settings = Settings.from_env()
    configure_logging(settings)
    return create_app(settings=settings)
