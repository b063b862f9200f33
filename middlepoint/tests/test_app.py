import pytest

from middlepoint.app import create_app, parse_hypothesis_request, status_for_error
from middlepoint.cache import CachedMatrixEvaluator, InMemoryCache
from middlepoint.config import Settings
from middlepoint.errors import AppError, ErrorCode
from middlepoint.hypothesis_service import HypothesisService
from middlepoint.models import OptimizationGoal, TravelMode
from middlepoint.optimization import OptimizationMode

from conftest import FakeOracle

PAYLOAD = {
    'locations': [
        {'latitude': 40.7128, 'longitude': -74.0060, 'name': 'Alice'},
        {'latitude': 40.6782, 'longitude': -73.9442},
    ],
    'travel_mode': 'DRIVING_CAR',
    'optimization_mode': 'COARSE_GRID',
}


class FailingService:
    def __init__(self, error):
        self.error = error

    def generate_hypothesis_points(self, request):
        raise self.error


def settings():
    return Settings(google_maps_api_key='AIzaSecretKey', log_file=None)


@pytest.fixture
def client():
    app = create_app(service=HypothesisService(FakeOracle()), settings=settings())
    app.config['TESTING'] = True
    return app.test_client()


def client_for(service):
    return create_app(service=service, settings=settings()).test_client()


def test_health_check(client):
    response = client.get('/')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
    assert 'X-Process-Time-ms' in response.headers


def test_config_never_exposes_api_key(client):
    response = client.get('/api/config')
    data = response.get_json()['data']
    assert data['api_key_configured'] is True
    assert data['cache_backend'] == 'memory'
    assert 'AIzaSecretKey' not in response.get_data(as_text=True)


def test_config_reports_matrix_cache_stats():
    oracle = FakeOracle()
    service = HypothesisService(CachedMatrixEvaluator(oracle, InMemoryCache()))
    test_client = client_for(service)
    for _ in range(2):
        assert test_client.post('/api/hypothesis-points', json=PAYLOAD).status_code == 200

    stats = test_client.get('/api/config').get_json()['data']['cache_stats']
    assert stats == {'backend': 'memory', 'hits': 1, 'misses': 1, 'entries': 1}
    assert len(oracle.calls) == 1


def test_config_without_cache(client):
    assert client.get('/api/config').get_json()['data']['cache_stats'] is None


def test_hypothesis_points(client):
    response = client.post('/api/hypothesis-points', json=PAYLOAD)
    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    data = body['data']
    assert len(data['anchor_points']) == 5
    assert len(data['coarse_grid_points']) == 25
    assert data['matrix_api_calls'] == 1
    assert data['optimization_mode'] == 'COARSE_GRID'
    assert data['optimal_point'] is not None
    assert 1 <= len(data['points_of_interest']) <= 5
    assert 'X-Compute-Time-ms' in response.headers


@pytest.mark.parametrize('payload,code', [
    ({'locations': [{'latitude': 40.7, 'longitude': -74.0}], 'travel_mode': 'DRIVING_CAR'},
     'INSUFFICIENT_LOCATIONS'),
    ({'locations': [{'latitude': '40.7', 'longitude': -74.0}, {'latitude': 40.6, 'longitude': -73.9}],
      'travel_mode': 'DRIVING_CAR'}, 'INVALID_COORDINATES'),
    (dict(PAYLOAD, travel_mode='TELEPORT'), 'INVALID_TRAVEL_MODE'),
    (dict(PAYLOAD, top_n=0), 'INVALID_PARAMETER'),
    (dict(PAYLOAD, enable_local_refinement='yes'), 'INVALID_PARAMETER'),
    (dict(PAYLOAD, coarse_grid={'grid_resolution': 40}), 'INVALID_OPTIMIZATION_CONFIG'),
    ({'travel_mode': 'DRIVING_CAR'}, 'INVALID_PARAMETER'),
])
def test_bad_requests(client, payload, code):
    response = client.post('/api/hypothesis-points', json=payload)
    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert body['error']['code'] == code


def test_non_json_body_is_rejected(client):
    response = client.post('/api/hypothesis-points', data='not json', content_type='text/plain')
    assert response.status_code == 400


def test_missing_api_key_is_unauthorized():
    app = create_app(settings=Settings(log_file=None))
    assert app.config['HYPOTHESIS_SERVICE'] is None
    response = app.test_client().post('/api/hypothesis-points', json=PAYLOAD)
    assert response.status_code == 401
    assert response.get_json()['error']['code'] == 'MISSING_API_KEY'


@pytest.mark.parametrize('code,status', [
    (ErrorCode.API_RATE_LIMIT, 429),
    (ErrorCode.API_UNAVAILABLE, 503),
    (ErrorCode.NETWORK_ERROR, 503),
    (ErrorCode.INVALID_API_KEY, 401),
    (ErrorCode.NO_REACHABLE_POINTS, 500),
])
def test_engine_errors_map_to_status(code, status):
    response = client_for(FailingService(AppError(code, 'upstream'))).post('/api/hypothesis-points', json=PAYLOAD)
    assert response.status_code == status
    error = response.get_json()['error']
    assert error['code'] == code.value
    assert error['message']


def test_unexpected_exception_is_internal_error():
    response = client_for(FailingService(RuntimeError('boom'))).post('/api/hypothesis-points', json=PAYLOAD)
    assert response.status_code == 500
    assert response.get_json()['error']['code'] == 'INTERNAL_ERROR'


def test_unknown_route_is_json_404(client):
    response = client.get('/api/nothing-here')
    assert response.status_code == 404
    assert response.get_json()['error']['code'] == 'NOT_FOUND'


def test_status_for_error():
    assert status_for_error(AppError(ErrorCode.TOO_MANY_LOCATIONS, 'x')) == 400
    assert status_for_error(AppError(ErrorCode.MISSING_API_KEY, 'x')) == 401
    assert status_for_error(AppError(ErrorCode.API_TIMEOUT, 'x')) == 503
    assert status_for_error(AppError(ErrorCode.MATRIX_CALCULATION_FAILED, 'x')) == 500


def test_parse_request_defaults():
    request = parse_hypothesis_request({
        'locations': [{'latitude': 1, 'longitude': 2}, {'latitude': 3.5, 'longitude': 4}],
        'travel_mode': 'FOOT_WALKING',
    })
    assert [loc.id for loc in request.locations] == ['location_0', 'location_1']
    assert request.locations[1].name == 'Location 2'
    assert request.locations[0].coordinate.latitude == 1.0
    assert request.travel_mode == TravelMode.FOOT_WALKING
    assert request.optimization_goal == OptimizationGoal.MINIMAX
    assert request.enable_local_refinement is True
    assert request.optimization_config is None
    assert (request.top_m, request.top_n, request.deduplication_threshold_m) == (5, 5, 100.0)


def test_parse_request_optimization_overrides():
    request = parse_hypothesis_request(dict(PAYLOAD, optimization_mode='FULL_REFINEMENT',
                                            local_refinement={'top_k': 2}))
    assert request.optimization_config.mode == OptimizationMode.FULL_REFINEMENT
    assert request.optimization_config.local_refinement.top_k == 2
