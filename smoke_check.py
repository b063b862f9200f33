#!/usr/bin/env python3
"""
Smoke check against a running Meet in the Middle API.

Usage:
  python3 smoke_check.py [BASE_URL]     # default http://localhost:5001
"""

import sys

import requests

DEFAULT_BASE_URL = 'http://localhost:5001'

SAMPLE_REQUEST = {
    'locations': [
        {'latitude': 40.7128, 'longitude': -74.0060, 'name': 'Lower Manhattan'},
        {'latitude': 40.6782, 'longitude': -73.9442, 'name': 'Brooklyn'},
    ],
    'travel_mode': 'DRIVING_CAR',
    'optimization_mode': 'COARSE_GRID',
}


def check_health(base_url: str) -> bool:
    """Check that the API answers the health endpoint"""
    try:
        response = requests.get(f"{base_url}/", timeout=5)
    except requests.exceptions.ConnectionError:
        print(f"❌ Cannot connect to API server ({base_url})")
        return False
    if response.status_code != 200 or response.json().get('status') != 'healthy':
        print(f"❌ API Server returned status code: {response.status_code}")
        return False
    print("✅ API Server is running and healthy")
    return True


def check_config(base_url: str) -> bool:
    response = requests.get(f"{base_url}/api/config", timeout=5)
    data = response.json().get('data') or {}
    if not data.get('api_key_configured'):
        print("❌ GOOGLE_MAPS_API_KEY is not configured on the server")
        return False
    print(f"✅ Config OK (cache backend: {data.get('cache_backend')})")
    return True


def check_hypothesis_points(base_url: str) -> bool:
    """Run a small two-participant search"""
    response = requests.post(f"{base_url}/api/hypothesis-points", json=SAMPLE_REQUEST, timeout=120)
    body = response.json()
    if response.status_code != 200 or not body.get('success'):
        error = body.get('error') or {}
        print(f"❌ Hypothesis search failed ({response.status_code}): {error.get('code')} {error.get('message')}")
        return False
    data = body['data']
    print(f"✅ Hypothesis search returned {len(data['points_of_interest'])} points of interest "
          f"using {data['matrix_api_calls']} matrix call(s); worst-case {data['optimal_max_travel_time']} min")
    return True


def main(base_url: str = DEFAULT_BASE_URL) -> bool:
    print("🧪 Checking Meet in the Middle API")
    print("=" * 50)
    checks = [
        ("API Server Health", check_health),
        ("Configuration", check_config),
        ("Hypothesis Search", check_hypothesis_points),
    ]
    passed = 0
    for name, check in checks:
        print(f"\n🔍 {name}...")
        if not check(base_url):
            break
        passed += 1

    print("\n" + "=" * 50)
    print(f"📊 Results: {passed}/{len(checks)} checks passed")
    return passed == len(checks)


if __name__ == '__main__':
    url = sys.argv[1].rstrip('/') if len(sys.argv) > 1 else DEFAULT_BASE_URL
    sys.exit(0 if main(url) else 1)
