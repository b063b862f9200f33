#!/usr/bin/env python3
"""
Production runner for the Meet in the Middle API
- Serves the Flask API (middlepoint.app) with waitress
- Loads .env for GOOGLE_MAPS_API_KEY and other settings

Usage:
  python3 run_prod.py

Environment:
  PORT=8000 (default)        # Port to bind
  HOST=0.0.0.0 (default)     # Host interface
  GOOGLE_MAPS_API_KEY=...    # Required for hypothesis searches
  REDIS_URL=...              # optional: shared matrix cache
  OPTIMIZATION_MODE=...      # optional: BASELINE | COARSE_GRID | FULL_REFINEMENT
  WSGI_THREADS=8             # optional: waitress worker threads
"""

import os

from waitress import serve
from werkzeug.middleware.proxy_fix import ProxyFix

from middlepoint.app import create_default_app

api_app = create_default_app()
application = api_app.wsgi_app

# Respect reverse proxy headers (X-Forwarded-*) when behind a proxy/HTTPS terminator
if os.getenv('TRUST_PROXY_HEADERS', '1') not in ('0', 'false', 'False', 'no', 'off'):
    # Trust a single proxy hop by default; tune via env
    application = ProxyFix(
        application,
        x_for=int(os.getenv('PROXY_FIX_X_FOR', '1')),
        x_proto=int(os.getenv('PROXY_FIX_X_PROTO', '1')),
        x_host=int(os.getenv('PROXY_FIX_X_HOST', '1')),
        x_port=int(os.getenv('PROXY_FIX_X_PORT', '1')),
        x_prefix=int(os.getenv('PROXY_FIX_X_PREFIX', '1')),
    )
api_app.wsgi_app = application


def main():
    host = os.getenv('HOST', '0.0.0.0')
    try:
        port = int(os.getenv('PORT', '8000'))
    except ValueError:
        port = 8000

    settings = api_app.config['SETTINGS']
    if not settings.has_api_key:
        print("\n" + "=" * 60)
        print("Warning: GOOGLE_MAPS_API_KEY is not configured.")
        print("The API will start, but hypothesis searches will return 401.")
        print("Set it in your environment or .env file.")
        print("=" * 60 + "\n")

    print(f"\n🚀 Starting Meet in the Middle API (prod) on http://{host}:{port}")
    print(" - API: /api/hypothesis-points, /api/config")
    serve(api_app, host=host, port=port, threads=int(os.getenv('WSGI_THREADS', '8')))


if __name__ == '__main__':
    main()
