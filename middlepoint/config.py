"""
Runtime settings loaded from the environment (and .env via python-dotenv),
plus the logging setup shared by the API entry points.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .constants import DEFAULT_CACHE_PRECISION_M, DEFAULT_CACHE_TTL_SECONDS, MATRIX_TIMEOUT_SECONDS

PLACEHOLDER_API_KEYS = ('', 'your_api_key_here')
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


@dataclass
class Settings:
    google_maps_api_key: Optional[str] = None
    redis_url: Optional[str] = None
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    cache_precision_m: int = DEFAULT_CACHE_PRECISION_M
    matrix_timeout_seconds: int = MATRIX_TIMEOUT_SECONDS
    log_level: str = 'INFO'
    log_file: Optional[str] = 'app.log'
    optimization_mode: Optional[str] = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.google_maps_api_key) and self.google_maps_api_key not in PLACEHOLDER_API_KEYS

    @classmethod
    def from_env(cls, dotenv: bool = True) -> 'Settings':
        if dotenv:
            load_dotenv()
        log_file = os.getenv('LOG_FILE', 'app.log')
        return cls(
            google_maps_api_key=os.getenv('GOOGLE_MAPS_API_KEY'),
            redis_url=os.getenv('REDIS_URL') or None,
            cache_ttl_seconds=_env_int('CACHE_TTL_SECONDS', DEFAULT_CACHE_TTL_SECONDS),
            cache_precision_m=_env_int('CACHE_PRECISION_M', DEFAULT_CACHE_PRECISION_M),
            matrix_timeout_seconds=_env_int('MATRIX_TIMEOUT_SECONDS', MATRIX_TIMEOUT_SECONDS),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=log_file or None,
            optimization_mode=os.getenv('OPTIMIZATION_MODE') or None,
        )

    def public_dict(self) -> dict:
        """Settings safe to expose to clients (no secrets)."""
        return {
            'api_key_configured': self.has_api_key,
            'cache_backend': 'redis' if self.redis_url else 'memory',
            'cache_ttl_seconds': self.cache_ttl_seconds,
            'cache_precision_m': self.cache_precision_m,
            'matrix_timeout_seconds': self.matrix_timeout_seconds,
            'optimization_mode': self.optimization_mode,
        }


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.insert(0, logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
