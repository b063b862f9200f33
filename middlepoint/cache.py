"""
Best-effort cache for travel-time matrices.

Keys are built from coordinates quantized to a metre grid so that nearly
identical requests share an entry. Cache failures are logged and never abort
a computation; callers fall back to the direct oracle call.
"""

import hashlib
import json
import logging
import math
import threading
import time
from typing import Dict, List, Optional, Sequence

import redis

from .config import Settings
from .constants import DEFAULT_CACHE_PRECISION_M, DEFAULT_CACHE_TTL_SECONDS, METERS_PER_DEGREE
from .models import Coordinate, TravelMode

logger = logging.getLogger(__name__)


class InMemoryCache:
    """Process-local cache with per-entry TTL, expired lazily on read."""

    def __init__(self):
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        with self._lock:
            self._entries[key] = (value, expires_at)

    def stats(self) -> Dict:
        with self._lock:
            return {'backend': 'memory', 'hits': self.hits, 'misses': self.misses, 'entries': len(self._entries)}


class RedisCache:
    """Redis-backed cache; entries expire server-side."""

    def __init__(self, url: str, client=None):
        self.client = client if client is not None else redis.from_url(url)
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[str]:
        raw = self.client.get(key)
        if raw is None:
            self.misses += 1
            return None
        self.hits += 1
        return raw.decode('utf-8') if isinstance(raw, bytes) else raw

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            self.client.setex(key, ttl, value)
        else:
            self.client.set(key, value)

    def stats(self) -> Dict:
        return {'backend': 'redis', 'hits': self.hits, 'misses': self.misses}


def create_cache(settings: Settings):
    if settings.redis_url:
        logger.info("Using Redis matrix cache")
        return RedisCache(settings.redis_url)
    logger.info("Using in-memory matrix cache")
    return InMemoryCache()


# --- Keys and serialization ---

def quantize(value: float, precision_m: float = DEFAULT_CACHE_PRECISION_M) -> float:
    steps = METERS_PER_DEGREE / precision_m
    return round(value * steps) / steps


def matrix_cache_key(origins: Sequence[Coordinate], destinations: Sequence[Coordinate], mode: TravelMode,
                     precision_m: float = DEFAULT_CACHE_PRECISION_M) -> str:
    """
    Stable key for a matrix request. Coordinates keep their request order so a
    cached matrix lines up with the caller's rows and columns.
    """
    def fmt(coords: Sequence[Coordinate]) -> str:
        return ';'.join(f"{quantize(c.latitude, precision_m):.6f},{quantize(c.longitude, precision_m):.6f}"
                        for c in coords)

    raw = f"{fmt(origins)}|{fmt(destinations)}"
    digest = hashlib.sha1(raw.encode('utf-8')).hexdigest()
    return f"matrix:{TravelMode(mode).value}:{digest}"


def serialize_matrix(rows: List[List[Optional[float]]]) -> str:
    # JSON has no infinity; unreachable cells are stored as null
    return json.dumps([[v if v is not None and math.isfinite(v) else None for v in row] for row in rows])


def deserialize_matrix(payload: str) -> List[List[float]]:
    return [[math.inf if v is None else v for v in row] for row in json.loads(payload)]


class CachedMatrixEvaluator:
    """Cache-first matrix oracle wrapping a direct evaluator."""

    def __init__(self, evaluate_matrix, cache, ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
                 precision_m: float = DEFAULT_CACHE_PRECISION_M):
        self.evaluate_matrix = evaluate_matrix
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.precision_m = precision_m

    def __call__(self, origins: List[Coordinate], destinations: List[Coordinate],
                 mode: TravelMode) -> List[List[float]]:
        key = matrix_cache_key(origins, destinations, mode, self.precision_m)

        cached = None
        try:
            cached = self.cache.get(key)
        except Exception as e:
            logger.warning(f"Matrix cache read failed, calling API directly: {e}")
        if cached is not None:
            try:
                rows = deserialize_matrix(cached)
            except (ValueError, TypeError) as e:
                logger.warning(f"Discarding corrupt matrix cache entry {key}: {e}")
            else:
                if len(rows) == len(origins) and all(len(r) == len(destinations) for r in rows):
                    logger.debug(f"Matrix cache hit: {key}")
                    return rows
                logger.warning(f"Discarding matrix cache entry {key} with unexpected shape")

        # Oracle errors propagate untouched and are never cached
        rows = self.evaluate_matrix(origins, destinations, mode)

        try:
            self.cache.set(key, serialize_matrix(rows), self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Matrix cache write failed: {e}")
        return rows

    def stats(self) -> Dict:
        return self.cache.stats()
