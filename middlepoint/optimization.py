"""
Optimization modes and their validated configuration.

BASELINE uses Phase 0 anchors only, COARSE_GRID adds the Phase 1 grid and
FULL_REFINEMENT adds Phase 2 local refinement around the best candidates.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional

from .constants import API_USAGE_MAX_POINTS, API_USAGE_WARNING_POINTS, ESTIMATED_PHASE0_POINTS
from .errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


class OptimizationMode(str, Enum):
    BASELINE = 'BASELINE'
    COARSE_GRID = 'COARSE_GRID'
    FULL_REFINEMENT = 'FULL_REFINEMENT'


class OptimizationConfigError(AppError):
    """Invalid optimization setting; field names the offending option."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(ErrorCode.INVALID_OPTIMIZATION_CONFIG, message,
                         details={'field': field} if field else None)
        self.field = field


@dataclass(frozen=True)
class CoarseGridConfig:
    enabled: bool = False
    padding_km: float = 5.0
    grid_resolution: int = 5


@dataclass(frozen=True)
class LocalRefinementConfig:
    enabled: bool = False
    top_k: int = 3
    refinement_radius_km: float = 2.0
    fine_grid_resolution: int = 3


@dataclass(frozen=True)
class OptimizationConfig:
    mode: OptimizationMode = OptimizationMode.BASELINE
    coarse_grid: CoarseGridConfig = field(default_factory=CoarseGridConfig)
    local_refinement: LocalRefinementConfig = field(default_factory=LocalRefinementConfig)

    def to_dict(self) -> Dict:
        return {
            'mode': self.mode.value,
            'coarse_grid': {
                'enabled': self.coarse_grid.enabled,
                'padding_km': self.coarse_grid.padding_km,
                'grid_resolution': self.coarse_grid.grid_resolution,
            },
            'local_refinement': {
                'enabled': self.local_refinement.enabled,
                'top_k': self.local_refinement.top_k,
                'refinement_radius_km': self.local_refinement.refinement_radius_km,
                'fine_grid_resolution': self.local_refinement.fine_grid_resolution,
            },
        }


DEFAULT_OPTIMIZATION_CONFIG = OptimizationConfig()


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_optimization_mode(mode) -> OptimizationMode:
    try:
        return OptimizationMode(mode)
    except ValueError:
        valid = ', '.join(m.value for m in OptimizationMode)
        raise OptimizationConfigError(f"Invalid optimization mode: {mode}. Must be one of: {valid}", 'mode')


def validate_coarse_grid_config(config: CoarseGridConfig) -> None:
    if not _is_number(config.padding_km):
        raise OptimizationConfigError(f"Invalid padding: {config.padding_km!r}. Must be a finite number",
                                      'coarse_grid.padding_km')
    if not (0 <= config.padding_km <= 50):
        raise OptimizationConfigError(f"Invalid padding: {config.padding_km}km. Must be between 0 and 50 kilometers",
                                      'coarse_grid.padding_km')
    if not _is_int(config.grid_resolution):
        raise OptimizationConfigError(f"Invalid grid resolution: {config.grid_resolution!r}. Must be an integer",
                                      'coarse_grid.grid_resolution')
    if not (2 <= config.grid_resolution <= 10):
        raise OptimizationConfigError(f"Invalid grid resolution: {config.grid_resolution}. Must be between 2 and 10",
                                      'coarse_grid.grid_resolution')


def validate_local_refinement_config(config: LocalRefinementConfig) -> None:
    if not _is_int(config.top_k) or not (1 <= config.top_k <= 10):
        raise OptimizationConfigError(f"Invalid top_k: {config.top_k!r}. Must be an integer between 1 and 10",
                                      'local_refinement.top_k')
    if not _is_number(config.refinement_radius_km) or not (0.5 <= config.refinement_radius_km <= 10):
        raise OptimizationConfigError(
            f"Invalid refinement radius: {config.refinement_radius_km!r}km. Must be between 0.5 and 10 kilometers",
            'local_refinement.refinement_radius_km')
    if not _is_int(config.fine_grid_resolution) or not (2 <= config.fine_grid_resolution <= 5):
        raise OptimizationConfigError(
            f"Invalid fine grid resolution: {config.fine_grid_resolution!r}. Must be an integer between 2 and 5",
            'local_refinement.fine_grid_resolution')
    per_candidate = config.fine_grid_resolution ** 2
    total = per_candidate * config.top_k
    if total > 75:
        raise OptimizationConfigError(
            f"Local refinement configuration creates {total} points ({config.top_k} candidates x {per_candidate} "
            f"points each), exceeding maximum of 75",
            'local_refinement')


def estimate_hypothesis_points(config: OptimizationConfig) -> int:
    total = ESTIMATED_PHASE0_POINTS
    if config.coarse_grid.enabled:
        total += config.coarse_grid.grid_resolution ** 2
    if config.local_refinement.enabled:
        total += config.local_refinement.fine_grid_resolution ** 2 * config.local_refinement.top_k
    return total


def validate_api_usage(config: OptimizationConfig) -> int:
    """Reject configurations estimated above the per-request destination budget."""
    total = estimate_hypothesis_points(config)
    if total > API_USAGE_MAX_POINTS:
        raise OptimizationConfigError(
            f"Configuration would generate approximately {total} hypothesis points, "
            f"exceeding the limit of {API_USAGE_MAX_POINTS}",
            'api_usage')
    if total > API_USAGE_WARNING_POINTS:
        logger.warning(f"Configuration will generate approximately {total} hypothesis points, "
                       f"which may result in slower response times")
    return total


def validate_optimization_config(config: OptimizationConfig) -> None:
    validate_optimization_mode(config.mode)
    validate_coarse_grid_config(config.coarse_grid)
    validate_local_refinement_config(config.local_refinement)

    if config.mode in (OptimizationMode.COARSE_GRID, OptimizationMode.FULL_REFINEMENT) and not config.coarse_grid.enabled:
        raise OptimizationConfigError(f"Coarse grid must be enabled for mode: {config.mode.value}", 'coarse_grid.enabled')
    if config.mode == OptimizationMode.FULL_REFINEMENT and not config.local_refinement.enabled:
        raise OptimizationConfigError(f"Local refinement must be enabled for mode: {config.mode.value}",
                                      'local_refinement.enabled')
    validate_api_usage(config)


def create_optimization_config(mode, coarse_grid: Optional[Dict] = None,
                               local_refinement: Optional[Dict] = None) -> OptimizationConfig:
    """Mode defaults with optional per-section overrides, validated."""
    mode = validate_optimization_mode(mode)
    grid = CoarseGridConfig(enabled=mode != OptimizationMode.BASELINE)
    refinement = LocalRefinementConfig(enabled=mode == OptimizationMode.FULL_REFINEMENT)
    try:
        if coarse_grid:
            grid = replace(grid, **coarse_grid)
        if local_refinement:
            refinement = replace(refinement, **local_refinement)
    except TypeError as e:
        raise OptimizationConfigError(f"Unknown optimization option: {e}")

    config = OptimizationConfig(mode=mode, coarse_grid=grid, local_refinement=refinement)
    validate_optimization_config(config)
    return config
