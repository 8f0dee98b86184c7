"""
Utility functions for lateration.

This module provides position comparison, singularity handling in range
Jacobians and source geometry checks.
"""

from .geometry import (
    check_source_geometry,
    normalize_jacobian_singularities,
    position_distance,
    positions_equal,
)

__all__ = [
    'position_distance',
    'positions_equal',
    'normalize_jacobian_singularities',
    'check_source_geometry',
]
