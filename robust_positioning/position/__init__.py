"""
Robust position estimation from radio sources and fingerprints.
"""

from robust_positioning.position.estimator import (
    RobustPositionEstimator,
    RobustPositionEstimatorListener,
    create_robust_position_estimator,
)

__all__ = [
    "RobustPositionEstimator",
    "RobustPositionEstimatorListener",
    "create_robust_position_estimator",
]
