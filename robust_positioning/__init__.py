"""Robust radio-source positioning.

This package estimates a receiver position from ranging and RSSI readings of
radio sources with known positions, tolerating outlier readings:
- types: Radio sources, readings, fingerprints and estimation results
- lateration: Linear and nonlinear lateration solvers
- robust: RANSAC, LMedS, MSAC, PROSAC and PROMedS consensus estimation
- position: Robust position estimator and factory
- eval: Accuracy, error metrics and plots
"""

from robust_positioning.errors import (
    CovarianceError,
    LaterationError,
    LockedError,
    NotReadyError,
    PositioningError,
    RobustEstimatorError,
)
from robust_positioning.position import (
    RobustPositionEstimator,
    RobustPositionEstimatorListener,
    create_robust_position_estimator,
)
from robust_positioning.robust import (
    EstimatorState,
    RobustEstimatorMethod,
    RobustLaterationSolver,
)
from robust_positioning.types import (
    EstimateResult,
    Fingerprint,
    InliersData,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
)

__version__ = "0.1.0"

__all__ = [
    "RadioSource",
    "RangingReading",
    "RssiReading",
    "RangingAndRssiReading",
    "Fingerprint",
    "InliersData",
    "EstimateResult",
    "RobustEstimatorMethod",
    "EstimatorState",
    "RobustLaterationSolver",
    "RobustPositionEstimator",
    "RobustPositionEstimatorListener",
    "create_robust_position_estimator",
    "PositioningError",
    "NotReadyError",
    "LockedError",
    "LaterationError",
    "RobustEstimatorError",
    "CovarianceError",
]
