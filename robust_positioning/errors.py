"""
Exception types raised by the robust positioning estimators.

Argument validation follows the usual convention of raising ``ValueError``
at the offending call. The classes below cover the conditions that depend on
the state of an estimator or on the numerics of a solve.

Hierarchy:
    PositioningError (RuntimeError)
        NotReadyError        - estimate() called before inputs are complete
        LockedError          - mutation or re-entrant call while running
        LaterationError      - a lateration solve failed (degenerate subset)
        RobustEstimatorError - no hypothesis reached consensus
        CovarianceError      - covariance is not positive definite
"""

import numpy as np


class PositioningError(RuntimeError):
    """Base class for runtime errors of the positioning estimators."""


class NotReadyError(PositioningError):
    """Raised when an estimation is requested before the estimator is ready."""


class LockedError(PositioningError):
    """Raised when an estimator is modified or re-entered while running."""


class LaterationError(PositioningError):
    """Raised when a lateration solver cannot produce a position."""


class RobustEstimatorError(PositioningError):
    """Raised when robust estimation finds no valid hypothesis."""


class CovarianceError(PositioningError, np.linalg.LinAlgError):
    """Raised when an estimated covariance is not positive definite."""
