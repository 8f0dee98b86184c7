"""
Estimation kernels for lateration.

Submodules:
    least_squares: linear and homogeneous least squares
    nonlinear_least_squares: Levenberg-Marquardt
    covariance: strict covariance inversion
"""

from robust_positioning.estimators.covariance import (
    check_covariance,
    invert_positive_definite,
    least_squares_covariance,
    symmetrize,
)
from robust_positioning.estimators.least_squares import (
    homogeneous_least_squares,
    linear_least_squares,
)
from robust_positioning.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    "homogeneous_least_squares",
    # Nonlinear LS
    "NonlinearLSResult",
    "levenberg_marquardt",
    # Covariance
    "invert_positive_definite",
    "least_squares_covariance",
    "check_covariance",
    "symmetrize",
]
