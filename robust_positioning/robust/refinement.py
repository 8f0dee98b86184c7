"""
Refinement of the best consensus hypothesis.

The position found from a minimal subset is re-solved with the nonlinear
lateration solver over the inliers (or over all readings, with outliers
down-weighted), seeded at the hypothesis. The covariance of the refined
position is (J'WJ)⁻¹, computed strictly: a non positive-definite information
matrix raises CovarianceError.
"""

import warnings
from typing import Optional, Tuple

import numpy as np

from robust_positioning.errors import LaterationError
from robust_positioning.lateration.solvers import (
    NonLinearLaterationSolver,
    min_required_entries,
)


def inflate_outlier_stds(
    distance_stds: np.ndarray,
    residuals: np.ndarray,
    inliers: np.ndarray,
    threshold: float,
) -> np.ndarray:
    """
    Scale the standard deviation of each outlier by residual / threshold.

    Inliers keep their standard deviation; an outlier with a residual k times
    the threshold gets k times its standard deviation (weight divided by k²).
    """
    factors = np.ones_like(distance_stds)
    outliers = ~inliers
    if threshold > 0:
        factors[outliers] = np.maximum(residuals[outliers] / threshold, 1.0)
    return distance_stds * factors


def refine_position(
    position: np.ndarray,
    positions: np.ndarray,
    distances: np.ndarray,
    distance_stds: Optional[np.ndarray],
    inliers: Optional[np.ndarray],
    residuals: Optional[np.ndarray] = None,
    inlier_threshold: Optional[float] = None,
    result_refined: bool = True,
    covariance_kept: bool = True,
    refine_with_all_readings: bool = False,
    nonlinear_solver: Optional[NonLinearLaterationSolver] = None,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Refine a consensus hypothesis and estimate its covariance.

    Without refinement, or when refinement fails, the hypothesis is returned
    unchanged with no covariance.

    Args:
        position: Best hypothesis, shape (N,).
        positions: Source position of every reading, shape (M, N).
        distances: Distance of every reading, shape (M,).
        distance_stds: Standard deviation of every reading, or None.
        inliers: Inlier mask of the hypothesis, shape (M,).
        residuals: Residuals of the hypothesis (needed to down-weight outliers).
        inlier_threshold: Residual threshold of the inliers.
        result_refined: Whether to refine at all.
        covariance_kept: Whether to compute the covariance.
        refine_with_all_readings: Refine over all readings with outlier
                                  standard deviations inflated.
        nonlinear_solver: Solver instance to use.

    Returns:
        Tuple of (position, covariance); covariance may be None.

    Raises:
        CovarianceError: If a covariance was requested and the refined
                         information matrix is not positive definite.
    """
    if not result_refined or inliers is None:
        return position, None

    if nonlinear_solver is None:
        nonlinear_solver = NonLinearLaterationSolver()

    if refine_with_all_readings and residuals is not None and inlier_threshold is not None:
        stds = distance_stds if distance_stds is not None else np.ones_like(distances)
        sub_positions = positions
        sub_distances = distances
        sub_stds = inflate_outlier_stds(stds, residuals, inliers, inlier_threshold)
    else:
        sub_positions = positions[inliers]
        sub_distances = distances[inliers]
        sub_stds = distance_stds[inliers] if distance_stds is not None else None

    n_required = min_required_entries(positions.shape[1])
    if len(sub_distances) < n_required:
        warnings.warn(
            f"Only {len(sub_distances)} inliers, at least {n_required} are needed "
            "to refine. Keeping the unrefined position.",
            RuntimeWarning,
        )
        return position, None

    try:
        refined, covariance = nonlinear_solver.solve_with_covariance(
            sub_positions,
            sub_distances,
            sub_stds,
            initial_position=position,
            return_covariance=covariance_kept,
        )
    except LaterationError as e:
        warnings.warn(
            f"Refinement failed ({e}). Keeping the unrefined position.",
            RuntimeWarning,
        )
        return position, None

    return refined, covariance
