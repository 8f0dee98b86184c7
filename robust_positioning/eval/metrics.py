"""
Error summaries of Monte Carlo position estimates.

Position errors are the vectors x̂ - x of every trial. The summary statistics
use their norms; NEES checks the reported covariance against those errors.
"""

from typing import Dict, Optional, Sequence

import numpy as np

from robust_positioning.errors import CovarianceError
from robust_positioning.estimators.covariance import invert_positive_definite


def compute_error_stats(errors: np.ndarray) -> Dict[str, float]:
    """
    Summarize error norms over trials.

    Args:
        errors: Error vectors, shape (K, d), or error norms, shape (K,).

    Returns:
        Dictionary with 'mean', 'median', 'p95' and 'max' of the norms, in
        the unit of the errors.

    Raises:
        ValueError: If there are no errors.
    """
    errors = np.asarray(errors, dtype=float)
    norms = np.linalg.norm(errors, axis=1) if errors.ndim == 2 else np.abs(errors)
    if norms.size == 0:
        raise ValueError("No errors to summarize")

    mean, median, p95, largest = (
        np.mean(norms), np.median(norms), np.percentile(norms, 95), np.max(norms)
    )
    return {"mean": float(mean), "median": float(median), "p95": float(p95), "max": float(largest)}


def compute_nees(
    errors: np.ndarray, covariances: Sequence[Optional[np.ndarray]]
) -> np.ndarray:
    """
    Normalized estimation error squared of every trial.

        NEES = eᵀ P⁻¹ e

    A consistent covariance gives a mean NEES close to the dimension d.

    Args:
        errors: Error vectors x̂ - x, shape (K, d).
        covariances: Covariance of each estimate, shape (d, d), or None when
                     the estimator reported none.

    Returns:
        NEES values, shape (K,). NaN where the covariance is missing or not
        positive definite.
    """
    errors = np.asarray(errors, dtype=float)
    if errors.ndim != 2 or len(covariances) != len(errors):
        raise ValueError(
            f"Expected one covariance per error vector, got {len(covariances)} "
            f"covariances for errors of shape {errors.shape}"
        )

    nees = np.full(len(errors), np.nan)
    for i, (error, covariance) in enumerate(zip(errors, covariances)):
        if covariance is None:
            continue
        try:
            nees[i] = error @ invert_positive_definite(covariance) @ error
        except CovarianceError:
            continue
    return nees
