"""Position accuracy from an estimate covariance.

A position estimate x̂ with covariance P lies, with probability α, inside the
ellipse (ellipsoid in 3D)

    (x - x̂)ᵀ P⁻¹ (x - x̂) ≤ χ²(N, α)

where χ²(N, α) is the α-quantile of the chi-square distribution with N degrees
of freedom. Its semi-axes are k·√λᵢ, with λᵢ the eigenvalues of P and
k = √χ²(N, α) the standard deviation factor.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy import stats

from robust_positioning.estimators.covariance import check_covariance


DEFAULT_CONFIDENCE = 0.95


def _check_confidence(confidence: float) -> None:
    if not 0.0 < confidence < 1.0:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")


def standard_deviation_factor(confidence: float, n_dims: int) -> float:
    """
    Number of standard deviations k enclosing a probability mass.

    Args:
        confidence: Probability α in (0, 1).
        n_dims: Number of dimensions N.

    Returns:
        k = √χ²(N, α).

    Example:
        >>> round(standard_deviation_factor(0.95, 2), 4)
        2.4477
    """
    _check_confidence(confidence)
    return float(np.sqrt(stats.chi2.ppf(confidence, df=n_dims)))


def confidence_from_factor(factor: float, n_dims: int) -> float:
    """Probability mass enclosed by k standard deviations in N dimensions."""
    if factor <= 0:
        raise ValueError(f"factor must be positive, got {factor}")
    return float(stats.chi2.cdf(factor**2, df=n_dims))


def confidence_ellipse(
    covariance: np.ndarray, confidence: float = DEFAULT_CONFIDENCE
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Semi-axes and orientation of the confidence ellipse (ellipsoid).

    Args:
        covariance: Position covariance (N × N).
        confidence: Probability α in (0, 1).

    Returns:
        Tuple of:
            - semi_axes: Semi-axis lengths in decreasing order, shape (N,).
            - axes: Unit directions of the semi-axes as columns, shape (N, N).

    Raises:
        ValueError: If confidence is out of range.
        CovarianceError: If covariance is not positive semi-definite.
    """
    covariance = check_covariance(covariance)
    factor = standard_deviation_factor(confidence, covariance.shape[0])

    eigenvalues, eigenvectors = np.linalg.eigh(covariance)
    order = np.argsort(eigenvalues)[::-1]
    eigenvalues = np.maximum(eigenvalues[order], 0.0)

    return factor * np.sqrt(eigenvalues), eigenvectors[:, order]


def confidence_radius(
    covariance: np.ndarray,
    confidence: float = DEFAULT_CONFIDENCE,
    mode: str = "largest",
) -> float:
    """
    Radius of the circle (sphere) that summarizes the confidence ellipse.

    Args:
        covariance: Position covariance (N × N).
        confidence: Probability α in (0, 1).
        mode: "largest" (conservative, bounds the ellipse), "smallest", or
              "average" semi-axis.

    Returns:
        Radius in the units of the position.

    Example:
        >>> round(confidence_radius(np.eye(2) * 0.25, 0.95), 4)
        1.2239
    """
    semi_axes, _ = confidence_ellipse(covariance, confidence)
    if mode == "largest":
        return float(semi_axes[0])
    if mode == "smallest":
        return float(semi_axes[-1])
    if mode == "average":
        return float(np.mean(semi_axes))
    raise ValueError(f"Unknown mode: {mode}. Use 'largest', 'smallest' or 'average'.")


@dataclass
class Accuracy:
    """Accuracy summary of a position covariance at a confidence level.

    Attributes:
        confidence: Probability α of the confidence region.
        standard_deviation_factor: k = √χ²(N, α).
        semi_axes: Semi-axis lengths, decreasing.
        axes: Semi-axis directions as columns.
    """

    confidence: float
    standard_deviation_factor: float
    semi_axes: np.ndarray
    axes: np.ndarray

    @property
    def largest_accuracy(self) -> float:
        return float(self.semi_axes[0])

    @property
    def smallest_accuracy(self) -> float:
        return float(self.semi_axes[-1])

    @property
    def average_accuracy(self) -> float:
        return float(np.mean(self.semi_axes))

    @classmethod
    def from_covariance(
        cls, covariance: np.ndarray, confidence: float = DEFAULT_CONFIDENCE
    ) -> "Accuracy":
        semi_axes, axes = confidence_ellipse(covariance, confidence)
        return cls(
            confidence=confidence,
            standard_deviation_factor=standard_deviation_factor(confidence, len(semi_axes)),
            semi_axes=semi_axes,
            axes=axes,
        )
