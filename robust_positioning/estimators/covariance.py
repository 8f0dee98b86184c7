"""
Strict covariance computation.

The covariance of a least-squares estimate is the inverse of its information
matrix J'WJ. When the information matrix is not positive definite the
estimate is not observable along some direction and no meaningful covariance
exists; these functions report that with CovarianceError instead of clamping
eigenvalues or falling back to a pseudo-inverse.
"""

from typing import Optional

import numpy as np

from robust_positioning.errors import CovarianceError


# Relative tolerance used for symmetry and semi-definiteness checks
SYMMETRY_TOL = 1e-9
PSD_TOL = 1e-12


def invert_positive_definite(information: np.ndarray) -> np.ndarray:
    """
    Invert a symmetric positive-definite matrix through its Cholesky factor.

        I = L L'   →   I⁻¹ = L'⁻¹ L⁻¹

    Args:
        information: Symmetric positive-definite matrix (n × n).

    Returns:
        Symmetric inverse (n × n).

    Raises:
        ValueError: If the input is not a square matrix.
        CovarianceError: If the matrix is not finite, not symmetric or not
                         positive definite.

    Example:
        >>> invert_positive_definite(np.array([[4.0, 0.0], [0.0, 2.0]]))
        array([[0.25, 0.  ],
               [0.  , 0.5 ]])
    """
    information = np.asarray(information, dtype=float)
    if information.ndim != 2 or information.shape[0] != information.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {information.shape}")

    if not np.all(np.isfinite(information)):
        raise CovarianceError("Information matrix contains non-finite values")

    scale = max(np.max(np.abs(information)), 1.0)
    if np.max(np.abs(information - information.T)) > SYMMETRY_TOL * scale:
        raise CovarianceError("Information matrix is not symmetric")

    try:
        L = np.linalg.cholesky(information)
    except np.linalg.LinAlgError as e:
        raise CovarianceError(f"Information matrix is not positive definite: {e}") from e

    n = information.shape[0]
    L_inv = np.linalg.solve(L, np.eye(n))
    covariance = L_inv.T @ L_inv

    return symmetrize(covariance)


def symmetrize(matrix: np.ndarray) -> np.ndarray:
    """Return ½(A + A')."""
    matrix = np.asarray(matrix, dtype=float)
    return 0.5 * (matrix + matrix.T)


def check_covariance(covariance: np.ndarray) -> np.ndarray:
    """
    Validate that a covariance matrix is symmetric positive semi-definite.

    Args:
        covariance: Candidate covariance (n × n).

    Returns:
        The symmetrized covariance.

    Raises:
        CovarianceError: If the matrix has a significantly negative eigenvalue
                         or is not finite.
    """
    covariance = symmetrize(covariance)
    if not np.all(np.isfinite(covariance)):
        raise CovarianceError("Covariance contains non-finite values")

    eigenvalues = np.linalg.eigvalsh(covariance)
    scale = max(np.max(np.abs(eigenvalues)), 1.0)
    if eigenvalues[0] < -PSD_TOL * scale:
        raise CovarianceError(
            f"Covariance is not positive semi-definite (min eigenvalue {eigenvalues[0]:.3e})"
        )
    return covariance


def least_squares_covariance(
    J: np.ndarray,
    weights: Optional[np.ndarray] = None,
    sigma2: float = 1.0,
) -> np.ndarray:
    """
    Covariance of a weighted least-squares estimate, P = σ² (J'WJ)⁻¹.

    Args:
        J: Jacobian at the estimate (m × n).
        weights: Measurement weights (m,), typically 1/σᵢ². Uniform if None.
        sigma2: Residual variance factor. Use 1.0 when the weights already
                carry the measurement variances.

    Returns:
        Covariance matrix (n × n).

    Raises:
        CovarianceError: If J'WJ is not positive definite.
    """
    J = np.asarray(J, dtype=float)
    if weights is None:
        JtWJ = J.T @ J
    else:
        weights = np.asarray(weights, dtype=float)
        JtWJ = (J.T * weights) @ J

    return check_covariance(sigma2 * invert_positive_definite(symmetrize(JtWJ)))
