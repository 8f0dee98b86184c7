"""
Linear least squares kernels.

This module implements the linear solvers used by the closed-form lateration
methods.

Functions:
    - linear_least_squares: Inhomogeneous LS, x̂ = argmin ||Ax - b||²
    - homogeneous_least_squares: Homogeneous LS, ĥ = argmin ||Ah|| s.t. ||h|| = 1
"""

from typing import Optional, Tuple

import numpy as np


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = True
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x_hat = argmin ||Ax - b||²
    Solution: x_hat = (A'A)^(-1) A'b

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix.

    Returns:
        Tuple of:
            - x_hat: Estimated state vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        ValueError: If A and b dimensions don't match or A is rank deficient.

    Example:
        >>> import numpy as np
        >>> A = np.array([[1, 1], [1, 2], [1, 3]])
        >>> b = np.array([3.0, 5.0, 7.0])
        >>> x_hat, _ = linear_least_squares(A, b, return_covariance=False)
        >>> np.round(x_hat, 6)
        array([1., 2.])
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)

    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")

    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")

    # Check rank
    rank = np.linalg.matrix_rank(A)
    if rank < n:
        raise ValueError(
            f"A is rank deficient: rank={rank} < n={n}. " f"System has no unique solution."
        )

    # Normal equations: A'A x = A'b
    ATA = A.T @ A
    ATb = A.T @ b

    try:
        x_hat = np.linalg.solve(ATA, ATb)
    except np.linalg.LinAlgError as e:
        raise ValueError(f"Failed to solve normal equations: {e}")

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        # Estimated measurement variance (unbiased)
        if m > n:
            sigma2 = np.sum(residuals**2) / (m - n)
        else:
            sigma2 = 1.0  # Exact fit case

        P = sigma2 * np.linalg.inv(ATA)

    return x_hat, P


def homogeneous_least_squares(A: np.ndarray) -> np.ndarray:
    """
    Homogeneous least squares estimation.

    Solves: h_hat = argmin ||Ah||² subject to ||h|| = 1

    The solution is the right singular vector of A associated with its
    smallest singular value.

    Args:
        A: Design matrix (m × n), where m ≥ n - 1.

    Returns:
        Unit-norm solution vector h_hat (n,).

    Raises:
        ValueError: If A has too few rows or its null space is not
                    one-dimensional (solution not unique).

    Example:
        >>> import numpy as np
        >>> A = np.array([[1.0, 0.0, -2.0], [0.0, 1.0, -3.0]])
        >>> h = homogeneous_least_squares(A)
        >>> np.round(h / h[-1], 6)
        array([2., 3., 1.])
    """
    A = np.asarray(A, dtype=float)

    if A.ndim != 2:
        raise ValueError(f"A must be 2D, got shape {A.shape}")

    m, n = A.shape
    if m < n - 1:
        raise ValueError(f"Underdetermined system: m={m} < n-1={n - 1}.")

    # Pad with zero rows so that V is always complete
    if m < n:
        A = np.vstack([A, np.zeros((n - m, n))])

    _, singular_values, Vt = np.linalg.svd(A)

    # Null space must be one-dimensional: the second smallest singular value
    # has to be clearly non-zero
    scale = singular_values[0] if singular_values[0] > 0 else 1.0
    if singular_values[n - 2] <= 1e-12 * scale:
        raise ValueError(
            "A is rank deficient: homogeneous system has no unique solution."
        )

    return Vt[-1]
