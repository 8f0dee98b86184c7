"""
Geometric utilities for lateration.

Provides functions for:
- Position comparison and distances
- Singularity handling in range Jacobians
- Source geometry checking (colinear / coplanar subsets)
"""

import numpy as np
from typing import Tuple
import warnings


# Singularity threshold constants
EPSILON_RANGE = 1e-10  # Minimum range for Jacobian computation (10 picometers)
EPSILON_COLINEAR = 1e-6  # Threshold for colinearity detection


def position_distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    Euclidean distance between two positions.

    Args:
        a: First position, shape (d,)
        b: Second position, shape (d,)

    Returns:
        Distance ||a - b||
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Position shape mismatch: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def positions_equal(a: np.ndarray, b: np.ndarray, tol: float = 1e-9) -> bool:
    """
    Compare two positions coordinate-wise within an absolute tolerance.

    Example:
        >>> positions_equal(np.array([1.0, 2.0]), np.array([1.0, 2.0 + 1e-12]))
        True
    """
    if tol < 0:
        raise ValueError(f"tol must be non-negative, got {tol}")
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        return False
    return bool(np.all(np.abs(a - b) <= tol))


def normalize_jacobian_singularities(
    diff: np.ndarray,
    ranges: np.ndarray,
    epsilon: float = EPSILON_RANGE,
    warn: bool = True,
) -> np.ndarray:
    """
    Safely compute normalized range Jacobian, avoiding singularities.

    Computes H[i] = diff[i] / range[i] with protection against division by zero
    when range → 0 (receiver at source position).

    Args:
        diff: Difference vectors (receiver - source), shape (N, d)
        ranges: Range values, shape (N,) or (N, 1)
        epsilon: Minimum range threshold (default: 1e-10 meters = 10 pm)
        warn: If True, warn when a singular row is zeroed

    Returns:
        Normalized Jacobian H = diff / range, shape (N, d)
        At singularities (range < epsilon), returns zero vector

    Example:
        >>> diff = np.array([[1.0, 0.0], [1e-12, 1e-12], [3.0, 4.0]])
        >>> ranges = np.array([1.0, 1e-12, 5.0])
        >>> H = normalize_jacobian_singularities(diff, ranges, warn=False)
        >>> H[1]  # Singularity -> zero vector
        array([0., 0.])
    """
    ranges = np.asarray(ranges).reshape(-1, 1)  # Ensure column vector
    diff = np.asarray(diff)

    # Clamp ranges to epsilon to avoid division by zero
    ranges_safe = np.maximum(ranges, epsilon)

    H = diff / ranges_safe

    # Zero out rows where range is below epsilon (true singularity)
    singular_mask = (ranges < epsilon).flatten()
    if np.any(singular_mask):
        H[singular_mask, :] = 0.0
        if warn:
            warnings.warn(
                f"{np.sum(singular_mask)} measurement(s) at singularity (range < {epsilon}m). "
                "Setting Jacobian rows to zero. Check source-receiver geometry.",
                RuntimeWarning
            )

    return H


def check_source_geometry(
    positions: np.ndarray,
    warn_degenerate: bool = False,
) -> Tuple[bool, str]:
    """
    Check if source geometry can determine a position.

    Performs geometric checks:
    1. Sufficient number of sources (d + 1)
    2. Sources are not colinear (2D) / coplanar (3D)

    Args:
        positions: Source positions, shape (N, d) where d=2 or 3
        warn_degenerate: If True, issue warnings for degenerate cases

    Returns:
        Tuple of (is_valid, message):
            - is_valid: True if geometry is acceptable
            - message: Description of geometry issue (empty if valid)

    Example:
        >>> # Bad 2D geometry (colinear)
        >>> positions = np.array([[0, 0], [5, 0], [10, 0]])
        >>> is_valid, msg = check_source_geometry(positions)
        >>> is_valid
        False
    """
    positions = np.asarray(positions, dtype=float)

    if positions.ndim != 2:
        return False, f"Positions must be 2D array (N, d), got shape {positions.shape}"

    n_sources, dim = positions.shape

    if dim not in [2, 3]:
        return False, f"Only 2D or 3D positioning supported, got dim={dim}"

    if n_sources < dim + 1:
        return False, (
            f"Insufficient sources: need at least {dim + 1} for {dim}D positioning, "
            f"got {n_sources}"
        )

    # Rank of the centered source matrix
    centered = positions - np.mean(positions, axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if singular_values[0] <= 0.0:
        return False, "All sources share the same position."
    rank = np.sum(singular_values > EPSILON_COLINEAR * singular_values[0])

    if rank < dim:
        if dim == 2:
            msg = f"Sources are colinear (rank {rank} < 2)."
        else:
            msg = f"Sources are coplanar (rank {rank} < 3)."

        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    return True, ""
