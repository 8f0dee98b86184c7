"""
Lateration solvers.

Lateration computes the position x of a receiver from the known positions pᵢ
of M sources and the measured distances dᵢ to them:

    ‖x - pᵢ‖ = dᵢ,   i = 1..M,   M ≥ N + 1

Three solvers are provided:

- InhomogeneousLinearLaterationSolver: subtracts the equation of the first
  source from the others, which cancels ‖x‖² and leaves an (M-1)×N linear
  system 2(pᵢ - p₀)'x = ‖pᵢ‖² - ‖p₀‖² - dᵢ² + d₀².
- HomogeneousLinearLaterationSolver: treats ‖x‖² as an extra unknown and
  solves the homogeneous system [-2pᵢ', 1, ‖pᵢ‖² - dᵢ²] h = 0 through its SVD
  null vector.
- NonLinearLaterationSolver: Levenberg-Marquardt on the weighted distance
  residuals Σ wᵢ (‖x - pᵢ‖ - dᵢ)², with wᵢ = 1/σᵢ².

Every solver is a pure function of its inputs: precondition violations raise
ValueError and numerical failures (degenerate geometry, singular systems,
non-convergence) raise LaterationError.
"""

from typing import Optional, Tuple

import numpy as np

from robust_positioning.errors import LaterationError
from robust_positioning.estimators.least_squares import (
    homogeneous_least_squares,
    linear_least_squares,
)
from robust_positioning.estimators.nonlinear_least_squares import levenberg_marquardt
from robust_positioning.utils.geometry import (
    check_source_geometry,
    normalize_jacobian_singularities,
)


def min_required_entries(n_dims: int) -> int:
    """Minimum number of (position, distance) pairs to solve a position."""
    if n_dims not in (2, 3):
        raise ValueError(f"n_dims must be 2 or 3, got {n_dims}")
    return n_dims + 1


def _validate_inputs(
    positions: np.ndarray,
    distances: np.ndarray,
    distance_stds: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)

    if positions.ndim != 2 or positions.shape[1] not in (2, 3):
        raise ValueError(f"positions must have shape (M, 2) or (M, 3), got {positions.shape}")
    if distances.shape != (positions.shape[0],):
        raise ValueError(
            f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
        )

    n_required = min_required_entries(positions.shape[1])
    if positions.shape[0] < n_required:
        raise ValueError(
            f"At least {n_required} positions and distances are required, "
            f"got {positions.shape[0]}"
        )

    if distance_stds is not None:
        distance_stds = np.asarray(distance_stds, dtype=float)
        if distance_stds.shape != distances.shape:
            raise ValueError(
                f"Expected {len(distances)} standard deviations, got shape {distance_stds.shape}"
            )
        if np.any(distance_stds <= 0.0):
            raise ValueError("Distance standard deviations must be positive")

    return positions, distances, distance_stds


def _check_geometry(positions: np.ndarray) -> None:
    is_valid, msg = check_source_geometry(positions)
    if not is_valid:
        raise LaterationError(f"Degenerate source geometry: {msg}")


class InhomogeneousLinearLaterationSolver:
    """
    Closed-form lateration through an inhomogeneous linear system.

    Example:
        >>> solver = InhomogeneousLinearLaterationSolver()
        >>> sources = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        >>> ranges = np.linalg.norm(sources - np.array([3.0, 4.0]), axis=1)
        >>> np.round(solver.solve(sources, ranges), 6)
        array([3., 4.])
    """

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Solve for the receiver position.

        Args:
            positions: Source positions, shape (M, N).
            distances: Measured distances, shape (M,).
            distance_stds: Ignored by the linear solver; accepted so that all
                           solvers share one call signature.

        Returns:
            Estimated position, shape (N,).

        Raises:
            ValueError: If inputs are inconsistent or too few.
            LaterationError: If the source geometry is degenerate.
        """
        positions, distances, _ = _validate_inputs(positions, distances, distance_stds)
        _check_geometry(positions)

        p0 = positions[0]
        d0 = distances[0]
        A = 2.0 * (positions[1:] - p0)
        b = (
            np.sum(positions[1:] ** 2, axis=1)
            - np.sum(p0**2)
            - distances[1:] ** 2
            + d0**2
        )

        try:
            x_hat, _ = linear_least_squares(A, b, return_covariance=False)
        except ValueError as e:
            raise LaterationError(f"Linear lateration failed: {e}") from e

        return x_hat


class HomogeneousLinearLaterationSolver:
    """
    Closed-form lateration through a homogeneous linear system.

    The unknown vector is h = s·[x, ‖x‖², 1] for an arbitrary scale s; the
    position is recovered by dividing by the last component.
    """

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Solve for the receiver position.

        Args:
            positions: Source positions, shape (M, N).
            distances: Measured distances, shape (M,).
            distance_stds: Ignored by the linear solver.

        Returns:
            Estimated position, shape (N,).

        Raises:
            ValueError: If inputs are inconsistent or too few.
            LaterationError: If the geometry is degenerate or the null vector
                             lies at infinity.
        """
        positions, distances, _ = _validate_inputs(positions, distances, distance_stds)
        _check_geometry(positions)

        m, n = positions.shape

        # Normalize to improve conditioning
        centroid = np.mean(positions, axis=0)
        scale = np.sqrt(np.mean(np.sum((positions - centroid) ** 2, axis=1)))
        p = (positions - centroid) / scale
        d = distances / scale

        A = np.empty((m, n + 2))
        A[:, :n] = -2.0 * p
        A[:, n] = 1.0
        A[:, n + 1] = np.sum(p**2, axis=1) - d**2

        try:
            h = homogeneous_least_squares(A)
        except ValueError as e:
            raise LaterationError(f"Homogeneous lateration failed: {e}") from e

        if abs(h[-1]) < 1e-12 * np.linalg.norm(h):
            raise LaterationError("Homogeneous lateration solution lies at infinity")

        return h[:n] / h[-1] * scale + centroid


class NonLinearLaterationSolver:
    """
    Iterative weighted lateration using Levenberg-Marquardt.

    The initial position is, in order of preference, the one given to
    ``solve``, the inhomogeneous linear solution, and the centroid of the
    sources.

    Args:
        max_iter: Maximum number of Levenberg-Marquardt iterations.
        tol: Relative convergence tolerance on the step size.
    """

    def __init__(self, max_iter: int = 100, tol: float = 1e-10):
        if max_iter < 1:
            raise ValueError(f"max_iter must be at least 1, got {max_iter}")
        if tol <= 0:
            raise ValueError(f"tol must be positive, got {tol}")
        self.max_iter = max_iter
        self.tol = tol
        self._linear_solver = InhomogeneousLinearLaterationSolver()

    def solve(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Solve for the receiver position. See ``solve_with_covariance``."""
        position, _ = self.solve_with_covariance(
            positions, distances, distance_stds, initial_position, return_covariance=False
        )
        return position

    def solve_with_covariance(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        return_covariance: bool = True,
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Solve for the receiver position and, optionally, its covariance.

        With standard deviations the covariance is (J'WJ)⁻¹ with W = diag(1/σᵢ²);
        without them it is scaled by the a-posteriori residual variance.

        Args:
            positions: Source positions, shape (M, N).
            distances: Measured distances, shape (M,).
            distance_stds: Optional standard deviations of the distances (M,).
            initial_position: Optional starting point, shape (N,).
            return_covariance: Whether to compute the covariance.

        Returns:
            Tuple of (position, covariance). covariance is None when not requested.

        Raises:
            ValueError: If inputs are inconsistent or too few.
            LaterationError: If the geometry is degenerate or the solver does
                             not converge.
            CovarianceError: If a covariance was requested and the information
                             matrix is not positive definite.
        """
        positions, distances, distance_stds = _validate_inputs(
            positions, distances, distance_stds
        )
        _check_geometry(positions)
        n_dims = positions.shape[1]

        if initial_position is not None:
            x0 = np.asarray(initial_position, dtype=float)
            if x0.shape != (n_dims,):
                raise ValueError(
                    f"initial_position must have shape ({n_dims},), got {x0.shape}"
                )
        else:
            try:
                x0 = self._linear_solver.solve(positions, distances)
            except LaterationError:
                x0 = np.mean(positions, axis=0)

        weights = None if distance_stds is None else 1.0 / distance_stds**2

        def h(x):
            return np.linalg.norm(x - positions, axis=1)

        def jacobian(x):
            diff = x - positions
            ranges = np.linalg.norm(diff, axis=1)
            return normalize_jacobian_singularities(diff, ranges, warn=False)

        result = levenberg_marquardt(
            h,
            jacobian,
            distances,
            x0,
            weights=weights,
            max_iter=self.max_iter,
            tol=self.tol,
            return_covariance=return_covariance,
            scale_covariance=distance_stds is None,
        )

        if not np.all(np.isfinite(result.x)):
            raise LaterationError("Nonlinear lateration diverged")
        if not result.converged:
            raise LaterationError(
                f"Nonlinear lateration did not converge in {result.iterations} iterations"
            )

        return result.x, result.covariance


def solve_preliminary(
    positions: np.ndarray,
    distances: np.ndarray,
    distance_stds: Optional[np.ndarray] = None,
    initial_position: Optional[np.ndarray] = None,
    linear_solver_used: bool = True,
    homogeneous_linear_solver_used: bool = False,
    preliminary_solution_refined: bool = True,
    nonlinear_solver: Optional[NonLinearLaterationSolver] = None,
) -> np.ndarray:
    """
    Solve one candidate position from a subset of readings.

    The linear solver (homogeneous or inhomogeneous) runs first when enabled.
    Its result is refined with the nonlinear solver when
    ``preliminary_solution_refined`` is set; when the linear solver is
    disabled, the nonlinear solver starts from ``initial_position``.

    Args:
        positions: Source positions of the subset, shape (M, N).
        distances: Distances of the subset, shape (M,).
        distance_stds: Standard deviations of the subset, shape (M,), or None.
        initial_position: Starting point used when no linear solution exists.
        linear_solver_used: Whether to compute a closed-form solution first.
        homogeneous_linear_solver_used: Use the homogeneous linear system
                                        instead of the inhomogeneous one.
        preliminary_solution_refined: Refine the linear solution iteratively.
        nonlinear_solver: Solver instance to reuse.

    Returns:
        Candidate position, shape (N,).

    Raises:
        ValueError: If inputs are inconsistent or too few.
        LaterationError: If the subset cannot be solved.
    """
    estimated = None
    if linear_solver_used:
        if homogeneous_linear_solver_used:
            linear_solver = HomogeneousLinearLaterationSolver()
        else:
            linear_solver = InhomogeneousLinearLaterationSolver()
        estimated = linear_solver.solve(positions, distances)

    if preliminary_solution_refined or estimated is None:
        if nonlinear_solver is None:
            nonlinear_solver = NonLinearLaterationSolver()
        seed = estimated if estimated is not None else initial_position
        estimated = nonlinear_solver.solve(
            positions, distances, distance_stds, initial_position=seed
        )

    return estimated
