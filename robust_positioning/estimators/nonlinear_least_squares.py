"""
Nonlinear least squares solver using Levenberg-Marquardt.

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector.

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from robust_positioning.estimators.covariance import least_squares_covariance


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated state vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-8,
    mu0: float = 1e-3,
    return_covariance: bool = True,
    scale_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

        (J'WJ + μI) Δx = J'W r

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ with the gain ratio
    between actual and predicted cost decrease:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial state estimate (n,).
        weights: Optional measurement weights (m,) for weighted LS.
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute covariance at final estimate.
        scale_covariance: If True, scale the covariance by the a-posteriori
            residual variance r'Wr / (m - n). Set to False when the weights
            are inverse measurement variances.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        ValueError: If inputs have inconsistent shapes or negative weights.
        CovarianceError: If a covariance was requested and J'WJ is not
            positive definite at the solution.

    Example:
        >>> import numpy as np
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]])
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - anchors
        ...     ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        ...     return diff / np.maximum(ranges, 1e-10)
        >>> y = h(np.array([3.0, 4.0]))
        >>> result = levenberg_marquardt(h, jac, y, x0=np.array([1.0, 1.0]))
        >>> np.round(result.x, 6)
        array([3., 4.])
    """
    y = np.asarray(y, dtype=float)
    x = np.array(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x.shape}")

    m, n = len(y), len(x)
    weights = _check_weights(weights, m)

    def weighted_cost(state):
        r = y - h(state)
        return 0.5 * np.sum(weights * r**2)

    mu = mu0
    converged = False
    iteration = 0

    for iteration in range(max_iter):
        hx = h(x)
        if len(hx) != m:
            raise ValueError(f"h(x) returned {len(hx)} elements, expected {m}")
        J = jacobian(x)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        JtW = J.T * weights
        step, mu = _damped_step(
            JtW @ J, JtW @ (y - hx), weighted_cost(x), x, weighted_cost, mu
        )
        x = x + step

        if np.linalg.norm(step) < tol * (1.0 + np.linalg.norm(x)):
            converged = True
            break

    residuals = y - h(x)

    P = None
    if return_covariance:
        sigma2 = 1.0
        if scale_covariance and m > n:
            sigma2 = np.sum(weights * residuals**2) / (m - n)
        P = least_squares_covariance(jacobian(x), weights, sigma2=sigma2)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=residuals,
        cost=float(0.5 * np.sum(weights * residuals**2)),
        converged=converged,
    )


def _check_weights(weights: Optional[np.ndarray], m: int) -> np.ndarray:
    if weights is None:
        return np.ones(m)
    weights = np.asarray(weights, dtype=float)
    if weights.ndim != 1 or len(weights) != m:
        raise ValueError(f"weights must be 1D array of length {m}")
    if np.any(weights < 0):
        raise ValueError("weights must be non-negative")
    return weights


def _damped_step(
    normal: np.ndarray,
    gradient: np.ndarray,
    cost: float,
    x: np.ndarray,
    cost_at: Callable[[np.ndarray], float],
    mu: float,
    max_damping: float = 1e10,
) -> Tuple[np.ndarray, float]:
    """
    Find an accepted LM step, raising the damping until the cost decreases.

    Returns:
        Tuple of (step, damping). The step is zero once the damping exceeds
        max_damping without any decrease.
    """
    identity = np.eye(len(x))
    nu = 2.0
    while mu <= max_damping:
        damped = normal + mu * identity
        try:
            step = np.linalg.solve(damped, gradient)
        except np.linalg.LinAlgError:
            step = np.linalg.lstsq(damped, gradient, rcond=None)[0]

        # Gain ratio of actual over predicted decrease ½ Δx'(μΔx + J'Wr)
        predicted = 0.5 * step @ (mu * step + gradient)
        actual = cost - cost_at(x + step)
        if predicted > 1e-15 and actual / predicted > 0:
            gain = actual / predicted
            return step, mu * max(1.0 / 3.0, 1.0 - (2.0 * gain - 1.0) ** 3)

        mu *= nu
        nu *= 2.0

    return np.zeros(len(x)), mu
