"""
Robust lateration solver.

RobustLaterationSolver finds a position from source positions and distances
that may contain gross outliers, using one of the robust consensus methods
(RANSAC, LMedS, MSAC, PROSAC, PROMedS), then refines the best hypothesis and
estimates its covariance.

The solver is a stateful object configured through validated properties.
While ``solve()`` runs the instance is locked: every setter, and ``solve()``
itself, raises LockedError. Listener notifications are delivered
synchronously while the instance is still locked.

Example:
    >>> sources = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
    >>> ranges = np.linalg.norm(sources - np.array([3.0, 4.0]), axis=1)
    >>> solver = RobustLaterationSolver(
    ...     n_dims=2, method=RobustEstimatorMethod.RANSAC, random_state=0
    ... )
    >>> solver.set_positions_and_distances(sources, ranges)
    >>> np.round(solver.solve(), 6)
    array([3., 4.])
"""

from enum import Enum
from typing import Optional

import numpy as np

from robust_positioning.errors import LockedError, NotReadyError
from robust_positioning.lateration.solvers import (
    NonLinearLaterationSolver,
    min_required_entries,
    solve_preliminary,
)
from robust_positioning.robust.consensus import (
    best_median,
    compute_residuals,
    run_consensus,
)
from robust_positioning.robust.methods import DEFAULT_ROBUST_METHOD, RobustEstimatorMethod
from robust_positioning.robust.refinement import refine_position
from robust_positioning.robust.sampling import (
    ProsacSampler,
    RandomState,
    UniformSampler,
    as_generator,
)
from robust_positioning.robust.scoring import (
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    create_scoring,
)
from robust_positioning.types import EstimateResult, InliersData


# Default configuration
DEFAULT_CONFIDENCE = 0.99
MIN_CONFIDENCE = 0.0
MAX_CONFIDENCE = 1.0
DEFAULT_MAX_ITERATIONS = 5000
MIN_ITERATIONS = 1
DEFAULT_PROGRESS_DELTA = 0.05
MIN_PROGRESS_DELTA = 0.0
MAX_PROGRESS_DELTA = 1.0
DEFAULT_USE_LINEAR_SOLVER = True
DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER = False
DEFAULT_REFINE_PRELIMINARY_SOLUTIONS = True
DEFAULT_REFINE_RESULT = True
DEFAULT_KEEP_COVARIANCE = True
DEFAULT_REFINE_WITH_ALL_READINGS = False
DEFAULT_EVENLY_DISTRIBUTE_READINGS = False
DEFAULT_COMPUTE_AND_KEEP_INLIERS = False
DEFAULT_COMPUTE_AND_KEEP_RESIDUALS = False

# Standard deviation of subset distances when none is known
DEFAULT_DISTANCE_STANDARD_DEVIATION = 1e-3


class EstimatorState(Enum):
    """Lifecycle state of a robust solver or estimator."""

    IDLE = "idle"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RobustLaterationSolverListener:
    """Receives lifecycle notifications of a RobustLaterationSolver.

    All methods are no-ops; override the ones of interest.
    """

    def on_solve_start(self, solver: "RobustLaterationSolver") -> None:
        pass

    def on_solve_end(self, solver: "RobustLaterationSolver") -> None:
        pass

    def on_solve_next_iteration(self, solver: "RobustLaterationSolver", iteration: int) -> None:
        pass

    def on_solve_progress_change(self, solver: "RobustLaterationSolver", progress: float) -> None:
        pass


def _as_flag(value, name: str) -> bool:
    if not isinstance(value, (bool, np.bool_)):
        raise ValueError(f"{name} must be a boolean, got {value!r}")
    return bool(value)


def _as_count(value, name: str) -> int:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, np.integer)):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return int(value)


class RobustLaterationSolver:
    """
    Robust position solver over source positions and distances.

    Args:
        n_dims: Number of dimensions (2 or 3).
        method: Robust consensus method.
        listener: Optional RobustLaterationSolverListener.
        random_state: Seed or Generator of the subset sampler. An integer
                      seed makes every ``solve()`` draw the same subsets.
        **config: Initial values of any configuration property
                  (e.g. ``threshold=0.1``, ``max_iterations=200``).

    Raises:
        ValueError: If n_dims or a configuration value is invalid.
    """

    def __init__(
        self,
        n_dims: int = 2,
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        listener: Optional[RobustLaterationSolverListener] = None,
        random_state: RandomState = None,
        **config,
    ):
        self._min_required = min_required_entries(n_dims)
        self._n_dims = n_dims
        self._method = RobustEstimatorMethod(method)

        self._positions: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self._distance_stds: Optional[np.ndarray] = None
        self._source_indices: Optional[np.ndarray] = None
        self._quality_scores: Optional[np.ndarray] = None

        self._listener = listener
        self._random_state = random_state
        self._initial_position: Optional[np.ndarray] = None
        self._preliminary_subset_size = self._min_required
        self._confidence = DEFAULT_CONFIDENCE
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._linear_solver_used = DEFAULT_USE_LINEAR_SOLVER
        self._homogeneous_linear_solver_used = DEFAULT_USE_HOMOGENEOUS_LINEAR_SOLVER
        self._preliminary_solution_refined = DEFAULT_REFINE_PRELIMINARY_SOLUTIONS
        self._result_refined = DEFAULT_REFINE_RESULT
        self._covariance_kept = DEFAULT_KEEP_COVARIANCE
        self._refine_with_all_readings = DEFAULT_REFINE_WITH_ALL_READINGS
        self._evenly_distribute_readings = DEFAULT_EVENLY_DISTRIBUTE_READINGS
        self._threshold = DEFAULT_THRESHOLD
        self._stop_threshold = DEFAULT_STOP_THRESHOLD
        self._compute_and_keep_inliers = DEFAULT_COMPUTE_AND_KEEP_INLIERS
        self._compute_and_keep_residuals = DEFAULT_COMPUTE_AND_KEEP_RESIDUALS

        self._nonlinear_solver = NonLinearLaterationSolver()

        self._estimated_position: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._inliers_data: Optional[InliersData] = None
        self._last_result: Optional[EstimateResult] = None
        self._state = EstimatorState.IDLE

        for name, value in config.items():
            prop = getattr(type(self), name, None)
            if not isinstance(prop, property) or prop.fset is None:
                raise ValueError(f"Unknown configuration property: {name}")
            setattr(self, name, value)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _check_not_locked(self) -> None:
        if self._state == EstimatorState.RUNNING:
            raise LockedError(f"{type(self).__name__} is locked while solving")

    def _refresh_state(self) -> None:
        self._state = EstimatorState.READY if self.is_ready else EstimatorState.IDLE

    @property
    def state(self) -> EstimatorState:
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._state == EstimatorState.RUNNING

    @property
    def is_ready(self) -> bool:
        """Whether distances are set and, for prioritized methods, quality scores match."""
        if self._distances is None:
            return False
        n = len(self._distances)
        if n < max(self._min_required, self._preliminary_subset_size):
            return False
        if self._method.is_prioritized:
            return self._quality_scores is not None and len(self._quality_scores) == n
        return True

    @property
    def n_dims(self) -> int:
        return self._n_dims

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._method

    @property
    def min_required_positions_and_distances(self) -> int:
        return self._min_required

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_positions_and_distances(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        source_indices: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set source positions, distances and their standard deviations.

        Args:
            positions: Source position of every reading, shape (M, N).
            distances: Distance of every reading, shape (M,).
            distance_standard_deviations: Optional positive stds, shape (M,).
            source_indices: Optional source label of every reading, used to
                            spread subsets across sources.

        Raises:
            LockedError: If the solver is running.
            ValueError: If shapes mismatch or fewer than N + 1 readings are given,
                        or the number of readings differs from the quality scores.
        """
        self._check_not_locked()

        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        if positions.ndim != 2 or positions.shape[1] != self._n_dims:
            raise ValueError(
                f"positions must have shape (M, {self._n_dims}), got {positions.shape}"
            )
        if distances.shape != (positions.shape[0],):
            raise ValueError(
                f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
            )
        if len(distances) < self._min_required:
            raise ValueError(
                f"At least {self._min_required} positions and distances are required, "
                f"got {len(distances)}"
            )
        if np.any(distances < 0):
            raise ValueError("Distances must be non-negative")

        stds = None
        if distance_standard_deviations is not None:
            stds = np.asarray(distance_standard_deviations, dtype=float)
            if stds.shape != distances.shape:
                raise ValueError(
                    f"Expected {len(distances)} standard deviations, got shape {stds.shape}"
                )
            if np.any(stds <= 0):
                raise ValueError("Distance standard deviations must be positive")

        indices = None
        if source_indices is not None:
            indices = np.asarray(source_indices, dtype=int)
            if indices.shape != distances.shape:
                raise ValueError(
                    f"Expected {len(distances)} source indices, got shape {indices.shape}"
                )

        if self._quality_scores is not None and len(self._quality_scores) != len(distances):
            raise ValueError(
                f"Expected {len(self._quality_scores)} readings to match the quality "
                f"scores, got {len(distances)}"
            )

        self._positions = positions
        self._distances = distances
        self._distance_stds = stds
        self._source_indices = indices
        self._refresh_state()

    @property
    def positions(self) -> Optional[np.ndarray]:
        return self._positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return self._distance_stds

    @property
    def source_indices(self) -> Optional[np.ndarray]:
        return self._source_indices

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Quality score of every reading. Only used by prioritized methods."""
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, value: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.ndim != 1:
                raise ValueError(f"quality_scores must be 1D, got shape {value.shape}")
            if self._distances is not None and len(value) != len(self._distances):
                raise ValueError(
                    f"Expected {len(self._distances)} quality scores, got {len(value)}"
                )
            if len(value) < self._min_required:
                raise ValueError(
                    f"At least {self._min_required} quality scores are required, "
                    f"got {len(value)}"
                )
        self._quality_scores = value
        self._refresh_state()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def listener(self) -> Optional[RobustLaterationSolverListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[RobustLaterationSolverListener]) -> None:
        self._check_not_locked()
        self._listener = value
        self._refresh_state()

    @property
    def random_state(self) -> RandomState:
        return self._random_state

    @random_state.setter
    def random_state(self, value: RandomState) -> None:
        self._check_not_locked()
        if value is not None and not isinstance(value, (int, np.integer, np.random.Generator)):
            raise ValueError(f"random_state must be None, an int or a Generator, got {value!r}")
        self._random_state = value
        self._refresh_state()

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        """Starting point of the nonlinear solver when the linear solver is off."""
        return self._initial_position

    @initial_position.setter
    def initial_position(self, value: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.shape != (self._n_dims,):
                raise ValueError(
                    f"initial_position must have shape ({self._n_dims},), got {value.shape}"
                )
        self._initial_position = value
        self._refresh_state()

    @property
    def preliminary_subset_size(self) -> int:
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, value: int) -> None:
        self._check_not_locked()
        value = _as_count(value, "preliminary_subset_size")
        if value < self._min_required:
            raise ValueError(
                f"preliminary_subset_size must be at least {self._min_required}, got {value}"
            )
        self._preliminary_subset_size = value
        self._refresh_state()

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._check_not_locked()
        if not MIN_CONFIDENCE < value < MAX_CONFIDENCE:
            raise ValueError(f"confidence must be in (0, 1), got {value}")
        self._confidence = float(value)
        self._refresh_state()

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_not_locked()
        value = _as_count(value, "max_iterations")
        if value < MIN_ITERATIONS:
            raise ValueError(f"max_iterations must be at least {MIN_ITERATIONS}, got {value}")
        self._max_iterations = value
        self._refresh_state()

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_locked()
        if not MIN_PROGRESS_DELTA <= value <= MAX_PROGRESS_DELTA:
            raise ValueError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)
        self._refresh_state()

    @property
    def linear_solver_used(self) -> bool:
        return self._linear_solver_used

    @linear_solver_used.setter
    def linear_solver_used(self, value: bool) -> None:
        self._check_not_locked()
        self._linear_solver_used = _as_flag(value, "linear_solver_used")
        self._refresh_state()

    @property
    def homogeneous_linear_solver_used(self) -> bool:
        return self._homogeneous_linear_solver_used

    @homogeneous_linear_solver_used.setter
    def homogeneous_linear_solver_used(self, value: bool) -> None:
        self._check_not_locked()
        self._homogeneous_linear_solver_used = _as_flag(value, "homogeneous_linear_solver_used")
        self._refresh_state()

    @property
    def preliminary_solution_refined(self) -> bool:
        return self._preliminary_solution_refined

    @preliminary_solution_refined.setter
    def preliminary_solution_refined(self, value: bool) -> None:
        self._check_not_locked()
        self._preliminary_solution_refined = _as_flag(value, "preliminary_solution_refined")
        self._refresh_state()

    @property
    def result_refined(self) -> bool:
        return self._result_refined

    @result_refined.setter
    def result_refined(self, value: bool) -> None:
        self._check_not_locked()
        self._result_refined = _as_flag(value, "result_refined")
        self._refresh_state()

    @property
    def covariance_kept(self) -> bool:
        return self._covariance_kept

    @covariance_kept.setter
    def covariance_kept(self, value: bool) -> None:
        self._check_not_locked()
        self._covariance_kept = _as_flag(value, "covariance_kept")
        self._refresh_state()

    @property
    def refine_with_all_readings(self) -> bool:
        """Refine over all readings with down-weighted outliers instead of inliers only."""
        return self._refine_with_all_readings

    @refine_with_all_readings.setter
    def refine_with_all_readings(self, value: bool) -> None:
        self._check_not_locked()
        self._refine_with_all_readings = _as_flag(value, "refine_with_all_readings")
        self._refresh_state()

    @property
    def evenly_distribute_readings(self) -> bool:
        """Spread subsets across distinct sources (non-prioritized methods)."""
        return self._evenly_distribute_readings

    @evenly_distribute_readings.setter
    def evenly_distribute_readings(self, value: bool) -> None:
        self._check_not_locked()
        self._evenly_distribute_readings = _as_flag(value, "evenly_distribute_readings")
        self._refresh_state()

    @property
    def threshold(self) -> float:
        """Inlier residual threshold of RANSAC, MSAC and PROSAC."""
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise ValueError(f"threshold must be positive, got {value}")
        self._threshold = float(value)
        self._refresh_state()

    @property
    def stop_threshold(self) -> float:
        """Median of squared residuals that stops LMedS and PROMedS early."""
        return self._stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise ValueError(f"stop_threshold must be positive, got {value}")
        self._stop_threshold = float(value)
        self._refresh_state()

    @property
    def compute_and_keep_inliers(self) -> bool:
        return self._compute_and_keep_inliers

    @compute_and_keep_inliers.setter
    def compute_and_keep_inliers(self, value: bool) -> None:
        self._check_not_locked()
        self._compute_and_keep_inliers = _as_flag(value, "compute_and_keep_inliers")
        self._refresh_state()

    @property
    def compute_and_keep_residuals(self) -> bool:
        return self._compute_and_keep_residuals

    @compute_and_keep_residuals.setter
    def compute_and_keep_residuals(self, value: bool) -> None:
        self._check_not_locked()
        self._compute_and_keep_residuals = _as_flag(value, "compute_and_keep_residuals")
        self._refresh_state()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._inliers_data

    @property
    def last_result(self) -> Optional[EstimateResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self) -> np.ndarray:
        """
        Robustly estimate the position.

        Returns:
            Estimated position, shape (N,).

        Raises:
            LockedError: If a solve is already running.
            NotReadyError: If the solver is not ready.
            RobustEstimatorError: If no hypothesis could be found.
            CovarianceError: If the covariance of the refined position is not
                             positive definite.
        """
        self._check_not_locked()
        if not self.is_ready:
            raise NotReadyError(
                f"{type(self).__name__} is not ready: positions, distances"
                + (" and quality scores" if self._method.is_prioritized else "")
                + " must be set"
            )

        self._state = EstimatorState.RUNNING
        succeeded = False
        try:
            self._estimated_position = None
            self._covariance = None
            self._inliers_data = None
            self._last_result = None

            if self._listener is not None:
                self._listener.on_solve_start(self)

            result = self._run()

            self._estimated_position = result.position
            self._covariance = result.covariance
            self._inliers_data = result.inliers_data
            self._last_result = result

            if self._listener is not None:
                self._listener.on_solve_end(self)

            succeeded = True
        finally:
            self._state = EstimatorState.SUCCEEDED if succeeded else EstimatorState.FAILED

        return self._estimated_position.copy()

    def _run(self) -> EstimateResult:
        positions = self._positions
        distances = self._distances
        n = len(distances)
        m = self._preliminary_subset_size
        rng = as_generator(self._random_state)

        order = None
        if self._method.is_prioritized:
            sampler = ProsacSampler(self._quality_scores, m, self._max_iterations, rng=rng)
            order = sampler.order
        else:
            groups = self._source_indices if self._evenly_distribute_readings else None
            sampler = UniformSampler(n, m, groups=groups, rng=rng)

        scoring = create_scoring(
            self._method, m, self._threshold, self._stop_threshold, order=order
        )

        if self._distance_stds is not None:
            subset_stds = self._distance_stds
        else:
            subset_stds = np.full(n, DEFAULT_DISTANCE_STANDARD_DEVIATION)

        def solve_subset(indices):
            return solve_preliminary(
                positions[indices],
                distances[indices],
                subset_stds[indices],
                initial_position=self._initial_position,
                linear_solver_used=self._linear_solver_used,
                homogeneous_linear_solver_used=self._homogeneous_linear_solver_used,
                preliminary_solution_refined=self._preliminary_solution_refined,
                nonlinear_solver=self._nonlinear_solver,
            )

        def on_next_iteration(iteration):
            if self._listener is not None:
                self._listener.on_solve_next_iteration(self, iteration)

        def on_progress(progress):
            if self._listener is not None:
                self._listener.on_solve_progress_change(self, progress)

        consensus = run_consensus(
            solve_subset,
            lambda x: compute_residuals(x, positions, distances),
            sampler,
            scoring,
            subset_size=m,
            confidence=self._confidence,
            max_iterations=self._max_iterations,
            progress_delta=self._progress_delta,
            on_next_iteration=on_next_iteration,
            on_progress=on_progress,
        )

        position, covariance = refine_position(
            consensus.position,
            positions,
            distances,
            self._distance_stds,
            consensus.inliers,
            residuals=consensus.residuals,
            inlier_threshold=consensus.inlier_threshold,
            result_refined=self._result_refined,
            covariance_kept=self._covariance_kept,
            refine_with_all_readings=self._refine_with_all_readings,
            nonlinear_solver=self._nonlinear_solver,
        )

        keep_all = self._method.uses_median
        keep_inliers = keep_all or self._compute_and_keep_inliers or self._result_refined
        keep_residuals = keep_all or self._compute_and_keep_residuals or self._result_refined

        inliers_data = InliersData(
            inliers=consensus.inliers.copy() if keep_inliers else None,
            residuals=consensus.residuals.copy() if keep_residuals else None,
            num_inliers=int(np.count_nonzero(consensus.inliers)),
            inlier_threshold=consensus.inlier_threshold,
            best_median=best_median(consensus, scoring),
        )

        return EstimateResult(
            position=np.array(position, dtype=float),
            covariance=covariance,
            inliers_data=inliers_data,
            iterations=consensus.iterations,
            method=self._method.value,
        )
