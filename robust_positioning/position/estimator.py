"""
Robust position estimation from located radio sources and a fingerprint.

RobustPositionEstimator turns the readings of a fingerprint into lateration
inputs (one entry per distance, in fingerprint order) and solves them with a
RobustLaterationSolver. Configuration properties of the solver are exposed
directly on the estimator; listener notifications are forwarded with the
estimator as subject.

Example:
    >>> sources = [
    ...     RadioSource("a", [0.0, 0.0]), RadioSource("b", [10.0, 0.0]),
    ...     RadioSource("c", [0.0, 10.0]), RadioSource("d", [10.0, 10.0]),
    ... ]
    >>> receiver = np.array([3.0, 4.0])
    >>> fingerprint = Fingerprint([
    ...     RangingReading(s, float(np.linalg.norm(s.position - receiver)))
    ...     for s in sources
    ... ])
    >>> estimator = create_robust_position_estimator(sources, fingerprint, random_state=0)
    >>> estimator.method
    <RobustEstimatorMethod.LMEDS: 'lmeds'>
    >>> np.round(estimator.estimate(), 6)
    array([3., 4.])
"""

from typing import List, Optional, Sequence

import numpy as np

from robust_positioning.errors import LockedError, NotReadyError
from robust_positioning.rf.readings import LaterationInputs, build_lateration_inputs
from robust_positioning.robust.methods import DEFAULT_ROBUST_METHOD, RobustEstimatorMethod
from robust_positioning.robust.sampling import RandomState
from robust_positioning.robust.solver import (
    EstimatorState,
    RobustLaterationSolver,
    RobustLaterationSolverListener,
)
from robust_positioning.types import EstimateResult, Fingerprint, InliersData, RadioSource


DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION = 1e-3
DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE = False


class RobustPositionEstimatorListener:
    """Receives lifecycle notifications of a RobustPositionEstimator.

    All methods are no-ops; override the ones of interest.
    """

    def on_estimate_start(self, estimator: "RobustPositionEstimator") -> None:
        pass

    def on_estimate_end(self, estimator: "RobustPositionEstimator") -> None:
        pass

    def on_estimate_next_iteration(
        self, estimator: "RobustPositionEstimator", iteration: int
    ) -> None:
        pass

    def on_estimate_progress_change(
        self, estimator: "RobustPositionEstimator", progress: float
    ) -> None:
        pass


class _ForwardingListener(RobustLaterationSolverListener):
    """Relays solver notifications to the estimator listener."""

    def __init__(self, estimator: "RobustPositionEstimator"):
        self.estimator = estimator

    def on_solve_start(self, solver):
        listener = self.estimator.listener
        if listener is not None:
            listener.on_estimate_start(self.estimator)

    def on_solve_end(self, solver):
        listener = self.estimator.listener
        if listener is not None:
            listener.on_estimate_end(self.estimator)

    def on_solve_next_iteration(self, solver, iteration):
        listener = self.estimator.listener
        if listener is not None:
            listener.on_estimate_next_iteration(self.estimator, iteration)

    def on_solve_progress_change(self, solver, progress):
        listener = self.estimator.listener
        if listener is not None:
            listener.on_estimate_progress_change(self.estimator, progress)


def _delegated(name: str, doc: Optional[str] = None) -> property:
    """Property read from and written to the inner solver, locked while running."""

    def getter(self):
        return getattr(self._solver, name)

    def setter(self, value):
        self._check_not_locked()
        setattr(self._solver, name, value)
        self._outcome = None

    return property(getter, setter, doc=doc)


class RobustPositionEstimator:
    """
    Robust position estimator over located radio sources and a fingerprint.

    Args:
        n_dims: Number of dimensions (2 or 3).
        method: Robust consensus method.
        sources: Located radio sources.
        fingerprint: Readings of the receiver.
        source_quality_scores: Quality score of every source (PROSAC, PROMedS).
        fingerprint_readings_quality_scores: Quality score of every reading.
        listener: Optional RobustPositionEstimatorListener.
        random_state: Seed or Generator of the subset sampler.
        **config: Initial values of any configuration property.

    Raises:
        ValueError: If any argument is invalid.
    """

    def __init__(
        self,
        n_dims: int = 2,
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        sources: Optional[Sequence[RadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        source_quality_scores: Optional[np.ndarray] = None,
        fingerprint_readings_quality_scores: Optional[np.ndarray] = None,
        listener: Optional[RobustPositionEstimatorListener] = None,
        random_state: RandomState = None,
        **config,
    ):
        self._solver = RobustLaterationSolver(
            n_dims=n_dims,
            method=method,
            listener=_ForwardingListener(self),
            random_state=random_state,
        )
        self._running = False
        self._outcome: Optional[EstimatorState] = None

        self._sources: Optional[List[RadioSource]] = None
        self._fingerprint: Optional[Fingerprint] = None
        self._source_quality_scores: Optional[np.ndarray] = None
        self._readings_quality_scores: Optional[np.ndarray] = None
        self._position_covariance_used = DEFAULT_USE_RADIO_SOURCE_POSITION_COVARIANCE
        self._fallback_std = DEFAULT_FALLBACK_DISTANCE_STANDARD_DEVIATION
        self._inputs: Optional[LaterationInputs] = None
        self._listener = listener

        if sources is not None:
            self.sources = sources
        if fingerprint is not None:
            self.fingerprint = fingerprint
        if source_quality_scores is not None:
            self.source_quality_scores = source_quality_scores
        if fingerprint_readings_quality_scores is not None:
            self.fingerprint_readings_quality_scores = fingerprint_readings_quality_scores

        for name, value in config.items():
            prop = getattr(type(self), name, None)
            if not isinstance(prop, property) or prop.fset is None:
                raise ValueError(f"Unknown configuration property: {name}")
            setattr(self, name, value)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _check_not_locked(self) -> None:
        if self.is_locked:
            raise LockedError(f"{type(self).__name__} is locked while estimating")

    @property
    def is_locked(self) -> bool:
        return self._running or self._solver.is_locked

    @property
    def state(self) -> EstimatorState:
        if self.is_locked:
            return EstimatorState.RUNNING
        if self._outcome is not None:
            return self._outcome
        return EstimatorState.READY if self.is_ready else EstimatorState.IDLE

    @property
    def n_dims(self) -> int:
        return self._solver.n_dims

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._solver.method

    @property
    def min_required_sources(self) -> int:
        return self._solver.min_required_positions_and_distances

    @property
    def is_ready(self) -> bool:
        """
        Whether sources and fingerprint provide enough distances to estimate.

        Prioritized methods also need source or reading quality scores.
        """
        if self._sources is None or self._fingerprint is None or self._inputs is None:
            return False
        if len(self._sources) < self.min_required_sources:
            return False
        n_required = max(self.min_required_sources, self._solver.preliminary_subset_size)
        if self._inputs.n_entries < n_required:
            return False
        if self.method.is_prioritized:
            return (
                self._source_quality_scores is not None
                or self._readings_quality_scores is not None
            )
        return True

    def _rebuild(self) -> None:
        """Rebuild the lateration inputs from sources and fingerprint."""
        self._inputs = None
        self._outcome = None
        if self._sources is None or self._fingerprint is None:
            return
        self._inputs = build_lateration_inputs(
            self._sources,
            self._fingerprint,
            source_quality_scores=self._source_quality_scores,
            reading_quality_scores=self._readings_quality_scores,
            use_source_position_covariance=self._position_covariance_used,
            fallback_distance_std=self._fallback_std,
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def sources(self) -> Optional[List[RadioSource]]:
        """Located radio sources."""
        return self._sources

    @sources.setter
    def sources(self, value: Sequence[RadioSource]) -> None:
        self._check_not_locked()
        if value is None:
            raise ValueError("sources must not be None")
        value = list(value)
        if len(value) < self.min_required_sources:
            raise ValueError(
                f"At least {self.min_required_sources} sources are required, got {len(value)}"
            )
        for source in value:
            if not isinstance(source, RadioSource):
                raise ValueError(f"Expected RadioSource, got {type(source).__name__}")
            if source.n_dims != self.n_dims:
                raise ValueError(
                    f"Source {source.source_id!r} has {source.n_dims} dimensions, "
                    f"expected {self.n_dims}"
                )
        if (
            self._source_quality_scores is not None
            and len(self._source_quality_scores) != len(value)
        ):
            raise ValueError(
                f"Expected {len(self._source_quality_scores)} sources to match the source "
                f"quality scores, got {len(value)}"
            )
        self._sources = value
        self._rebuild()

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        """Readings of the receiver."""
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, value: Fingerprint) -> None:
        self._check_not_locked()
        if value is None:
            raise ValueError("fingerprint must not be None")
        if not isinstance(value, Fingerprint):
            value = Fingerprint(value)
        if len(value) < self.min_required_sources:
            raise ValueError(
                f"At least {self.min_required_sources} readings are required, got {len(value)}"
            )
        if (
            self._readings_quality_scores is not None
            and len(self._readings_quality_scores) != len(value)
        ):
            raise ValueError(
                f"Expected {len(self._readings_quality_scores)} readings to match the reading "
                f"quality scores, got {len(value)}"
            )
        self._fingerprint = value
        self._rebuild()

    @property
    def source_quality_scores(self) -> Optional[np.ndarray]:
        """Quality score of every source. Ignored by non-prioritized methods."""
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, value: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.ndim != 1:
                raise ValueError(f"source_quality_scores must be 1D, got shape {value.shape}")
            if len(value) < self.min_required_sources:
                raise ValueError(
                    f"At least {self.min_required_sources} source quality scores are "
                    f"required, got {len(value)}"
                )
            if self._sources is not None and len(value) != len(self._sources):
                raise ValueError(
                    f"Expected {len(self._sources)} source quality scores, got {len(value)}"
                )
        self._source_quality_scores = value
        self._rebuild()

    @property
    def fingerprint_readings_quality_scores(self) -> Optional[np.ndarray]:
        """Quality score of every reading. Ignored by non-prioritized methods."""
        return self._readings_quality_scores

    @fingerprint_readings_quality_scores.setter
    def fingerprint_readings_quality_scores(self, value: Optional[np.ndarray]) -> None:
        self._check_not_locked()
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.ndim != 1:
                raise ValueError(
                    f"fingerprint_readings_quality_scores must be 1D, got shape {value.shape}"
                )
            if len(value) < self.min_required_sources:
                raise ValueError(
                    f"At least {self.min_required_sources} reading quality scores are "
                    f"required, got {len(value)}"
                )
            if self._fingerprint is not None and len(value) != len(self._fingerprint):
                raise ValueError(
                    f"Expected {len(self._fingerprint)} reading quality scores, got {len(value)}"
                )
        self._readings_quality_scores = value
        self._rebuild()

    @property
    def radio_source_position_covariance_used(self) -> bool:
        """Whether source position covariances inflate distance uncertainty."""
        return self._position_covariance_used

    @radio_source_position_covariance_used.setter
    def radio_source_position_covariance_used(self, value: bool) -> None:
        self._check_not_locked()
        self._position_covariance_used = bool(value)
        self._rebuild()

    @property
    def fallback_distance_standard_deviation(self) -> float:
        """Distance standard deviation used for readings without one."""
        return self._fallback_std

    @fallback_distance_standard_deviation.setter
    def fallback_distance_standard_deviation(self, value: float) -> None:
        self._check_not_locked()
        if value <= 0:
            raise ValueError(
                f"fallback_distance_standard_deviation must be positive, got {value}"
            )
        self._fallback_std = float(value)
        self._rebuild()

    @property
    def listener(self) -> Optional[RobustPositionEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[RobustPositionEstimatorListener]) -> None:
        self._check_not_locked()
        self._listener = value

    # Solver configuration
    initial_position = _delegated("initial_position")
    preliminary_subset_size = _delegated("preliminary_subset_size")
    evenly_distribute_readings = _delegated("evenly_distribute_readings")
    progress_delta = _delegated("progress_delta")
    confidence = _delegated("confidence")
    max_iterations = _delegated("max_iterations")
    result_refined = _delegated("result_refined")
    covariance_kept = _delegated("covariance_kept")
    linear_solver_used = _delegated("linear_solver_used")
    homogeneous_linear_solver_used = _delegated("homogeneous_linear_solver_used")
    preliminary_solution_refined = _delegated("preliminary_solution_refined")
    refine_with_all_readings = _delegated("refine_with_all_readings")
    random_state = _delegated("random_state")
    threshold = _delegated("threshold")
    stop_threshold = _delegated("stop_threshold")
    compute_and_keep_inliers = _delegated("compute_and_keep_inliers")
    compute_and_keep_residuals = _delegated("compute_and_keep_residuals")

    # ------------------------------------------------------------------
    # Flattened inputs and outputs
    # ------------------------------------------------------------------

    @property
    def positions(self) -> Optional[np.ndarray]:
        """Source position of every lateration entry, in fingerprint order."""
        return None if self._inputs is None else self._inputs.positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return None if self._inputs is None else self._inputs.distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return None if self._inputs is None else self._inputs.distance_stds

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Combined source and reading score of every entry, or None."""
        return None if self._inputs is None else self._inputs.quality_scores

    @property
    def reading_indices(self) -> Optional[np.ndarray]:
        """Fingerprint index of the reading behind every entry."""
        return None if self._inputs is None else self._inputs.reading_indices

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._solver.estimated_position

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._solver.covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._solver.inliers_data

    @property
    def last_result(self) -> Optional[EstimateResult]:
        return self._solver.last_result

    # ------------------------------------------------------------------
    # Estimate
    # ------------------------------------------------------------------

    def estimate(self) -> np.ndarray:
        """
        Estimate the receiver position.

        Returns:
            Estimated position, shape (N,).

        Raises:
            LockedError: If an estimation is already running.
            NotReadyError: If the estimator is not ready.
            RobustEstimatorError: If no hypothesis could be found.
            CovarianceError: If the covariance of the estimate is not
                             positive definite.
        """
        self._check_not_locked()
        if not self.is_ready:
            raise NotReadyError(
                f"{type(self).__name__} is not ready: sources and fingerprint must "
                f"provide at least {self.min_required_sources} distances"
                + (" and quality scores must be set" if self.method.is_prioritized else "")
            )

        inputs = self._inputs
        self._running = True
        self._outcome = None
        succeeded = False
        try:
            self._solver.quality_scores = None
            self._solver.set_positions_and_distances(
                inputs.positions,
                inputs.distances,
                inputs.distance_stds,
                source_indices=inputs.source_indices,
            )
            self._solver.quality_scores = inputs.quality_scores
            position = self._solver.solve()
            succeeded = True
        finally:
            self._running = False
            self._outcome = EstimatorState.SUCCEEDED if succeeded else EstimatorState.FAILED

        return position


def create_robust_position_estimator(
    sources: Optional[Sequence[RadioSource]] = None,
    fingerprint: Optional[Fingerprint] = None,
    source_quality_scores: Optional[np.ndarray] = None,
    fingerprint_readings_quality_scores: Optional[np.ndarray] = None,
    method: Optional[RobustEstimatorMethod] = None,
    n_dims: Optional[int] = None,
    listener: Optional[RobustPositionEstimatorListener] = None,
    **config,
) -> RobustPositionEstimator:
    """
    Create a robust position estimator.

    Without an explicit method, PROMedS is used when quality scores are given
    and LMedS otherwise. The number of dimensions defaults to the one of the
    sources, or 2 when there are none.

    Args:
        sources: Located radio sources.
        fingerprint: Readings of the receiver.
        source_quality_scores: Quality score of every source.
        fingerprint_readings_quality_scores: Quality score of every reading.
        method: Robust consensus method.
        n_dims: Number of dimensions (2 or 3).
        listener: Optional RobustPositionEstimatorListener.
        **config: Initial values of any configuration property.

    Returns:
        Configured RobustPositionEstimator.
    """
    has_scores = (
        source_quality_scores is not None or fingerprint_readings_quality_scores is not None
    )
    if method is None:
        method = RobustEstimatorMethod.PROMEDS if has_scores else RobustEstimatorMethod.LMEDS

    if n_dims is None:
        sources = list(sources) if sources is not None else None
        n_dims = sources[0].n_dims if sources else 2

    return RobustPositionEstimator(
        n_dims=n_dims,
        method=method,
        sources=sources,
        fingerprint=fingerprint,
        source_quality_scores=source_quality_scores,
        fingerprint_readings_quality_scores=fingerprint_readings_quality_scores,
        listener=listener,
        **config,
    )
