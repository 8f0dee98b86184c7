"""
Unit tests for RobustLaterationSolver.

Covers exact recovery for every method, recovery with gross outliers, the
lock held while solving, listener notifications and property validation.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from robust_positioning.errors import (
    LockedError,
    NotReadyError,
    RobustEstimatorError,
)
from robust_positioning.robust.methods import RobustEstimatorMethod
from robust_positioning.robust.solver import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    EstimatorState,
    RobustLaterationSolver,
    RobustLaterationSolverListener,
)

ALL_METHODS = list(RobustEstimatorMethod)


def make_scene(n_dims=2, n_sources=8, n_outliers=0, noise=0.0, seed=0):
    """Random sources around a receiver, with NLOS-biased outlier distances."""
    rng = np.random.default_rng(seed)
    positions = rng.uniform(-20.0, 20.0, size=(n_sources, n_dims))
    receiver = rng.uniform(-5.0, 5.0, size=n_dims)
    distances = np.linalg.norm(positions - receiver, axis=1)
    distances += noise * rng.normal(size=n_sources)

    outliers = rng.choice(n_sources, size=n_outliers, replace=False)
    distances[outliers] += rng.uniform(5.0, 20.0, size=n_outliers)

    quality = np.linspace(1.0, 0.9, n_sources)
    quality[outliers] = 0.1
    return positions, distances, receiver, quality


def make_solver(method, positions, distances, quality, **config):
    solver = RobustLaterationSolver(
        n_dims=positions.shape[1], method=method, random_state=0, **config
    )
    solver.set_positions_and_distances(positions, distances)
    solver.quality_scores = quality
    return solver


class RecordingListener(RobustLaterationSolverListener):
    def __init__(self):
        self.events = []
        self.progress = []

    def on_solve_start(self, solver):
        self.events.append("start")

    def on_solve_end(self, solver):
        self.events.append("end")

    def on_solve_next_iteration(self, solver, iteration):
        self.events.append(("iteration", iteration))

    def on_solve_progress_change(self, solver, progress):
        self.progress.append(progress)


class TestExactRecovery:
    """Without outliers every method recovers the exact position."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_2d(self, method):
        positions, distances, receiver, quality = make_scene(n_dims=2, n_sources=6)
        solver = make_solver(method, positions, distances, quality)

        position = solver.solve()

        assert_allclose(position, receiver, atol=1e-6)
        assert solver.state == EstimatorState.SUCCEEDED
        assert solver.last_result.method == method.value

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_3d(self, method):
        positions, distances, receiver, quality = make_scene(n_dims=3, n_sources=8, seed=1)
        solver = make_solver(method, positions, distances, quality)

        assert_allclose(solver.solve(), receiver, atol=1e-6)

    @pytest.mark.parametrize(
        "config",
        [
            {"homogeneous_linear_solver_used": True},
            {"preliminary_solution_refined": False},
            {"linear_solver_used": False},
            {"result_refined": False},
            {"preliminary_subset_size": 5},
        ],
    )
    def test_solver_options(self, config):
        positions, distances, receiver, quality = make_scene(n_sources=7, seed=2)
        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality, **config)

        assert_allclose(solver.solve(), receiver, atol=1e-6)

    def test_evenly_distributed_readings(self):
        positions, distances, receiver, _ = make_scene(n_sources=5, seed=3)
        # Every source is read twice
        positions = np.repeat(positions, 2, axis=0)
        distances = np.repeat(distances, 2)
        source_indices = np.repeat(np.arange(5), 2)

        solver = RobustLaterationSolver(
            n_dims=2,
            method=RobustEstimatorMethod.MSAC,
            random_state=0,
            evenly_distribute_readings=True,
        )
        solver.set_positions_and_distances(positions, distances, source_indices=source_indices)

        assert_allclose(solver.solve(), receiver, atol=1e-6)


class TestOutliers:
    """Recovery with about 20% gross outliers."""

    N_SEEDS = 20
    MIN_SUCCESSES = 18

    def success_count(self, method, scores_of=None, **config):
        successes = 0
        for seed in range(self.N_SEEDS):
            positions, distances, receiver, quality = make_scene(
                n_sources=10, n_outliers=2, noise=0.01, seed=seed
            )
            if scores_of is not None:
                quality = scores_of(quality, seed)
            solver = make_solver(method, positions, distances, quality, threshold=0.1, **config)
            if np.linalg.norm(solver.solve() - receiver) < 0.5:
                successes += 1
        return successes, solver

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_recovers_with_outliers(self, method):
        successes, _ = self.success_count(method)
        assert successes >= self.MIN_SUCCESSES

    @pytest.mark.parametrize(
        "method", [RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS]
    )
    def test_recovers_with_misleading_scores(self, method):
        # Outliers get the highest quality
        successes, solver = self.success_count(method, lambda quality, seed: 1.0 - quality)

        assert successes >= self.MIN_SUCCESSES
        assert 1 < solver.last_result.iterations < solver.max_iterations

    @pytest.mark.parametrize(
        "method", [RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS]
    )
    def test_recovers_with_uninformative_scores(self, method):
        def random_scores(quality, seed):
            return np.random.default_rng(100 + seed).uniform(size=len(quality))

        successes, solver = self.success_count(method, random_scores)

        assert successes >= self.MIN_SUCCESSES
        assert solver.last_result.iterations < solver.max_iterations

    def test_median_methods_do_not_stop_on_first_hypothesis(self):
        positions, distances, receiver, quality = make_scene(
            n_sources=10, n_outliers=2, noise=0.01, seed=3
        )
        solver = make_solver(
            RobustEstimatorMethod.LMEDS, positions, distances, quality, stop_threshold=1e-6
        )

        solver.solve()

        assert 1 < solver.last_result.iterations < solver.max_iterations

    def test_outliers_flagged(self):
        positions, distances, receiver, quality = make_scene(
            n_sources=10, n_outliers=2, noise=0.001, seed=4
        )
        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality, threshold=0.1)

        solver.solve()

        inliers = solver.inliers_data.inliers
        assert_array_equal(inliers, quality > 0.5)
        assert solver.inliers_data.num_inliers == 8

    def test_repeatable_with_seed(self):
        positions, distances, _, quality = make_scene(
            n_sources=10, n_outliers=2, noise=0.05, seed=5
        )
        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality, threshold=0.2)
        other = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality, threshold=0.2)

        first = solver.solve()
        second = solver.solve()

        assert_array_equal(first, second)
        assert_array_equal(first, other.solve())
        assert solver.last_result.iterations == other.last_result.iterations


class TestResults:
    """Covariance and inlier outputs."""

    def test_covariance_with_stds(self):
        positions, distances, _, quality = make_scene(n_sources=8, noise=0.05, seed=6)
        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality, threshold=0.5)
        solver.set_positions_and_distances(positions, distances, np.full(8, 0.05))

        solver.solve()

        covariance = solver.covariance
        assert covariance.shape == (2, 2)
        assert_allclose(covariance, covariance.T)
        assert np.all(np.linalg.eigvalsh(covariance) > 0)
        assert solver.last_result.covariance is covariance

    def test_covariance_not_kept(self):
        positions, distances, _, quality = make_scene()
        solver = make_solver(
            RobustEstimatorMethod.RANSAC, positions, distances, quality, covariance_kept=False
        )
        solver.solve()
        assert solver.covariance is None

    def test_no_covariance_without_refinement(self):
        positions, distances, _, quality = make_scene()
        solver = make_solver(
            RobustEstimatorMethod.RANSAC, positions, distances, quality, result_refined=False
        )
        solver.solve()
        assert solver.covariance is None

    def test_inliers_not_kept_by_default_without_refinement(self):
        positions, distances, _, quality = make_scene()
        solver = make_solver(
            RobustEstimatorMethod.RANSAC, positions, distances, quality, result_refined=False
        )
        solver.solve()

        data = solver.inliers_data
        assert data.inliers is None
        assert data.residuals is None
        assert data.num_inliers == 8
        assert data.best_median is None

    def test_inliers_kept_on_request(self):
        positions, distances, _, quality = make_scene()
        solver = make_solver(
            RobustEstimatorMethod.MSAC,
            positions,
            distances,
            quality,
            result_refined=False,
            compute_and_keep_inliers=True,
            compute_and_keep_residuals=True,
        )
        solver.solve()

        data = solver.inliers_data
        assert data.inliers.shape == (8,)
        assert data.residuals.shape == (8,)
        assert data.inlier_threshold == solver.threshold

    @pytest.mark.parametrize(
        "method", [RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS]
    )
    def test_median_methods_keep_inliers(self, method):
        positions, distances, _, quality = make_scene()
        solver = make_solver(method, positions, distances, quality, result_refined=False)
        solver.solve()

        data = solver.inliers_data
        assert data.inliers is not None
        assert data.residuals is not None
        assert data.best_median <= solver.stop_threshold


class TestLocking:
    """The solver is locked while solving."""

    def test_mutators_locked_from_listener(self):
        positions, distances, receiver, quality = make_scene()
        errors = []

        class MutatingListener(RobustLaterationSolverListener):
            def on_solve_next_iteration(self, solver, iteration):
                assert solver.is_locked
                assert solver.state == EstimatorState.RUNNING
                mutations = [
                    lambda: setattr(solver, "threshold", 0.5),
                    lambda: setattr(solver, "confidence", 0.5),
                    lambda: setattr(solver, "max_iterations", 10),
                    lambda: setattr(solver, "result_refined", False),
                    lambda: setattr(solver, "quality_scores", None),
                    lambda: setattr(solver, "listener", None),
                    lambda: solver.set_positions_and_distances(positions, distances),
                    solver.solve,
                ]
                for mutate in mutations:
                    try:
                        mutate()
                    except LockedError as e:
                        errors.append(e)

        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality)
        solver.listener = MutatingListener()

        position = solver.solve()

        assert len(errors) >= 8
        assert_allclose(position, receiver, atol=1e-6)
        assert solver.threshold != 0.5
        assert not solver.is_locked

        # Unlocked once solve() returns
        solver.threshold = 0.5
        solver.max_iterations = 10
        assert solver.threshold == 0.5

    def test_unlocked_after_failure(self):
        # Colinear sources: every subset fails
        positions = np.column_stack([np.arange(6.0), np.zeros(6)])
        distances = np.ones(6)
        solver = RobustLaterationSolver(
            n_dims=2, method=RobustEstimatorMethod.RANSAC, random_state=0, max_iterations=20
        )
        solver.set_positions_and_distances(positions, distances)

        with pytest.raises(RobustEstimatorError):
            solver.solve()

        assert solver.state == EstimatorState.FAILED
        assert not solver.is_locked
        assert solver.estimated_position is None
        solver.threshold = 0.3


class TestListener:
    """Listener notifications."""

    def test_lifecycle_events(self):
        positions, distances, _, quality = make_scene(n_sources=10, n_outliers=2, seed=7)
        listener = RecordingListener()
        solver = make_solver(
            RobustEstimatorMethod.RANSAC, positions, distances, quality, listener=listener
        )

        solver.solve()

        assert listener.events[0] == "start"
        assert listener.events[-1] == "end"
        iterations = [e[1] for e in listener.events[1:-1]]
        assert len(iterations) >= 1
        assert iterations == sorted(iterations)

        assert len(listener.progress) >= 1
        assert listener.progress == sorted(listener.progress)
        assert all(0.0 < p <= 1.0 for p in listener.progress)

    def test_listener_exception_propagates(self):
        positions, distances, _, quality = make_scene()

        class FailingListener(RobustLaterationSolverListener):
            def on_solve_start(self, solver):
                raise KeyError("listener failure")

        solver = make_solver(
            RobustEstimatorMethod.RANSAC, positions, distances, quality, listener=FailingListener()
        )
        with pytest.raises(KeyError):
            solver.solve()

        assert solver.state == EstimatorState.FAILED
        assert not solver.is_locked


class TestReadiness:
    """Readiness and NotReadyError."""

    def test_defaults(self):
        solver = RobustLaterationSolver()
        assert solver.n_dims == 2
        assert solver.method == RobustEstimatorMethod.PROMEDS
        assert solver.min_required_positions_and_distances == 3
        assert solver.confidence == DEFAULT_CONFIDENCE
        assert solver.max_iterations == DEFAULT_MAX_ITERATIONS
        assert solver.progress_delta == DEFAULT_PROGRESS_DELTA
        assert solver.threshold == 1e-2
        assert solver.stop_threshold == 1e-5
        assert solver.linear_solver_used
        assert not solver.homogeneous_linear_solver_used
        assert solver.preliminary_solution_refined
        assert solver.result_refined
        assert solver.covariance_kept
        assert solver.state == EstimatorState.IDLE
        assert not solver.is_ready

    def test_not_ready_without_inputs(self):
        solver = RobustLaterationSolver(method=RobustEstimatorMethod.RANSAC)
        with pytest.raises(NotReadyError):
            solver.solve()

    @pytest.mark.parametrize(
        "method", [RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS]
    )
    def test_prioritized_needs_quality_scores(self, method):
        positions, distances, _, quality = make_scene()
        solver = RobustLaterationSolver(method=method)
        solver.set_positions_and_distances(positions, distances)

        assert not solver.is_ready
        with pytest.raises(NotReadyError):
            solver.solve()

        solver.quality_scores = quality
        assert solver.is_ready
        assert solver.state == EstimatorState.READY

    def test_quality_scores_ignored_by_uniform_methods(self):
        positions, distances, _, _ = make_scene()
        solver = RobustLaterationSolver(method=RobustEstimatorMethod.LMEDS)
        solver.set_positions_and_distances(positions, distances)
        assert solver.is_ready

    def test_subset_size_larger_than_readings(self):
        positions, distances, _, _ = make_scene(n_sources=4)
        solver = RobustLaterationSolver(
            method=RobustEstimatorMethod.RANSAC, preliminary_subset_size=5
        )
        solver.set_positions_and_distances(positions, distances)

        assert not solver.is_ready
        with pytest.raises(NotReadyError):
            solver.solve()


class TestValidation:
    """Invalid configuration and inputs raise ValueError."""

    @pytest.mark.parametrize(
        "name, value",
        [
            ("confidence", 0.0),
            ("confidence", 1.0),
            ("max_iterations", 0),
            ("progress_delta", -0.1),
            ("progress_delta", 1.5),
            ("threshold", 0.0),
            ("stop_threshold", -1e-5),
            ("preliminary_subset_size", 2),
            ("preliminary_subset_size", 3.9),
            ("preliminary_subset_size", True),
            ("max_iterations", 10.5),
            ("result_refined", "yes"),
            ("initial_position", np.zeros(3)),
            ("random_state", "seed"),
        ],
    )
    def test_invalid_property(self, name, value):
        solver = RobustLaterationSolver()
        with pytest.raises(ValueError):
            setattr(solver, name, value)

    def test_unknown_configuration(self):
        with pytest.raises(ValueError):
            RobustLaterationSolver(unknown_option=1)

    def test_read_only_configuration(self):
        with pytest.raises(ValueError):
            RobustLaterationSolver(state=EstimatorState.READY)

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            RobustLaterationSolver(n_dims=4)

    def test_invalid_inputs(self):
        positions, distances, _, _ = make_scene()
        solver = RobustLaterationSolver()

        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions[:, :1], distances)
        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions, distances[:-1])
        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions[:2], distances[:2])
        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions, -distances)
        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions, distances, np.zeros(8))

    def test_mismatched_quality_scores(self):
        positions, distances, _, _ = make_scene()
        solver = RobustLaterationSolver(method=RobustEstimatorMethod.PROSAC)
        solver.set_positions_and_distances(positions, distances)

        with pytest.raises(ValueError):
            solver.quality_scores = np.ones(7)
        with pytest.raises(ValueError):
            solver.quality_scores = np.ones((8, 1))

    def test_scores_then_readings_of_other_length(self):
        positions, distances, _, quality = make_scene()
        solver = RobustLaterationSolver(method=RobustEstimatorMethod.PROSAC)
        solver.set_positions_and_distances(positions, distances)
        solver.quality_scores = quality

        with pytest.raises(ValueError):
            solver.set_positions_and_distances(positions[:6], distances[:6])
        assert solver.positions.shape == (8, 2)

        solver.quality_scores = None
        solver.set_positions_and_distances(positions[:6], distances[:6])
        solver.quality_scores = quality[:6]
        assert solver.is_ready

    def test_integral_counts_accepted(self):
        solver = RobustLaterationSolver(max_iterations=np.int64(50))
        solver.preliminary_subset_size = np.int32(4)
        assert solver.max_iterations == 50
        assert solver.preliminary_subset_size == 4


class TestStateAfterConfiguration:
    """Configuration changes move a finished solver back to READY or IDLE."""

    @pytest.mark.parametrize(
        "name, value",
        [
            ("threshold", 0.5),
            ("confidence", 0.9),
            ("max_iterations", 100),
            ("result_refined", False),
            ("random_state", 3),
        ],
    )
    def test_succeeded_then_configured(self, name, value):
        positions, distances, _, quality = make_scene()
        solver = make_solver(RobustEstimatorMethod.RANSAC, positions, distances, quality)
        solver.solve()
        assert solver.state == EstimatorState.SUCCEEDED

        setattr(solver, name, value)

        assert solver.state == EstimatorState.READY

    def test_failed_then_configured(self):
        positions = np.column_stack([np.arange(6.0), np.zeros(6)])
        solver = RobustLaterationSolver(
            n_dims=2, method=RobustEstimatorMethod.RANSAC, random_state=0, max_iterations=20
        )
        solver.set_positions_and_distances(positions, np.ones(6))
        with pytest.raises(RobustEstimatorError):
            solver.solve()
        assert solver.state == EstimatorState.FAILED

        solver.preliminary_subset_size = 7

        assert solver.state == EstimatorState.IDLE
