"""
Unit tests for refinement of the best hypothesis.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from robust_positioning.robust.refinement import inflate_outlier_stds, refine_position


SOURCES = np.array([
    [0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0], [5.0, -4.0], [-3.0, 6.0],
])
RECEIVER = np.array([4.0, 3.0])


def noisy_scene(seed=0, sigma=0.05):
    rng = np.random.default_rng(seed)
    distances = np.linalg.norm(SOURCES - RECEIVER, axis=1) + sigma * rng.normal(size=6)
    distances[0] += 8.0
    inliers = np.array([False, True, True, True, True, True])
    return distances, inliers


def test_inflate_outlier_stds():
    stds = np.array([1.0, 1.0, 2.0])
    residuals = np.array([0.05, 0.5, 1.0])
    inliers = np.array([True, False, False])

    inflated = inflate_outlier_stds(stds, residuals, inliers, threshold=0.1)

    assert_allclose(inflated, [1.0, 5.0, 20.0])


def test_inflate_never_shrinks():
    inflated = inflate_outlier_stds(
        np.ones(2), np.array([0.01, 0.01]), np.array([False, False]), threshold=0.1
    )
    assert_allclose(inflated, [1.0, 1.0])


class TestRefinePosition:
    """Test refinement over inliers."""

    def test_not_refined(self):
        distances, inliers = noisy_scene()
        position, covariance = refine_position(
            np.array([4.1, 2.9]), SOURCES, distances, None, inliers, result_refined=False
        )
        assert_allclose(position, [4.1, 2.9])
        assert covariance is None

    def test_refined_over_inliers(self):
        distances, inliers = noisy_scene()
        stds = np.full(6, 0.05)

        position, covariance = refine_position(
            np.array([4.3, 2.6]), SOURCES, distances, stds, inliers
        )

        assert np.linalg.norm(position - RECEIVER) < 0.1
        assert covariance.shape == (2, 2)
        assert np.all(np.linalg.eigvalsh(covariance) > 0)

    def test_covariance_not_kept(self):
        distances, inliers = noisy_scene()
        position, covariance = refine_position(
            np.array([4.3, 2.6]), SOURCES, distances, None, inliers, covariance_kept=False
        )
        assert np.linalg.norm(position - RECEIVER) < 0.1
        assert covariance is None

    def test_refined_with_all_readings(self):
        distances, inliers = noisy_scene()
        residuals = np.abs(np.linalg.norm(SOURCES - RECEIVER, axis=1) - distances)

        position, _ = refine_position(
            np.array([4.3, 2.6]),
            SOURCES,
            distances,
            np.full(6, 0.05),
            inliers,
            residuals=residuals,
            inlier_threshold=0.2,
            refine_with_all_readings=True,
        )

        assert np.linalg.norm(position - RECEIVER) < 0.2

    def test_too_few_inliers_keeps_position(self):
        distances, _ = noisy_scene()
        inliers = np.array([False, True, True, False, False, False])

        with pytest.warns(RuntimeWarning):
            position, covariance = refine_position(
                np.array([4.3, 2.6]), SOURCES, distances, None, inliers
            )

        assert_allclose(position, [4.3, 2.6])
        assert covariance is None

    def test_degenerate_inliers_keep_position(self):
        sources = np.array([[0.0, 0.0], [5.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        distances = np.linalg.norm(sources - RECEIVER, axis=1)
        inliers = np.array([True, True, True, False])

        with pytest.warns(RuntimeWarning):
            position, covariance = refine_position(
                np.array([4.3, 2.6]), sources, distances, None, inliers
            )

        assert_allclose(position, [4.3, 2.6])
        assert covariance is None
