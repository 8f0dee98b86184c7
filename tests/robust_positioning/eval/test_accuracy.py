"""
Unit tests for covariance-based accuracy.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from robust_positioning.errors import CovarianceError
from robust_positioning.eval.accuracy import (
    Accuracy,
    confidence_ellipse,
    confidence_from_factor,
    confidence_radius,
    standard_deviation_factor,
)


class TestStandardDeviationFactor:
    """Test the chi-square standard deviation factor."""

    def test_known_values(self):
        assert standard_deviation_factor(0.95, 2) == pytest.approx(2.4477, abs=1e-4)
        assert standard_deviation_factor(0.95, 1) == pytest.approx(1.9600, abs=1e-4)

    def test_two_sigma_in_one_dimension(self):
        assert confidence_from_factor(2.0, 1) == pytest.approx(0.9545, abs=1e-4)

    def test_inverse(self):
        for n_dims in (1, 2, 3):
            factor = standard_deviation_factor(0.9, n_dims)
            assert confidence_from_factor(factor, n_dims) == pytest.approx(0.9)

    def test_grows_with_dimensions(self):
        factors = [standard_deviation_factor(0.95, n) for n in (1, 2, 3)]
        assert factors[0] < factors[1] < factors[2]

    @pytest.mark.parametrize("confidence", [0.0, 1.0, -0.5, 1.5])
    def test_invalid_confidence(self, confidence):
        with pytest.raises(ValueError):
            standard_deviation_factor(confidence, 2)

    def test_invalid_factor(self):
        with pytest.raises(ValueError):
            confidence_from_factor(0.0, 2)


class TestConfidenceEllipse:
    """Test semi-axes and orientation of the confidence ellipse."""

    def test_axis_aligned(self):
        factor = standard_deviation_factor(0.95, 2)

        semi_axes, axes = confidence_ellipse(np.diag([1.0, 4.0]), 0.95)

        assert_allclose(semi_axes, factor * np.array([2.0, 1.0]))
        assert_allclose(np.abs(axes[:, 0]), [0.0, 1.0], atol=1e-12)
        assert_allclose(np.abs(axes[:, 1]), [1.0, 0.0], atol=1e-12)

    def test_rotated(self):
        c, s = np.cos(np.pi / 6), np.sin(np.pi / 6)
        rotation = np.array([[c, -s], [s, c]])
        covariance = rotation @ np.diag([9.0, 1.0]) @ rotation.T

        semi_axes, axes = confidence_ellipse(covariance, 0.5)

        factor = standard_deviation_factor(0.5, 2)
        assert_allclose(semi_axes, factor * np.array([3.0, 1.0]))
        assert abs(axes[:, 0] @ rotation[:, 0]) == pytest.approx(1.0)

    def test_3d(self):
        semi_axes, axes = confidence_ellipse(np.diag([1.0, 2.0, 3.0]), 0.95)
        assert semi_axes.shape == (3,)
        assert np.all(np.diff(semi_axes) <= 0)
        assert_allclose(axes.T @ axes, np.eye(3), atol=1e-12)

    def test_not_positive_semidefinite(self):
        with pytest.raises(CovarianceError):
            confidence_ellipse(np.diag([1.0, -1.0]), 0.95)


class TestConfidenceRadius:
    """Test radius summaries of the ellipse."""

    def test_modes(self):
        covariance = np.diag([4.0, 1.0])
        factor = standard_deviation_factor(0.95, 2)

        assert confidence_radius(covariance, 0.95) == pytest.approx(2.0 * factor)
        assert confidence_radius(covariance, 0.95, mode="smallest") == pytest.approx(factor)
        assert confidence_radius(covariance, 0.95, mode="average") == pytest.approx(1.5 * factor)

    def test_isotropic(self):
        assert confidence_radius(np.eye(2) * 0.25, 0.95) == pytest.approx(1.2239, abs=1e-4)

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown mode"):
            confidence_radius(np.eye(2), 0.95, mode="median")


def test_accuracy_from_covariance():
    accuracy = Accuracy.from_covariance(np.diag([4.0, 1.0]), confidence=0.9)

    assert accuracy.confidence == 0.9
    assert accuracy.standard_deviation_factor == pytest.approx(
        standard_deviation_factor(0.9, 2)
    )
    assert accuracy.largest_accuracy == pytest.approx(2.0 * accuracy.standard_deviation_factor)
    assert accuracy.smallest_accuracy == pytest.approx(accuracy.standard_deviation_factor)
    assert accuracy.average_accuracy == pytest.approx(1.5 * accuracy.standard_deviation_factor)
