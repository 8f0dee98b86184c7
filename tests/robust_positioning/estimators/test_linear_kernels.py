"""
Unit tests for the linear least squares kernels.

Tests cover:
    - Inhomogeneous linear least squares
    - Homogeneous least squares (SVD null vector)
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from robust_positioning.estimators.least_squares import (
    homogeneous_least_squares,
    linear_least_squares,
)


class TestLinearLeastSquares(unittest.TestCase):
    """Test cases for inhomogeneous linear least squares."""

    def test_exact_fit(self):
        """Test LS with exact data (no noise)."""
        # y = 2x + 1
        A = np.array([[1, 1], [1, 2], [1, 3]])
        b = np.array([3, 5, 7])

        x_hat, P = linear_least_squares(A, b)

        assert_allclose(x_hat, [1.0, 2.0], atol=1e-10)
        self.assertEqual(P.shape, (2, 2))

    def test_without_covariance(self):
        A = np.eye(3)
        b = np.array([1.0, 2.0, 3.0])

        x_hat, P = linear_least_squares(A, b, return_covariance=False)

        assert_allclose(x_hat, b, atol=1e-12)
        self.assertIsNone(P)

    def test_rank_deficient_raises_error(self):
        A = np.array([[1, 2], [2, 4], [3, 6]])
        b = np.array([1, 2, 3])

        with self.assertRaises(ValueError) as context:
            linear_least_squares(A, b)

        self.assertIn("rank deficient", str(context.exception).lower())

    def test_underdetermined_raises_error(self):
        with self.assertRaises(ValueError):
            linear_least_squares(np.ones((1, 2)), np.ones(1))

    def test_dimension_mismatch_raises_error(self):
        with self.assertRaises(ValueError):
            linear_least_squares(np.eye(3), np.ones(2))


class TestHomogeneousLeastSquares(unittest.TestCase):
    """Test cases for homogeneous least squares."""

    def test_exact_null_vector(self):
        A = np.array([[1.0, 0.0, -2.0], [0.0, 1.0, -3.0]])

        h = homogeneous_least_squares(A)

        self.assertAlmostEqual(np.linalg.norm(h), 1.0)
        assert_allclose(h / h[-1], [2.0, 3.0, 1.0], atol=1e-12)
        assert_allclose(A @ h, 0.0, atol=1e-12)

    def test_overdetermined_noisy(self):
        rng = np.random.default_rng(3)
        h_true = np.array([1.0, -2.0, 0.5, 1.0])
        h_true /= np.linalg.norm(h_true)

        # Rows orthogonal to h_true, plus small noise
        rows = rng.normal(size=(20, 4))
        rows -= np.outer(rows @ h_true, h_true)
        A = rows + 1e-6 * rng.normal(size=rows.shape)

        h = homogeneous_least_squares(A)

        self.assertGreater(abs(h @ h_true), 1.0 - 1e-8)

    def test_rank_deficient_raises_error(self):
        with self.assertRaises(ValueError):
            homogeneous_least_squares(np.zeros((3, 3)))

    def test_too_few_rows_raises_error(self):
        with self.assertRaises(ValueError):
            homogeneous_least_squares(np.ones((1, 4)))


if __name__ == "__main__":
    unittest.main()
