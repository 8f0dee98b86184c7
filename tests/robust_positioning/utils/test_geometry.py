"""
Unit tests for geometric utilities.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from robust_positioning.utils.geometry import (
    check_source_geometry,
    normalize_jacobian_singularities,
    position_distance,
    positions_equal,
)


class TestPositionComparison:
    """Test position distance and equality."""

    def test_distance(self):
        assert position_distance([0.0, 0.0], [3.0, 4.0]) == pytest.approx(5.0)

    def test_distance_shape_mismatch(self):
        with pytest.raises(ValueError):
            position_distance([0.0, 0.0], [0.0, 0.0, 0.0])

    def test_equal_within_tolerance(self):
        assert positions_equal([1.0, 2.0], [1.0, 2.0 + 1e-12])
        assert not positions_equal([1.0, 2.0], [1.0, 2.1])
        assert positions_equal([1.0, 2.0], [1.0, 2.1], tol=0.2)

    def test_different_dimensions_not_equal(self):
        assert not positions_equal([1.0, 2.0], [1.0, 2.0, 0.0])

    def test_negative_tolerance(self):
        with pytest.raises(ValueError):
            positions_equal([1.0, 2.0], [1.0, 2.0], tol=-1.0)


class TestJacobianSingularities:
    """Test normalized range Jacobian."""

    def test_regular_rows(self):
        diff = np.array([[3.0, 4.0], [0.0, 2.0]])
        ranges = np.linalg.norm(diff, axis=1)
        H = normalize_jacobian_singularities(diff, ranges)
        assert_allclose(H, [[0.6, 0.8], [0.0, 1.0]])

    def test_singular_row_zeroed_with_warning(self):
        diff = np.array([[1.0, 0.0], [0.0, 0.0]])
        ranges = np.array([1.0, 0.0])

        with pytest.warns(RuntimeWarning):
            H = normalize_jacobian_singularities(diff, ranges)

        assert_allclose(H[1], [0.0, 0.0])
        assert_allclose(H[0], [1.0, 0.0])


class TestSourceGeometry:
    """Test source geometry validation."""

    def test_valid_2d(self):
        is_valid, msg = check_source_geometry(np.array([[0, 0], [10, 0], [0, 10]]))
        assert is_valid
        assert msg == ""

    def test_colinear_2d(self):
        is_valid, msg = check_source_geometry(np.array([[0, 0], [5, 0], [10, 0]]))
        assert not is_valid
        assert "colinear" in msg

    def test_coplanar_3d(self):
        positions = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [10, 10, 0]])
        is_valid, msg = check_source_geometry(positions)
        assert not is_valid
        assert "coplanar" in msg

    def test_valid_3d(self):
        positions = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]])
        is_valid, _ = check_source_geometry(positions)
        assert is_valid

    def test_insufficient_sources(self):
        is_valid, msg = check_source_geometry(np.array([[0, 0], [10, 0]]))
        assert not is_valid
        assert "Insufficient" in msg

    def test_coincident_sources(self):
        is_valid, msg = check_source_geometry(np.ones((4, 2)))
        assert not is_valid
        assert "same position" in msg

    def test_warning_on_degenerate(self):
        with pytest.warns(RuntimeWarning):
            check_source_geometry(np.array([[0, 0], [5, 0], [10, 0]]), warn_degenerate=True)
