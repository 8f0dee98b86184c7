"""
Unit tests for RF measurement models.
"""

import numpy as np
import pytest

from robust_positioning.rf.measurement_models import (
    rss_pathloss,
    rss_to_distance,
    rss_to_distance_with_std,
    toa_range,
)


class TestRanging:
    """Test ranging measurement model."""

    def test_geometric_range(self):
        assert toa_range([0.0, 0.0, 0.0], [3.0, 4.0, 0.0]) == pytest.approx(5.0)

    def test_nlos_bias_added(self):
        assert toa_range([0.0, 0.0], [3.0, 4.0], nlos_bias_m=2.5) == pytest.approx(7.5)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            toa_range([0.0, 0.0], [3.0, 4.0, 0.0])


class TestPathLoss:
    """Test log-distance path-loss model and its inverse."""

    def test_reference_distance(self):
        assert rss_pathloss(-40.0, 1.0, path_loss_exp=3.0) == pytest.approx(-40.0)

    def test_known_value(self):
        assert rss_pathloss(-40.0, 10.0, path_loss_exp=2.5) == pytest.approx(-65.0)

    @pytest.mark.parametrize("distance", [0.5, 2.0, 17.3, 120.0])
    def test_inverse(self, distance):
        rss = rss_pathloss(-45.0, distance, path_loss_exp=2.2, d_ref=1.0)
        assert rss_to_distance(rss, -45.0, path_loss_exp=2.2) == pytest.approx(distance)

    def test_reference_distance_scaling(self):
        rss = rss_pathloss(-30.0, 20.0, path_loss_exp=2.0, d_ref=2.0)
        assert rss == pytest.approx(-50.0)
        assert rss_to_distance(rss, -30.0, 2.0, d_ref=2.0) == pytest.approx(20.0)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            rss_pathloss(-40.0, 0.0)
        with pytest.raises(ValueError):
            rss_to_distance(-60.0, -40.0, path_loss_exp=0.0)


class TestDistanceUncertainty:
    """Test propagation of path-loss uncertainty to distance."""

    def test_no_std_known(self):
        distance, std = rss_to_distance_with_std(-65.0, -40.0, 2.5)
        assert distance == pytest.approx(10.0)
        assert std is None

    def test_rssi_std(self):
        distance, std = rss_to_distance_with_std(-65.0, -40.0, 2.5, rss_std_db=1.0)
        k = distance * np.log(10.0) / 25.0
        assert std == pytest.approx(k)

    def test_reference_and_rssi_std_add_in_quadrature(self):
        _, std_rx = rss_to_distance_with_std(-65.0, -40.0, 2.5, rss_std_db=1.0)
        _, std_both = rss_to_distance_with_std(
            -65.0, -40.0, 2.5, rss_std_db=1.0, p_ref_std_db=1.0
        )
        assert std_both == pytest.approx(np.sqrt(2.0) * std_rx)

    def test_path_loss_exponent_std(self):
        distance, std = rss_to_distance_with_std(
            -65.0, -40.0, 2.5, path_loss_exp_std=0.1
        )
        k = distance * np.log(10.0) / 25.0
        expected = k * (25.0 / 2.5) * 0.1
        assert std == pytest.approx(expected)

    def test_std_grows_with_distance(self):
        _, near = rss_to_distance_with_std(-50.0, -40.0, 2.0, rss_std_db=2.0)
        _, far = rss_to_distance_with_std(-80.0, -40.0, 2.0, rss_std_db=2.0)
        assert far > near
