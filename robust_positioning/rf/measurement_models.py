"""
RF measurement models for lateration.

This module implements the physical models that turn raw radio observations
into distances usable by the lateration solvers:
- Ranging (TOA/RTT): geometric range, optionally with NLOS bias
- RSS (Received Signal Strength): log-distance path-loss model and its
  inverse, with first-order propagation of the model uncertainties into a
  distance standard deviation

The path-loss model is
    p_R = p_ref - 10*η*log10(d / d_ref)
with p_ref the power received at the reference distance d_ref and η the
path-loss exponent.
"""

from typing import Optional, Tuple

import numpy as np

from robust_positioning.utils.geometry import position_distance


def toa_range(
    tx_pos: np.ndarray,
    rx_pos: np.ndarray,
    nlos_bias_m: float = 0.0,
) -> float:
    """
    Compute a ranging measurement between a source and a receiver.

        d_measured = ||p_tx - p_rx|| + b_nlos

    Non-line-of-sight propagation only lengthens the travelled path, so
    ``nlos_bias_m`` is expected to be non-negative; it is the usual way to
    simulate gross ranging outliers.

    Args:
        tx_pos: Transmitter (source) position [x, y] or [x, y, z] in meters.
        rx_pos: Receiver position [x, y] or [x, y, z] in meters.
        nlos_bias_m: Additional path length in meters. Defaults to 0.0.

    Returns:
        Range measurement in meters.

    Example:
        >>> source = np.array([0.0, 0.0, 0.0])
        >>> receiver = np.array([3.0, 4.0, 0.0])
        >>> toa_range(source, receiver)
        5.0
    """
    return position_distance(tx_pos, rx_pos) + nlos_bias_m


def rss_pathloss(
    p_ref_dbm: float,
    distance: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
) -> float:
    """
    Compute RSS using the log-distance path-loss model.

        p_R = p_ref - 10*η*log10(d / d_ref)

    Args:
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        distance: Distance from source to receiver in meters.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0 (free space).
                      Typical indoor values: 2.5-4.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Received signal strength in dBm.

    Example:
        >>> # RSS at 10m with p_ref=-40dBm at 1m, η=2.5
        >>> rss = rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5)
        >>> print(f"RSS: {rss:.2f} dBm")
        RSS: -65.00 dBm
    """
    if distance <= 0:
        raise ValueError("Distance must be positive")

    rss_dbm = p_ref_dbm - 10 * path_loss_exp * np.log10(distance / d_ref)

    return float(rss_dbm)


def rss_to_distance(
    rss_dbm: float,
    p_ref_dbm: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
) -> float:
    """
    Estimate distance from RSS using the inverse path-loss model.

        d = d_ref * 10^((p_ref - p_R) / (10*η))

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Estimated distance in meters.

    Example:
        >>> # Distance from RSS=-65dBm with p_ref=-40dBm, η=2.5
        >>> distance = rss_to_distance(rss_dbm=-65.0, p_ref_dbm=-40.0, path_loss_exp=2.5)
        >>> print(f"Distance: {distance:.2f} m")
        Distance: 10.00 m
    """
    if path_loss_exp <= 0:
        raise ValueError(f"path_loss_exp must be positive, got {path_loss_exp}")

    exponent = (p_ref_dbm - rss_dbm) / (10 * path_loss_exp)
    distance = d_ref * (10**exponent)

    return float(distance)


def rss_to_distance_with_std(
    rss_dbm: float,
    p_ref_dbm: float,
    path_loss_exp: float = 2.0,
    d_ref: float = 1.0,
    rss_std_db: Optional[float] = None,
    p_ref_std_db: Optional[float] = None,
    path_loss_exp_std: Optional[float] = None,
) -> Tuple[float, Optional[float]]:
    """
    Invert the path-loss model and propagate its uncertainties to distance.

    First-order propagation through d = d_ref * 10^((p_ref - p_R) / (10*η)):

        ∂d/∂p_ref = d * ln(10) / (10*η)
        ∂d/∂p_R   = -d * ln(10) / (10*η)
        ∂d/∂η     = -d * ln(10) * (p_ref - p_R) / (10*η²)

        σ_d² = (∂d/∂p_ref)² σ_ref² + (∂d/∂p_R)² σ_R² + (∂d/∂η)² σ_η²

    Cross-covariances between the reference power and the path-loss exponent
    are ignored.

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η.
        d_ref: Reference distance in meters.
        rss_std_db: Standard deviation of the received power (dB), or None.
        p_ref_std_db: Standard deviation of the reference power (dB), or None.
        path_loss_exp_std: Standard deviation of η, or None.

    Returns:
        Tuple of (distance, distance_std). distance_std is None when none of
        the standard deviations is known.

    Example:
        >>> d, std = rss_to_distance_with_std(-65.0, -40.0, 2.5, rss_std_db=1.0)
        >>> round(d, 2)
        10.0
        >>> round(std, 3)
        0.921
    """
    distance = rss_to_distance(rss_dbm, p_ref_dbm, path_loss_exp, d_ref)

    if rss_std_db is None and p_ref_std_db is None and path_loss_exp_std is None:
        return distance, None

    k = distance * np.log(10.0) / (10.0 * path_loss_exp)
    d_dp_ref = k
    d_dp_rx = -k
    d_deta = -k * (p_ref_dbm - rss_dbm) / path_loss_exp

    variance = 0.0
    if p_ref_std_db is not None:
        variance += (d_dp_ref * p_ref_std_db) ** 2
    if rss_std_db is not None:
        variance += (d_dp_rx * rss_std_db) ** 2
    if path_loss_exp_std is not None:
        variance += (d_deta * path_loss_exp_std) ** 2

    return distance, float(np.sqrt(variance))
