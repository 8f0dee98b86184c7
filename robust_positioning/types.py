"""Type definitions and data structures for robust radio positioning.

This module defines the value types shared by the lateration solvers, the
robust estimators and the position estimator:

- RadioSource: a transmitter with a known position (and optional uncertainty)
- RangingReading / RssiReading / RangingAndRssiReading: observations of one
  source taken by the receiver
- Fingerprint: the ordered collection of readings of one estimation call
- InliersData / EstimateResult: outputs of a robust estimation

Positions are plain NumPy vectors of length 2 or 3, as everywhere else in the
package.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

import numpy as np


# Type aliases for clarity and documentation
Position = np.ndarray  # Shape (d,), d=2 (x, y) or d=3 (x, y, z)


def _as_position(value, name: str) -> np.ndarray:
    position = np.asarray(value, dtype=float)
    if position.ndim != 1 or position.shape[0] not in (2, 3):
        raise ValueError(
            f"{name} must be a 2D or 3D vector, got shape {position.shape}"
        )
    if not np.all(np.isfinite(position)):
        raise ValueError(f"{name} must be finite, got {position}")
    return position


def _check_std(value: Optional[float], name: str) -> None:
    if value is not None and value < 0.0:
        raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True, eq=False)
class RadioSource:
    """
    Radio source (beacon, access point, UWB anchor) with a known location.

    Attributes:
        source_id: Identifier of the source (e.g. MAC address). Two sources
                   with the same identifier are the same source.
        position: Source coordinates, shape (d,) with d=2 or 3.
        position_covariance: Optional uncertainty of the source position,
                   shape (d, d).
        tx_power_dbm: Received power at the reference distance ``d_ref``
                   (p_ref of the log-distance model). Required to turn RSSI
                   readings of this source into distances.
        path_loss_exponent: Path-loss exponent η of the log-distance model.
        d_ref: Reference distance of ``tx_power_dbm`` in meters.
        tx_power_std_db: Optional standard deviation of ``tx_power_dbm``.
        path_loss_exponent_std: Optional standard deviation of the path-loss
                   exponent.

    Example:
        >>> ap = RadioSource("ap-1", np.array([0.0, 10.0]))
        >>> ap.n_dims
        2
    """

    source_id: str
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None
    tx_power_dbm: Optional[float] = None
    path_loss_exponent: float = 2.0
    d_ref: float = 1.0
    tx_power_std_db: Optional[float] = None
    path_loss_exponent_std: Optional[float] = None

    def __post_init__(self) -> None:
        position = _as_position(self.position, "position")
        object.__setattr__(self, "position", position)

        if self.position_covariance is not None:
            cov = np.asarray(self.position_covariance, dtype=float)
            d = position.shape[0]
            if cov.shape != (d, d):
                raise ValueError(
                    f"position_covariance must have shape ({d}, {d}), got {cov.shape}"
                )
            object.__setattr__(self, "position_covariance", cov)

        if self.path_loss_exponent <= 0.0:
            raise ValueError(
                f"path_loss_exponent must be positive, got {self.path_loss_exponent}"
            )
        if self.d_ref <= 0.0:
            raise ValueError(f"d_ref must be positive, got {self.d_ref}")
        _check_std(self.tx_power_std_db, "tx_power_std_db")
        _check_std(self.path_loss_exponent_std, "path_loss_exponent_std")

    def __eq__(self, other) -> bool:
        if not isinstance(other, RadioSource):
            return NotImplemented
        return self.source_id == other.source_id

    def __hash__(self) -> int:
        return hash(self.source_id)

    @property
    def n_dims(self) -> int:
        """Number of dimensions of the source position."""
        return self.position.shape[0]


@dataclass(frozen=True)
class RangingReading:
    """Distance measured to a source (TOA, RTT, UWB two-way ranging).

    Attributes:
        source: Source the distance was measured to.
        distance: Measured distance in meters.
        distance_std: Optional standard deviation of the distance.
    """

    source: RadioSource
    distance: float
    distance_std: Optional[float] = None

    def __post_init__(self) -> None:
        if self.distance < 0.0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        _check_std(self.distance_std, "distance_std")


@dataclass(frozen=True)
class RssiReading:
    """Received signal strength of a source.

    Attributes:
        source: Source the signal was received from.
        rssi_dbm: Received power in dBm.
        rssi_std_db: Optional standard deviation of the received power.
    """

    source: RadioSource
    rssi_dbm: float
    rssi_std_db: Optional[float] = None

    def __post_init__(self) -> None:
        _check_std(self.rssi_std_db, "rssi_std_db")


@dataclass(frozen=True)
class RangingAndRssiReading:
    """Ranging and received-power observation taken at once.

    Contributes two entries to lateration: the measured distance and the
    distance derived from the received power.
    """

    source: RadioSource
    distance: float
    rssi_dbm: float
    distance_std: Optional[float] = None
    rssi_std_db: Optional[float] = None

    def __post_init__(self) -> None:
        if self.distance < 0.0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        _check_std(self.distance_std, "distance_std")
        _check_std(self.rssi_std_db, "rssi_std_db")


Reading = Union[RangingReading, RssiReading, RangingAndRssiReading]


@dataclass
class Fingerprint:
    """
    Ordered readings collected by the receiver for one position estimate.

    Several readings may refer to the same source.

    Attributes:
        readings: Readings in acquisition order.

    Example:
        >>> ap = RadioSource("ap-1", np.array([0.0, 0.0]))
        >>> fp = Fingerprint([RangingReading(ap, 5.0), RangingReading(ap, 5.1)])
        >>> len(fp)
        2
    """

    readings: List[Reading] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.readings is None:
            raise ValueError("readings must not be None")
        self.readings = list(self.readings)

    def __len__(self) -> int:
        return len(self.readings)

    def __iter__(self):
        return iter(self.readings)


@dataclass
class InliersData:
    """Inlier information of the best hypothesis of a robust estimation.

    Attributes:
        inliers: Boolean mask over the lateration entries, shape (M,), or
                 None when inliers are not kept.
        residuals: Absolute distance residuals of every entry, shape (M,),
                   or None when residuals are not kept.
        num_inliers: Number of entries flagged as inliers.
        inlier_threshold: Residual threshold used to flag inliers. Estimated
                   from the median for LMedS and PROMedS.
        best_median: Best median of squared residuals (LMedS and PROMedS).
    """

    inliers: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    num_inliers: int
    inlier_threshold: Optional[float] = None
    best_median: Optional[float] = None


@dataclass
class EstimateResult:
    """Outcome of one robust estimation.

    Attributes:
        position: Estimated position, shape (d,).
        covariance: Covariance of the estimate, shape (d, d), or None.
        inliers_data: Inlier information of the best hypothesis, or None.
        iterations: Number of sampling iterations performed.
        method: Name of the robust method that produced the result.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    inliers_data: Optional[InliersData]
    iterations: int
    method: str
