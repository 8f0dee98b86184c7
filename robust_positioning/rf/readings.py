"""
Conversion of sources and fingerprint readings into lateration inputs.

Lateration works on flat arrays: one source position, one distance, one
distance standard deviation (and, for prioritized robust methods, one quality
score) per entry. This module builds those arrays from located radio sources
and the readings of a fingerprint, preserving the fingerprint order.

A ranging reading or an RSSI reading produces one entry; a combined
ranging-and-RSSI reading produces two (ranging first). Readings whose source
is not among the located sources, and RSSI readings of sources without a
reference power, are skipped.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from robust_positioning.rf.measurement_models import rss_to_distance_with_std
from robust_positioning.types import (
    Fingerprint,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
)


@dataclass
class LaterationInputs:
    """Flattened lateration inputs built from sources and a fingerprint.

    Attributes:
        positions: Source position of every entry, shape (M, d).
        distances: Distance of every entry, shape (M,).
        distance_stds: Distance standard deviation of every entry, shape (M,).
        quality_scores: Quality score of every entry, shape (M,), or None
                        when no quality scores were provided.
        source_indices: Index into the source list of every entry, shape (M,).
        reading_indices: Index into the fingerprint of every entry, shape (M,).
    """

    positions: np.ndarray
    distances: np.ndarray
    distance_stds: np.ndarray
    quality_scores: Optional[np.ndarray]
    source_indices: np.ndarray
    reading_indices: np.ndarray

    @property
    def n_entries(self) -> int:
        return len(self.distances)


def position_standard_deviation(position_covariance: Optional[np.ndarray]) -> Optional[float]:
    """
    Average standard deviation of an uncertain source position.

    The singular values of the position covariance are the variances along
    its principal axes; their mean is used as an isotropic variance.

    Args:
        position_covariance: Covariance of the source position, shape (d, d).

    Returns:
        Standard deviation in meters, or None if no covariance is available
        or it cannot be decomposed.
    """
    if position_covariance is None:
        return None
    try:
        singular_values = np.linalg.svd(position_covariance, compute_uv=False)
    except np.linalg.LinAlgError:
        return None
    return float(np.sqrt(np.mean(singular_values)))


def _combine_std(
    distance_std: Optional[float],
    position_std: Optional[float],
) -> Optional[float]:
    """Combine distance and source position uncertainty as independent terms."""
    if distance_std is None and position_std is None:
        return None
    variance = 0.0
    if distance_std is not None:
        variance += distance_std**2
    if position_std is not None:
        variance += position_std**2
    return float(np.sqrt(variance))


def _rssi_distance(source: RadioSource, rssi_dbm: float, rssi_std_db: Optional[float]):
    if source.tx_power_dbm is None:
        return None, None
    return rss_to_distance_with_std(
        rssi_dbm,
        source.tx_power_dbm,
        path_loss_exp=source.path_loss_exponent,
        d_ref=source.d_ref,
        rss_std_db=rssi_std_db,
        p_ref_std_db=source.tx_power_std_db,
        path_loss_exp_std=source.path_loss_exponent_std,
    )


def reading_distances(reading, source: RadioSource) -> List[Tuple[float, Optional[float]]]:
    """
    Distances (and their standard deviations) contributed by one reading.

    Args:
        reading: Ranging, RSSI or combined reading.
        source: Located source of the reading.

    Returns:
        List of (distance, distance_std) tuples; distance_std may be None.
    """
    result = []
    if isinstance(reading, RangingAndRssiReading):
        result.append((reading.distance, reading.distance_std))
        distance, std = _rssi_distance(source, reading.rssi_dbm, reading.rssi_std_db)
        if distance is not None:
            result.append((distance, std))
    elif isinstance(reading, RangingReading):
        result.append((reading.distance, reading.distance_std))
    elif isinstance(reading, RssiReading):
        distance, std = _rssi_distance(source, reading.rssi_dbm, reading.rssi_std_db)
        if distance is not None:
            result.append((distance, std))
    else:
        raise TypeError(f"Unsupported reading type: {type(reading).__name__}")
    return result


def build_lateration_inputs(
    sources: Sequence[RadioSource],
    fingerprint: Fingerprint,
    source_quality_scores: Optional[np.ndarray] = None,
    reading_quality_scores: Optional[np.ndarray] = None,
    use_source_position_covariance: bool = False,
    fallback_distance_std: float = 1e-3,
) -> LaterationInputs:
    """
    Build positions, distances, standard deviations and quality scores.

    For every reading whose source is located, one entry per contributed
    distance is appended, in fingerprint order. The standard deviation of an
    entry combines the reading uncertainty with the source position
    uncertainty (when ``use_source_position_covariance`` is set); entries with
    no known uncertainty get ``fallback_distance_std``. The quality score of an
    entry is the sum of its reading score and its source score.

    Args:
        sources: Located radio sources.
        fingerprint: Readings of the receiver.
        source_quality_scores: Optional score per source, shape (len(sources),).
        reading_quality_scores: Optional score per reading, shape (len(fingerprint),).
        use_source_position_covariance: Whether source position covariances
                                        inflate the distance uncertainty.
        fallback_distance_std: Standard deviation used when none is known.

    Returns:
        LaterationInputs with matching array lengths.

    Raises:
        ValueError: If quality score lengths do not match, sources have mixed
                    dimensions or the fallback standard deviation is negative.

    Example:
        >>> a = RadioSource("a", [0.0, 0.0])
        >>> b = RadioSource("b", [10.0, 0.0])
        >>> fp = Fingerprint([RangingReading(b, 4.0), RangingReading(a, 6.0, 0.1)])
        >>> inputs = build_lateration_inputs([a, b], fp)
        >>> inputs.distances
        array([4., 6.])
        >>> inputs.source_indices
        array([1, 0])
    """
    if fallback_distance_std < 0.0:
        raise ValueError(
            f"fallback_distance_std must be non-negative, got {fallback_distance_std}"
        )

    sources = list(sources)
    if len(sources) == 0:
        raise ValueError("At least one source is required")

    n_dims = sources[0].n_dims
    if any(source.n_dims != n_dims for source in sources):
        raise ValueError("All sources must have the same number of dimensions")

    if source_quality_scores is not None:
        source_quality_scores = np.asarray(source_quality_scores, dtype=float)
        if source_quality_scores.shape != (len(sources),):
            raise ValueError(
                f"Expected {len(sources)} source quality scores, "
                f"got shape {source_quality_scores.shape}"
            )
    if reading_quality_scores is not None:
        reading_quality_scores = np.asarray(reading_quality_scores, dtype=float)
        if reading_quality_scores.shape != (len(fingerprint),):
            raise ValueError(
                f"Expected {len(fingerprint)} reading quality scores, "
                f"got shape {reading_quality_scores.shape}"
            )
    has_scores = source_quality_scores is not None or reading_quality_scores is not None

    # First occurrence wins when a source id is repeated
    index_by_id: Dict[str, int] = {}
    for i, source in enumerate(sources):
        index_by_id.setdefault(source.source_id, i)

    positions = []
    distances = []
    stds = []
    scores = []
    source_indices = []
    reading_indices = []

    for reading_index, reading in enumerate(fingerprint.readings):
        source_index = index_by_id.get(reading.source.source_id)
        if source_index is None:
            continue
        source = sources[source_index]

        position_std = None
        if use_source_position_covariance:
            position_std = position_standard_deviation(source.position_covariance)

        score = 0.0
        if reading_quality_scores is not None:
            score += reading_quality_scores[reading_index]
        if source_quality_scores is not None:
            score += source_quality_scores[source_index]

        for distance, distance_std in reading_distances(reading, source):
            std = _combine_std(distance_std, position_std)
            positions.append(source.position)
            distances.append(distance)
            stds.append(std if std is not None else fallback_distance_std)
            scores.append(score)
            source_indices.append(source_index)
            reading_indices.append(reading_index)

    return LaterationInputs(
        positions=np.array(positions, dtype=float).reshape(-1, n_dims),
        distances=np.array(distances, dtype=float),
        distance_stds=np.array(stds, dtype=float),
        quality_scores=np.array(scores, dtype=float) if has_scores else None,
        source_indices=np.array(source_indices, dtype=int),
        reading_indices=np.array(reading_indices, dtype=int),
    )
