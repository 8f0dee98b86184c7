"""
Hypothesis scoring strategies for robust consensus.

Each strategy turns the residuals of one hypothesis against every reading
into a key (a tuple, lower is better), and flags the inliers of the winning
hypothesis:

    - ThresholdCountScoring (RANSAC): key = -#{rᵢ ≤ t}
    - TruncatedQuadraticScoring (MSAC): key = Σ min(rᵢ², t²)
    - MedianScoring (LMedS, PROMedS): key = median(rᵢ²), with the inlier
      threshold estimated from the robust scale of the median
    - ProgressiveScoring (PROSAC): key = (-#inliers in the prioritized prefix,
      -#inliers overall)

Residuals are absolute distance residuals |‖x - pᵢ‖ - dᵢ|.
"""

from typing import Optional, Tuple

import numpy as np
from scipy import stats

from robust_positioning.robust.methods import RobustEstimatorMethod


DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-5

# Robust scale of the median: σ ≈ 1.4826 · (1 + 5/(n - m)) · √median(r²)
MAD_SCALE = 1.4826
DEFAULT_INLIER_FACTOR = 1.5

# Largest outlier fraction the median tolerates
BREAKDOWN_INLIER_RATIO = 0.5

# PROSAC non-randomness test
DEFAULT_NON_RANDOM_PROBABILITY = 0.05
DEFAULT_RANDOM_INLIER_PROBABILITY = 0.1


class ScoringStrategy:
    """Interface shared by the scoring strategies."""

    def score(self, residuals: np.ndarray, prefix_size: Optional[int] = None) -> Tuple:
        raise NotImplementedError

    def inliers(self, residuals: np.ndarray) -> Tuple[np.ndarray, float]:
        """Return the inlier mask and the residual threshold used."""
        raise NotImplementedError

    def inlier_ratio(self, residuals: np.ndarray, prefix_size: Optional[int] = None) -> float:
        """Fraction of inliers driving the adaptive iteration budget."""
        mask, _ = self.inliers(residuals)
        return float(np.mean(mask))

    def stop(self, key: Tuple) -> bool:
        """Whether the best key is good enough to stop sampling."""
        return False


class ThresholdCountScoring(ScoringStrategy):
    """RANSAC: count residuals within a fixed threshold."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold

    def score(self, residuals, prefix_size=None):
        return (-int(np.count_nonzero(residuals <= self.threshold)),)

    def inliers(self, residuals):
        return residuals <= self.threshold, self.threshold


class TruncatedQuadraticScoring(ThresholdCountScoring):
    """MSAC: sum of squared residuals, each capped at the squared threshold."""

    def score(self, residuals, prefix_size=None):
        return (float(np.sum(np.minimum(residuals**2, self.threshold**2))),)


class MedianScoring(ScoringStrategy):
    """
    LMedS: median of the squared residuals.

    The inlier threshold of the best hypothesis is the robust scale estimate

        t = k · 1.4826 · (1 + 5/(n - m)) · √median(r²)

    never taken below √stop_threshold, so that exact fits keep their inliers.

    The adaptive budget does not use that threshold. Its inlier fraction is
    counted at the scale of stop_threshold and floored at the 50% breakdown
    point, so the budget never exceeds the LMedS breakdown budget and never
    depends on the median of the hypothesis being scored.

    Args:
        subset_size: Number of readings per hypothesis (m).
        stop_threshold: Median of squared residuals below which sampling stops.
        inlier_factor: Multiplier k of the robust scale.
    """

    def __init__(
        self,
        subset_size: int,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
    ):
        if stop_threshold <= 0:
            raise ValueError(f"stop_threshold must be positive, got {stop_threshold}")
        self.subset_size = subset_size
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor

    def score(self, residuals, prefix_size=None):
        return (float(np.median(residuals**2)),)

    def inlier_threshold(self, median: float, n_samples: int) -> float:
        dof = n_samples - self.subset_size
        correction = 1.0 + 5.0 / dof if dof > 0 else 1.0
        scale = self.inlier_factor * MAD_SCALE * correction * np.sqrt(median)
        return float(max(scale, np.sqrt(self.stop_threshold)))

    def inliers(self, residuals):
        threshold = self.inlier_threshold(np.median(residuals**2), len(residuals))
        return residuals <= threshold, threshold

    def inlier_ratio(self, residuals, prefix_size=None):
        """
        Inlier fraction at the scale implied by stop_threshold, never below
        the breakdown point of the median.
        """
        threshold = self.inlier_threshold(self.stop_threshold, len(residuals))
        ratio = float(np.mean(residuals <= threshold))
        return max(ratio, BREAKDOWN_INLIER_RATIO)

    def stop(self, key):
        return key[0] <= self.stop_threshold


class ProgressiveScoring(ThresholdCountScoring):
    """
    PROSAC: inliers counted within the quality-ordered prefix being sampled.

    Ties on the prefix count are broken by the inlier count over all readings.
    The budget only shrinks for hypotheses whose support in some prefix of
    more than m readings could not be explained by chance (binomial
    non-randomness test).

    Args:
        order: Reading indices sorted by decreasing quality.
        subset_size: Number of readings per hypothesis (m).
        threshold: Residual threshold of an inlier.
    """

    def __init__(
        self,
        order: np.ndarray,
        subset_size: int,
        threshold: float = DEFAULT_THRESHOLD,
        non_random_probability: float = DEFAULT_NON_RANDOM_PROBABILITY,
        random_inlier_probability: float = DEFAULT_RANDOM_INLIER_PROBABILITY,
    ):
        super().__init__(threshold)
        self.order = np.asarray(order, dtype=int)
        self.subset_size = subset_size
        self.non_random_probability = non_random_probability
        self.random_inlier_probability = random_inlier_probability
        self._min_inliers = None

    def _prefix_count(self, residuals, prefix_size):
        if prefix_size is None:
            prefix_size = len(self.order)
        prefix = self.order[:prefix_size]
        return int(np.count_nonzero(residuals[prefix] <= self.threshold))

    def score(self, residuals, prefix_size=None):
        total = int(np.count_nonzero(residuals <= self.threshold))
        return (-self._prefix_count(residuals, prefix_size), -total)

    def min_non_random_inliers(self, prefix_size: int) -> int:
        """Smallest prefix support that is unlikely to happen by chance."""
        m = self.subset_size
        extra = prefix_size - m
        if extra <= 0:
            # The m sampled readings always fit their own hypothesis
            return m + 1
        # P(more than j random inliers among the remaining points) ≤ ψ
        j = stats.binom.isf(self.non_random_probability, extra, self.random_inlier_probability)
        return m + int(j) + 1

    def inlier_ratio(self, residuals, prefix_size=None):
        """
        Best inlier fraction over the prefixes the sampler can still reach.

        Every prefix of n ≥ max(prefix_size, m + 1) readings, up to all of
        them, is checked against the non-randomness test; the largest
        fraction among those that pass is returned, or 0 if none passes.
        """
        n_samples = len(self.order)
        m = self.subset_size
        if n_samples <= m:
            return 1.0
        if prefix_size is None:
            prefix_size = n_samples

        counts = np.cumsum(residuals[self.order] <= self.threshold)
        if self._min_inliers is None:
            self._min_inliers = [
                self.min_non_random_inliers(n) for n in range(n_samples + 1)
            ]

        best = 0.0
        for n in range(max(prefix_size, m + 1), n_samples + 1):
            if counts[n - 1] >= self._min_inliers[n]:
                best = max(best, counts[n - 1] / n)
        return float(best)


def create_scoring(
    method: RobustEstimatorMethod,
    subset_size: int,
    threshold: float = DEFAULT_THRESHOLD,
    stop_threshold: float = DEFAULT_STOP_THRESHOLD,
    order: Optional[np.ndarray] = None,
) -> ScoringStrategy:
    """
    Create the scoring strategy of a robust method.

    Args:
        method: Robust method.
        subset_size: Number of readings per hypothesis.
        threshold: Inlier threshold (RANSAC, MSAC, PROSAC).
        stop_threshold: Early stop median (LMedS, PROMedS).
        order: Quality ordering of the readings (PROSAC).

    Returns:
        Scoring strategy instance.
    """
    if method == RobustEstimatorMethod.RANSAC:
        return ThresholdCountScoring(threshold)
    if method == RobustEstimatorMethod.MSAC:
        return TruncatedQuadraticScoring(threshold)
    if method == RobustEstimatorMethod.PROSAC:
        if order is None:
            raise ValueError("PROSAC scoring requires a quality ordering")
        return ProgressiveScoring(order, subset_size, threshold)
    if method in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS):
        return MedianScoring(subset_size, stop_threshold)
    raise ValueError(f"Unknown robust method: {method}")
