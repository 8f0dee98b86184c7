"""Robust estimation methods."""

from enum import Enum


class RobustEstimatorMethod(Enum):
    """Enumeration of robust consensus methods.

    Attributes:
        RANSAC: Random sample consensus, maximizes the inlier count.
        LMEDS: Least median of squares, minimizes the median squared residual.
        MSAC: M-estimator sample consensus, minimizes truncated squared residuals.
        PROSAC: Progressive sample consensus, RANSAC with quality-ordered sampling.
        PROMEDS: Progressive least median of squares, LMedS with
            quality-ordered sampling.
    """

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def is_prioritized(self) -> bool:
        """Whether sampling is driven by quality scores."""
        return self in (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)

    @property
    def uses_threshold(self) -> bool:
        """Whether inliers are defined by a fixed residual threshold."""
        return self in (
            RobustEstimatorMethod.RANSAC,
            RobustEstimatorMethod.MSAC,
            RobustEstimatorMethod.PROSAC,
        )

    @property
    def uses_median(self) -> bool:
        """Whether hypotheses are ranked by their median squared residual."""
        return self in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS
