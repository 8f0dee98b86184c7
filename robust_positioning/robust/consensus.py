"""
Sampling consensus loop shared by all robust methods.

One loop drives RANSAC, LMedS, MSAC, PROSAC and PROMedS; the methods only
differ by their sampler (uniform or progressive) and scoring strategy.

Each iteration:
    1. draw a subset of readings
    2. solve a candidate position from the subset (a failed solve skips the
       iteration but still consumes it)
    3. compute residuals |‖x - pᵢ‖ - dᵢ| for every reading and score them
    4. keep the candidate if its key beats the best one, and shrink the
       adaptive budget ⌈log(1 - confidence) / log(1 - εᵐ)⌉

The loop ends when max_iterations or the adaptive budget is exhausted, or when
the scoring strategy reports an early stop.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from robust_positioning.errors import LaterationError, RobustEstimatorError
from robust_positioning.robust.scoring import MedianScoring, ScoringStrategy

logger = logging.getLogger(__name__)


@dataclass
class ConsensusResult:
    """Best hypothesis of a consensus run.

    Attributes:
        position: Best candidate position, shape (N,).
        residuals: Residuals of every reading under the best candidate.
        inliers: Inlier mask of the best candidate.
        inlier_threshold: Residual threshold that defined the inliers.
        key: Score key of the best candidate.
        iterations: Number of iterations performed.
        best_iteration: Iteration that produced the best candidate.
    """

    position: np.ndarray
    residuals: np.ndarray
    inliers: np.ndarray
    inlier_threshold: float
    key: Tuple
    iterations: int
    best_iteration: int


def adaptive_iteration_budget(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """
    Number of iterations needed to draw an all-inlier subset with a confidence.

        k = ⌈log(1 - confidence) / log(1 - εᵐ)⌉

    Args:
        inlier_ratio: Fraction ε of inliers.
        subset_size: Number of readings per subset (m).
        confidence: Probability in (0, 1) of drawing at least one clean subset.
        max_iterations: Upper bound of the result.

    Returns:
        Iteration budget in [1, max_iterations].

    Example:
        >>> adaptive_iteration_budget(0.5, 3, 0.99, 5000)
        35
    """
    if inlier_ratio <= 0.0:
        return max_iterations

    p_clean = inlier_ratio**subset_size
    if p_clean >= 1.0:
        return 1

    budget = np.ceil(np.log(1.0 - confidence) / np.log(1.0 - p_clean))
    return int(min(max(budget, 1), max_iterations))


def compute_residuals(
    position: np.ndarray, positions: np.ndarray, distances: np.ndarray
) -> np.ndarray:
    """Absolute distance residuals of every reading under a candidate position."""
    return np.abs(np.linalg.norm(positions - position, axis=1) - distances)


def run_consensus(
    solve_subset: Callable[[np.ndarray], np.ndarray],
    residuals_of: Callable[[np.ndarray], np.ndarray],
    sampler,
    scoring: ScoringStrategy,
    subset_size: int,
    confidence: float,
    max_iterations: int,
    progress_delta: float,
    on_next_iteration: Optional[Callable[[int], None]] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> ConsensusResult:
    """
    Run the sampling consensus loop.

    Args:
        solve_subset: Candidate position from reading indices; raises
                      LaterationError when the subset cannot be solved.
        residuals_of: Residuals of every reading under a candidate position.
        sampler: UniformSampler or ProsacSampler.
        scoring: Scoring strategy of the robust method.
        subset_size: Number of readings per subset.
        confidence: Confidence of the adaptive budget, in (0, 1).
        max_iterations: Maximum number of iterations.
        progress_delta: Minimum progress increase between notifications.
        on_next_iteration: Called with the iteration number of each new best.
        on_progress: Called with the progress in [0, 1].

    Returns:
        ConsensusResult of the best candidate.

    Raises:
        RobustEstimatorError: If no subset could be solved.
    """
    best_position = None
    best_residuals = None
    best_key = None
    best_prefix = None
    best_iteration = 0
    last_error = None

    budget = max_iterations
    notified_progress = 0.0
    iteration = 0

    while iteration < budget:
        iteration += 1
        prefix = sampler.prefix_size(iteration)

        # Keys depend on the sampled prefix, compare on the current one
        if best_residuals is not None and best_prefix != prefix:
            best_key = scoring.score(best_residuals, prefix)
            best_prefix = prefix

        subset = sampler.draw(iteration)

        try:
            position = solve_subset(subset)
        except LaterationError as e:
            last_error = e
            logger.debug("Iteration %d: subset %s skipped (%s)", iteration, subset, e)
            position = None

        if position is not None:
            residuals = residuals_of(position)
            key = scoring.score(residuals, prefix)

            if best_key is None or key < best_key:
                best_position = position
                best_residuals = residuals
                best_key = key
                best_prefix = prefix
                best_iteration = iteration

                ratio = scoring.inlier_ratio(residuals, prefix)
                budget = min(
                    budget,
                    adaptive_iteration_budget(ratio, subset_size, confidence, max_iterations),
                )
                logger.debug(
                    "Iteration %d: new best key %s, inlier ratio %.3f, budget %d",
                    iteration, key, ratio, budget,
                )

                if on_next_iteration is not None:
                    on_next_iteration(iteration)

                if scoring.stop(key):
                    logger.debug("Iteration %d: stop threshold reached", iteration)
                    break

        if on_progress is not None:
            progress = min(iteration / budget, 1.0)
            if progress - notified_progress >= progress_delta and progress > notified_progress:
                on_progress(progress)
                notified_progress = progress

    if best_position is None:
        raise RobustEstimatorError(
            f"No valid hypothesis found in {iteration} iterations"
        ) from last_error

    inliers, threshold = scoring.inliers(best_residuals)

    return ConsensusResult(
        position=best_position,
        residuals=best_residuals,
        inliers=inliers,
        inlier_threshold=threshold,
        key=best_key,
        iterations=iteration,
        best_iteration=best_iteration,
    )


def best_median(result: ConsensusResult, scoring: ScoringStrategy) -> Optional[float]:
    """Best median of squared residuals for median-based scoring."""
    if isinstance(scoring, MedianScoring):
        return float(result.key[0])
    return None
