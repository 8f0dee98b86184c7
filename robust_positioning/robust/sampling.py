"""
Subset samplers for robust consensus.

A sampler draws the indices of the readings used to build one hypothesis. It
is a function of the iteration counter and its own random generator, so that
a run is reproducible from a seed.

- UniformSampler: subsets drawn uniformly without replacement, optionally
  spread across distinct sources before a source is repeated.
- ProsacSampler: subsets drawn from a prefix of the readings sorted by
  decreasing quality; the prefix grows from m to n following the PROSAC
  growth function, so low-quality readings are only drawn in later iterations.

References:
    Chum, O. and Matas, J. "Matching with PROSAC - Progressive Sample
    Consensus", CVPR 2005.
"""

from math import comb
from typing import Optional, Union

import numpy as np


RandomState = Union[None, int, np.random.Generator]


def as_generator(random_state: RandomState = None) -> np.random.Generator:
    """Turn a seed, a Generator or None into a Generator."""
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def _check_sizes(n_samples: int, subset_size: int) -> None:
    if subset_size < 1:
        raise ValueError(f"subset_size must be at least 1, got {subset_size}")
    if n_samples < subset_size:
        raise ValueError(
            f"Cannot draw subsets of {subset_size} from {n_samples} samples"
        )


class UniformSampler:
    """
    Uniform random subsets without replacement.

    Args:
        n_samples: Number of readings to draw from.
        subset_size: Number of readings per subset.
        groups: Optional group label (source index) of every reading. When
                given, each subset takes one reading from as many distinct
                groups as possible before repeating a group.
        rng: Random generator.

    Example:
        >>> sampler = UniformSampler(10, 3, rng=np.random.default_rng(0))
        >>> subset = sampler.draw(1)
        >>> len(set(subset))
        3
    """

    def __init__(
        self,
        n_samples: int,
        subset_size: int,
        groups: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        _check_sizes(n_samples, subset_size)
        self.n_samples = n_samples
        self.subset_size = subset_size
        self.rng = rng if rng is not None else np.random.default_rng()

        self._groups = None
        if groups is not None:
            groups = np.asarray(groups)
            if groups.shape != (n_samples,):
                raise ValueError(
                    f"Expected {n_samples} group labels, got shape {groups.shape}"
                )
            self._groups = [np.flatnonzero(groups == g) for g in np.unique(groups)]

    def prefix_size(self, iteration: int) -> int:
        """All readings are eligible at every iteration."""
        return self.n_samples

    def draw(self, iteration: int) -> np.ndarray:
        """Draw the subset of one iteration."""
        if self._groups is None:
            return self.rng.choice(self.n_samples, size=self.subset_size, replace=False)

        subset = []
        for g in self.rng.permutation(len(self._groups)):
            if len(subset) == self.subset_size:
                break
            subset.append(self.rng.choice(self._groups[g]))

        if len(subset) < self.subset_size:
            remaining = np.setdiff1d(np.arange(self.n_samples), subset)
            extra = self.rng.choice(
                remaining, size=self.subset_size - len(subset), replace=False
            )
            subset.extend(extra)

        return np.asarray(subset, dtype=int)


def prosac_growth_schedule(
    n_samples: int, subset_size: int, max_iterations: int
) -> np.ndarray:
    """
    Iterations at which the PROSAC sampling prefix grows.

    With T_N = max_iterations the expected number of samples drawn from the
    first n readings is

        T_m = T_N · Π_{i=0}^{m-1} (m - i) / (N - i)
        T_{n+1} = T_n · (n + 1) / (n + 1 - m)

    and the prefix reaches n readings at iteration

        T'_m = 1,   T'_{n+1} = T'_n + min(⌈T_{n+1} - T_n⌉, C(n, m))

    The step is capped by the number C(n, m) of distinct subsets of the
    current prefix.

    Args:
        n_samples: Number of readings (N).
        subset_size: Number of readings per subset (m).
        max_iterations: Iteration count T_N at which all readings are used.

    Returns:
        Integer array of length N - m + 1; entry k is T'_{m+k}.

    Example:
        >>> prosac_growth_schedule(5, 3, 100)
        array([1, 2, 6])
    """
    _check_sizes(n_samples, subset_size)
    m = subset_size
    N = n_samples

    T_n = float(max_iterations)
    for i in range(m):
        T_n *= (m - i) / (N - i)

    schedule = np.empty(N - m + 1, dtype=int)
    schedule[0] = 1
    for k, n in enumerate(range(m, N), start=1):
        T_next = T_n * (n + 1) / (n + 1 - m)
        step = int(np.ceil(T_next - T_n - 1e-9))
        schedule[k] = schedule[k - 1] + min(step, comb(n, m))
        T_n = T_next

    return schedule


class ProsacSampler:
    """
    Progressive sampler over readings sorted by decreasing quality.

    At iteration t the prefix holds the n best readings, where n is the largest
    size whose growth iteration T'_n is not after t. On the iteration at which
    the prefix has just grown, the subset is the newest reading plus m - 1
    readings drawn from the rest of the prefix; otherwise it is drawn uniformly
    from the whole prefix.

    Args:
        quality_scores: Quality score of every reading (larger is better).
        subset_size: Number of readings per subset.
        max_iterations: Iteration count at which all readings are eligible.
        rng: Random generator.
    """

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        max_iterations: int,
        rng: Optional[np.random.Generator] = None,
    ):
        quality_scores = np.asarray(quality_scores, dtype=float)
        if quality_scores.ndim != 1:
            raise ValueError(
                f"quality_scores must be 1D, got shape {quality_scores.shape}"
            )
        _check_sizes(len(quality_scores), subset_size)

        self.n_samples = len(quality_scores)
        self.subset_size = subset_size
        self.rng = rng if rng is not None else np.random.default_rng()

        # Stable sort keeps reading order among equal scores
        self.order = np.argsort(-quality_scores, kind="stable")
        self.schedule = prosac_growth_schedule(self.n_samples, subset_size, max_iterations)

    def prefix_size(self, iteration: int) -> int:
        """Number of best readings eligible at an iteration (1-based)."""
        grown = int(np.searchsorted(self.schedule, iteration, side="right"))
        return self.subset_size + max(grown - 1, 0)

    def draw(self, iteration: int) -> np.ndarray:
        """Draw the subset of one iteration (1-based)."""
        n = self.prefix_size(iteration)
        m = self.subset_size

        just_grown = n > m and self.schedule[n - m] == iteration
        if just_grown:
            positions = self.rng.choice(n - 1, size=m - 1, replace=False)
            positions = np.append(positions, n - 1)
        else:
            positions = self.rng.choice(n, size=m, replace=False)

        return self.order[positions]
