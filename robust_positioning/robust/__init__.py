"""
Robust consensus estimation for lateration.

Submodules:
    methods: RobustEstimatorMethod enumeration
    sampling: uniform and progressive (PROSAC) subset samplers
    scoring: RANSAC, MSAC, LMedS and PROSAC hypothesis scoring
    consensus: the shared sampling consensus loop
    refinement: inlier refinement and covariance
    solver: RobustLaterationSolver with its lock and listener protocol
"""

from robust_positioning.robust.consensus import (
    ConsensusResult,
    adaptive_iteration_budget,
    compute_residuals,
    run_consensus,
)
from robust_positioning.robust.methods import DEFAULT_ROBUST_METHOD, RobustEstimatorMethod
from robust_positioning.robust.refinement import inflate_outlier_stds, refine_position
from robust_positioning.robust.sampling import (
    ProsacSampler,
    UniformSampler,
    as_generator,
    prosac_growth_schedule,
)
from robust_positioning.robust.scoring import (
    MedianScoring,
    ProgressiveScoring,
    ScoringStrategy,
    ThresholdCountScoring,
    TruncatedQuadraticScoring,
    create_scoring,
)
from robust_positioning.robust.solver import (
    EstimatorState,
    RobustLaterationSolver,
    RobustLaterationSolverListener,
)

__all__ = [
    # Methods
    "RobustEstimatorMethod",
    "DEFAULT_ROBUST_METHOD",
    # Sampling
    "UniformSampler",
    "ProsacSampler",
    "prosac_growth_schedule",
    "as_generator",
    # Scoring
    "ScoringStrategy",
    "ThresholdCountScoring",
    "TruncatedQuadraticScoring",
    "MedianScoring",
    "ProgressiveScoring",
    "create_scoring",
    # Consensus loop
    "ConsensusResult",
    "run_consensus",
    "adaptive_iteration_budget",
    "compute_residuals",
    # Refinement
    "refine_position",
    "inflate_outlier_stds",
    # Solver
    "EstimatorState",
    "RobustLaterationSolver",
    "RobustLaterationSolverListener",
]
