"""
Lateration: positions from distances to known sources.

Solvers:
    - InhomogeneousLinearLaterationSolver: closed-form, reference-differenced
    - HomogeneousLinearLaterationSolver: closed-form, SVD null vector
    - NonLinearLaterationSolver: weighted Levenberg-Marquardt
"""

from robust_positioning.lateration.solvers import (
    HomogeneousLinearLaterationSolver,
    InhomogeneousLinearLaterationSolver,
    NonLinearLaterationSolver,
    min_required_entries,
    solve_preliminary,
)

__all__ = [
    "InhomogeneousLinearLaterationSolver",
    "HomogeneousLinearLaterationSolver",
    "NonLinearLaterationSolver",
    "min_required_entries",
    "solve_preliminary",
]
