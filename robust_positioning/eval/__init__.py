"""
Evaluation and Visualization Module.

This module provides accuracy, error metrics and plotting utilities for
robust position estimates.

Modules:
    accuracy: Confidence regions from an estimate covariance
    metrics: Error statistics and NEES of Monte Carlo trials
    plots: Visualization of estimates and error distributions
"""

from .accuracy import (
    Accuracy,
    confidence_ellipse,
    confidence_from_factor,
    confidence_radius,
    standard_deviation_factor,
)
from .metrics import compute_error_stats, compute_nees
from .plots import plot_error_cdf, plot_estimates_2d, save_figure

__all__ = [
    # Accuracy
    "Accuracy",
    "confidence_ellipse",
    "confidence_radius",
    "confidence_from_factor",
    "standard_deviation_factor",
    # Metrics
    "compute_error_stats",
    "compute_nees",
    # Plots
    "plot_estimates_2d",
    "plot_error_cdf",
    "save_figure",
]
