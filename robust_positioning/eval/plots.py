"""
Visualization utilities for robust positioning.

All functions return matplotlib Figure objects for flexible display/saving.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.patches import Ellipse

from robust_positioning.eval.accuracy import confidence_ellipse

COLORS = ["blue", "red", "green", "orange", "purple"]
MARKERS = ["o", "^", "D", "v", "P"]


def plot_estimates_2d(
    sources_xy: np.ndarray,
    truth_xy: np.ndarray,
    estimates: Dict[str, np.ndarray],
    covariances: Optional[Dict[str, Optional[np.ndarray]]] = None,
    outlier_sources_xy: Optional[np.ndarray] = None,
    confidence: float = 0.95,
    title: str = "Robust Position Estimates",
) -> plt.Figure:
    """
    Plot sources, true position and estimates with confidence ellipses.

    Args:
        sources_xy: Source positions, shape (M, 2)
        truth_xy: True receiver position, shape (2,)
        estimates: Estimated position per method {name: (2,)}
        covariances: Optional covariance per method {name: (2, 2) or None}
        outlier_sources_xy: Sources whose readings were corrupted, shape (K, 2)
        confidence: Confidence level of the ellipses
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 8))

    ax.plot(
        sources_xy[:, 0],
        sources_xy[:, 1],
        "s",
        color="gray",
        markersize=10,
        label="Sources",
    )
    if outlier_sources_xy is not None and len(outlier_sources_xy) > 0:
        ax.plot(
            outlier_sources_xy[:, 0],
            outlier_sources_xy[:, 1],
            "s",
            markerfacecolor="none",
            markeredgecolor="red",
            markersize=14,
            markeredgewidth=2,
            label="NLOS readings",
        )

    ax.plot(truth_xy[0], truth_xy[1], "k*", markersize=18, label="Ground Truth", zorder=10)

    for i, (name, position) in enumerate(estimates.items()):
        color = COLORS[i % len(COLORS)]
        ax.plot(
            position[0],
            position[1],
            MARKERS[i % len(MARKERS)],
            color=color,
            markersize=9,
            label=name,
            alpha=0.8,
        )

        covariance = None if covariances is None else covariances.get(name)
        if covariance is not None:
            semi_axes, axes = confidence_ellipse(covariance, confidence)
            angle = np.degrees(np.arctan2(axes[1, 0], axes[0, 0]))
            ax.add_patch(
                Ellipse(
                    xy=position,
                    width=2 * semi_axes[0],
                    height=2 * semi_axes[1],
                    angle=angle,
                    fill=False,
                    color=color,
                    linestyle="--",
                )
            )

    ax.set_xlabel("X (m)", fontsize=12)
    ax.set_ylabel("Y (m)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.axis("equal")

    plt.tight_layout()
    return fig


def plot_error_cdf(
    errors_dict: Dict[str, np.ndarray], title: str = "Error CDF"
) -> plt.Figure:
    """
    Plot the empirical CDF of position error magnitudes per method.

    Args:
        errors_dict: Dictionary of error arrays {name: errors}
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=(10, 6))

    linestyles = ["-", "--", "-.", ":", "-"]

    for i, (name, errors) in enumerate(errors_dict.items()):
        errors = np.asarray(errors)
        if errors.ndim > 1:
            error_magnitudes = np.linalg.norm(errors, axis=1)
        else:
            error_magnitudes = np.abs(errors)

        sorted_errors = np.sort(error_magnitudes)
        cdf = np.arange(1, len(sorted_errors) + 1) / len(sorted_errors)

        ax.plot(
            sorted_errors,
            cdf,
            label=name,
            color=COLORS[i % len(COLORS)],
            linestyle=linestyles[i % len(linestyles)],
            linewidth=2,
        )

    ax.set_xlabel("Position Error (m)", fontsize=12)
    ax.set_ylabel("CDF", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)
    ax.set_xscale("symlog", linthresh=1e-3)
    ax.set_ylim([0, 1.05])

    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("png",),
    dpi: int = 150,
) -> List[Path]:
    """
    Save a figure in one or more formats.

    Args:
        fig: Matplotlib figure to save
        out_dir: Output directory, created if missing
        name: Base filename (without extension)
        formats: Format extensions
        dpi: Resolution of raster formats

    Returns:
        paths: Saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        path = out_dir / f"{name}.{fmt}"
        fig.savefig(path, dpi=dpi, bbox_inches="tight")
        paths.append(path)

    return paths
