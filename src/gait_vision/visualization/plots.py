"""
Gait Analysis Plots
===================

Diagnostic figures for one analysis: per-frame signals with detected steps
and selected strides, step-signal candidates, ROI mode timelines, and the
extracted feature vector.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np

from ..pipeline.extractor import ExtractionResult
from ..pipeline.features import GaitFeatures
from ..pipeline.steps import StepDetection
from ..tracking.roi import ROIMode

# Optional matplotlib
try:
    import matplotlib.pyplot as plt
    from matplotlib.figure import Figure
    MATPLOTLIB_AVAILABLE = True
except ImportError:
    MATPLOTLIB_AVAILABLE = False
    plt = None
    Figure = None


@dataclass
class PlotStyle:
    """Plot styling configuration."""

    figsize: tuple[float, float] = (10, 6)
    dpi: int = 150
    font_size: int = 12
    title_size: int = 14
    label_size: int = 12
    tick_size: int = 10
    legend_size: int = 10
    grid: bool = True
    style: str = "seaborn-v0_8-whitegrid"

    def apply(self):
        """Apply style to matplotlib."""
        if not MATPLOTLIB_AVAILABLE:
            return
        try:
            plt.style.use(self.style)
        except OSError:
            plt.style.use("seaborn-v0_8-white")

        plt.rcParams.update({
            "font.size": self.font_size,
            "axes.titlesize": self.title_size,
            "axes.labelsize": self.label_size,
            "xtick.labelsize": self.tick_size,
            "ytick.labelsize": self.tick_size,
            "legend.fontsize": self.legend_size,
            "figure.figsize": self.figsize,
            "figure.dpi": self.dpi,
        })


# Default style for publication
PUBLICATION_STYLE = PlotStyle(
    figsize=(8, 6),
    dpi=300,
    font_size=11,
    title_size=12,
    style="seaborn-v0_8-white",
)

ROI_MODE_COLORS = {
    ROIMode.ACQUIRE: "#9e9e9e",
    ROIMode.TRACK: "#2e7d32",
    ROIMode.EXPAND: "#f9a825",
    ROIMode.REACQUIRE: "#c62828",
}


def _save(fig, save_path: str | Path | None, style: PlotStyle) -> None:
    if save_path:
        fig.savefig(save_path, dpi=style.dpi, bbox_inches="tight")


def plot_gait_signals(
    result: ExtractionResult,
    title: str = "Gait Signals",
    save_path: str | Path | None = None,
    style: PlotStyle | None = None,
) -> Figure | None:
    """
    Plot inter-ankle distance, knee angles and trunk lean over time.

    Detected steps are drawn as vertical lines and the strides chosen for
    feature computation are shaded.

    Args:
        result: Extraction result carrying signals (None signals -> None)
        title: Plot title
        save_path: Optional path to save figure
        style: Plot style configuration

    Returns:
        Matplotlib figure or None if not available
    """
    if not MATPLOTLIB_AVAILABLE or result.signals is None:
        return None

    style = style or PUBLICATION_STYLE
    style.apply()

    signals = result.signals
    t = signals.timestamps
    fig, axes = plt.subplots(3, 1, figsize=(style.figsize[0], style.figsize[1] * 1.3), sharex=True)

    axes[0].plot(t, signals.inter_ankle_dist, color="#1565c0", linewidth=1.2)
    axes[0].set_ylabel("Inter-ankle (norm.)")

    axes[1].plot(t, signals.knee_angle_left, label="Left", linewidth=1.2)
    axes[1].plot(t, signals.knee_angle_right, label="Right", linewidth=1.2)
    axes[1].set_ylabel("Knee angle (deg)")
    axes[1].legend(loc="upper right")

    axes[2].plot(t, signals.trunk_angle, color="#6a1b9a", linewidth=1.2)
    axes[2].set_ylabel("Trunk lean (deg)")
    axes[2].set_xlabel("Time (s)")

    step_times = [e.time_s for e in result.step_detection.events] if result.step_detection else []
    selected = set(result.diagnostics.selected_indices)
    for ax in axes:
        for st in step_times:
            ax.axvline(st, color="gray", linestyle="--", linewidth=0.6, alpha=0.7)
        for i, stride in enumerate(result.strides):
            if i in selected:
                ax.axvspan(stride.start_time_s, stride.end_time_s, color="#43a047", alpha=0.12)
        if style.grid:
            ax.grid(alpha=0.3)

    axes[0].set_title(f"{title} ({result.quality_flag.value})")
    plt.tight_layout()
    _save(fig, save_path, style)
    return fig


def plot_step_candidates(
    detection: StepDetection,
    timestamps: np.ndarray | None = None,
    title: str = "Step Signal Candidates",
    save_path: str | Path | None = None,
    style: PlotStyle | None = None,
) -> Figure | None:
    """Plot the chosen step signal with its peaks and score every candidate."""
    if not MATPLOTLIB_AVAILABLE:
        return None

    style = style or PUBLICATION_STYLE
    style.apply()

    fig, (ax_sig, ax_score) = plt.subplots(
        1, 2, figsize=(style.figsize[0] * 1.4, style.figsize[1] * 0.7),
        gridspec_kw={"width_ratios": [3, 1]},
    )

    x = np.asarray(timestamps) if timestamps is not None else np.arange(len(detection.signal))
    ax_sig.plot(x, detection.signal, linewidth=1.2)
    frames = detection.step_frames
    if frames:
        ax_sig.scatter(x[frames], detection.signal[frames], color="red", zorder=3, s=18, label="steps")
        ax_sig.legend(loc="upper right")
    ax_sig.set_title(f"{detection.mode.value} ({detection.step_count} steps)")
    ax_sig.set_xlabel("Time (s)" if timestamps is not None else "Frame")

    names = [mode.value for mode in detection.candidates]
    scores = [q.score for q in detection.candidates.values()]
    colors = ["#2e7d32" if mode == detection.mode else "#90a4ae" for mode in detection.candidates]
    ax_score.barh(names, scores, color=colors)
    ax_score.set_xlim(0, 1)
    ax_score.set_xlabel("Score")
    ax_score.grid(axis="x", alpha=0.3)

    fig.suptitle(title)
    plt.tight_layout()
    _save(fig, save_path, style)
    return fig


def plot_roi_timeline(
    modes: Sequence[ROIMode],
    fps: float | None = None,
    title: str = "ROI Mode Timeline",
    save_path: str | Path | None = None,
    style: PlotStyle | None = None,
) -> Figure | None:
    """Colored band showing the ROI tracker mode after every frame."""
    if not MATPLOTLIB_AVAILABLE or not modes:
        return None

    style = style or PUBLICATION_STYLE
    style.apply()

    fig, ax = plt.subplots(figsize=(style.figsize[0], 1.8))
    scale = 1.0 / fps if fps else 1.0

    start = 0
    for i in range(1, len(modes) + 1):
        if i == len(modes) or modes[i] != modes[start]:
            ax.axvspan(start * scale, i * scale, color=ROI_MODE_COLORS[modes[start]], alpha=0.85)
            start = i

    handles = [plt.Rectangle((0, 0), 1, 1, color=c) for c in ROI_MODE_COLORS.values()]
    ax.legend(handles, [m.value for m in ROI_MODE_COLORS], loc="upper center",
              bbox_to_anchor=(0.5, -0.35), ncol=len(ROI_MODE_COLORS), frameon=False)
    ax.set_yticks([])
    ax.set_xlim(0, len(modes) * scale)
    ax.set_xlabel("Time (s)" if fps else "Frame")
    ax.set_title(title)

    plt.tight_layout()
    _save(fig, save_path, style)
    return fig


def plot_gait_features(
    features: GaitFeatures | dict[str, float],
    title: str = "Gait Features",
    save_path: str | Path | None = None,
    style: PlotStyle | None = None,
) -> Figure | None:
    """
    Create bar plot of gait features.

    Args:
        features: GaitFeatures or dict of feature name -> value
        title: Plot title
        save_path: Optional path to save figure
        style: Plot style configuration

    Returns:
        Matplotlib figure or None if not available
    """
    if not MATPLOTLIB_AVAILABLE:
        return None

    if isinstance(features, GaitFeatures):
        features = features.to_dict()

    style = style or PUBLICATION_STYLE
    style.apply()

    fig, ax = plt.subplots(figsize=style.figsize)

    names = list(features.keys())
    values = [0.0 if v is None or np.isnan(v) else float(v) for v in features.values()]

    colors = plt.cm.viridis(np.linspace(0.2, 0.8, len(names)))
    bars = ax.barh(names, values, color=colors)

    ax.set_xlabel("Value")
    ax.set_title(title)
    ax.grid(axis="x", alpha=0.3)

    # Add value labels
    for bar, val in zip(bars, values):
        ax.text(bar.get_width() + 0.01, bar.get_y() + bar.get_height() / 2,
                f"{val:.3f}", va="center", fontsize=style.tick_size)

    plt.tight_layout()
    _save(fig, save_path, style)
    return fig
