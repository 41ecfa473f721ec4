"""Diagnostic plots (requires the ``viz`` extra)."""

from .plots import (
    MATPLOTLIB_AVAILABLE,
    PUBLICATION_STYLE,
    PlotStyle,
    plot_gait_features,
    plot_gait_signals,
    plot_roi_timeline,
    plot_step_candidates,
)

__all__ = [
    "MATPLOTLIB_AVAILABLE",
    "PUBLICATION_STYLE",
    "PlotStyle",
    "plot_gait_features",
    "plot_gait_signals",
    "plot_roi_timeline",
    "plot_step_candidates",
]
