"""Adaptive ROI tracking for pose detection."""

from .roi import (
    ROIAction,
    ROIBounds,
    ROIMode,
    ROIObservation,
    ROIState,
    ROITracker,
    action_for,
    step,
)

__all__ = [
    "ROIAction",
    "ROIBounds",
    "ROIMode",
    "ROIObservation",
    "ROIState",
    "ROITracker",
    "action_for",
    "step",
]
