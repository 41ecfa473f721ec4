"""
ROI Tracking for Pose Detection
===============================

Adaptive region-of-interest controller that crops the frame around the
walking subject to raise the effective resolution of pose detection.

Four modes:

    ACQUIRE    full frame until a stable, confident pose is seen
    TRACK      crop with the normal margin
    EXPAND     crop with an enlarged margin while quality is degraded
    REACQUIRE  burst of full frames to recover the subject

The controller is a pure transition function ``step(state, observation)``
over an immutable ``ROIState``; ``ROITracker`` wraps it for frame loops.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum

import cv2
import numpy as np

from ..core.config import ROIConfig
from ..pipeline.extractors.pose import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
)

logger = logging.getLogger(__name__)

ROI_CORE_JOINTS = (
    LEFT_SHOULDER, RIGHT_SHOULDER,
    LEFT_HIP, RIGHT_HIP,
    LEFT_KNEE, RIGHT_KNEE,
    LEFT_ANKLE, RIGHT_ANKLE,
)
MIN_BOUND_JOINTS = 4


class ROIMode(Enum):
    """ROI tracker modes."""

    ACQUIRE = "acquire"
    TRACK = "track"
    EXPAND = "expand"
    REACQUIRE = "reacquire"


@dataclass(frozen=True, eq=False)
class ROIObservation:
    """Pose detection outcome for one frame, in ROI-independent coordinates."""

    detected: bool
    keypoints: np.ndarray | None = None  # (33, 2) normalized
    confidences: np.ndarray | None = None  # (33,)

    @classmethod
    def failure(cls) -> ROIObservation:
        return cls(detected=False)

    @property
    def success(self) -> bool:
        return self.detected and self.keypoints is not None and self.confidences is not None


@dataclass(frozen=True)
class ROIAction:
    """How the next frame should be processed."""

    use_roi: bool
    expanded: bool


@dataclass(frozen=True)
class ROIBounds:
    """Pixel rectangle [left, right) x [top, bottom)."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top


@dataclass(frozen=True)
class ROIState:
    """Complete tracker state."""

    mode: ROIMode = ROIMode.ACQUIRE
    frames_in_mode: int = 0
    stable_run: int = 0

    # Smoothed ROI (normalized)
    center_x: float | None = None
    center_y: float | None = None
    size: float | None = None

    # Rolling windows
    quality_window: tuple[float, ...] = ()
    detect_window: tuple[bool, ...] = ()
    consecutive_failures: int = 0

    # Stats
    frames_acquire: int = 0
    frames_track: int = 0
    frames_expand: int = 0
    frames_reacquire: int = 0
    reacquire_count: int = 0
    transition_count: int = 0
    max_consecutive_fail: int = 0

    @property
    def has_bounds(self) -> bool:
        return self.center_x is not None and self.size is not None


# =============================================================================
# Quality measures
# =============================================================================


def far_leg_confidence(confidences: np.ndarray) -> float:
    """Confidence of the less visible ankle."""
    return float(min(confidences[LEFT_ANKLE], confidences[RIGHT_ANKLE]))


def failure_rate(detect_window: tuple[bool, ...]) -> float:
    if not detect_window:
        return 0.0
    return sum(1 for ok in detect_window if not ok) / len(detect_window)


def is_quality_degraded(quality_window: tuple[float, ...], config: ROIConfig) -> bool:
    """Too many far-leg confidences below threshold in a sufficiently full window."""
    if len(quality_window) < config.quality_window_size // 2 or not quality_window:
        return False
    degraded = sum(1 for q in quality_window if q < config.quality_threshold)
    return degraded / len(quality_window) >= config.degraded_ratio_threshold


def is_quality_recovered(quality_window: tuple[float, ...], config: ROIConfig) -> bool:
    """Most of the most recent frames are back above the threshold."""
    if len(quality_window) < config.recovery_window:
        return False
    recent = quality_window[-config.recovery_window:]
    good = sum(1 for q in recent if q >= config.quality_threshold)
    return good >= config.recovery_min_good


def _push(window: tuple, value, size: int) -> tuple:
    return (window + (value,))[-size:]


# =============================================================================
# Transition function
# =============================================================================


def _update_bounds(state: ROIState, obs: ROIObservation, config: ROIConfig, expanded: bool) -> ROIState:
    """Update the smoothed ROI from confident core landmarks."""
    points = [
        obs.keypoints[j]
        for j in ROI_CORE_JOINTS
        if obs.confidences[j] > config.landmark_min_confidence
    ]
    if len(points) < MIN_BOUND_JOINTS:
        return state

    points = np.asarray(points, dtype=float)
    x_min, y_min = points.min(axis=0)
    x_max, y_max = points.max(axis=0)
    center_x = float((x_min + x_max) / 2)
    center_y = float((y_min + y_max) / 2)
    margin = config.expanded_margin if expanded else config.margin
    size = max(float(max(x_max - x_min, y_max - y_min)) * margin, config.min_size)

    if not state.has_bounds:
        return replace(state, center_x=center_x, center_y=center_y, size=size)

    alpha = config.center_ema_alpha
    size_alpha = config.size_expand_alpha if size > state.size else config.size_shrink_alpha
    return replace(
        state,
        center_x=alpha * center_x + (1 - alpha) * state.center_x,
        center_y=alpha * center_y + (1 - alpha) * state.center_y,
        size=size_alpha * size + (1 - size_alpha) * state.size,
    )


def _transition(state: ROIState, mode: ROIMode, reason: str) -> ROIState:
    logger.debug("ROI: %s -> %s (%s)", state.mode.name, mode.name, reason)
    return replace(
        state,
        mode=mode,
        frames_in_mode=0,
        stable_run=0,
        transition_count=state.transition_count + 1,
    )


def _enter_reacquire(state: ROIState, reason: str) -> ROIState:
    state = _transition(state, ROIMode.REACQUIRE, reason)
    return replace(state, reacquire_count=state.reacquire_count + 1, detect_window=())


def action_for(mode: ROIMode) -> ROIAction:
    """Processing action implied by a mode."""
    if mode == ROIMode.TRACK:
        return ROIAction(use_roi=True, expanded=False)
    if mode == ROIMode.EXPAND:
        return ROIAction(use_roi=True, expanded=True)
    return ROIAction(use_roi=False, expanded=False)


def step(
    state: ROIState, obs: ROIObservation, config: ROIConfig | None = None
) -> tuple[ROIState, ROIAction]:
    """
    Advance the tracker by one frame.

    Args:
        state: Current state
        obs: Detection outcome of the frame just processed
        config: Tracker parameters

    Returns:
        (new_state, action for the next frame)
    """
    cfg = config or ROIConfig()
    success = obs.success
    far_leg = far_leg_confidence(obs.confidences) if success else 0.0
    failures = 0 if success else state.consecutive_failures + 1

    s = replace(
        state,
        frames_in_mode=state.frames_in_mode + 1,
        quality_window=_push(state.quality_window, far_leg, cfg.quality_window_size),
        consecutive_failures=failures,
        max_consecutive_fail=max(state.max_consecutive_fail, failures),
    )

    if s.mode == ROIMode.ACQUIRE:
        s = _step_acquire(s, obs, success, far_leg, cfg)
    elif s.mode == ROIMode.TRACK:
        s = _step_track(s, obs, success, cfg)
    elif s.mode == ROIMode.EXPAND:
        s = _step_expand(s, obs, success, cfg)
    else:
        s = _step_reacquire(s, obs, success, cfg)

    return s, action_for(s.mode)


def _step_acquire(s: ROIState, obs: ROIObservation, success: bool, far_leg: float, cfg: ROIConfig) -> ROIState:
    s = replace(s, frames_acquire=s.frames_acquire + 1)
    stable = 0
    if success:
        s = _update_bounds(s, obs, cfg, expanded=False)
        if far_leg >= cfg.quality_threshold:
            stable = s.stable_run + 1
    s = replace(s, stable_run=stable)

    if stable >= cfg.acquire_stable_frames and s.has_bounds:
        s = _transition(s, ROIMode.TRACK, f"{stable} stable detections")
    return s


def _step_track(s: ROIState, obs: ROIObservation, success: bool, cfg: ROIConfig) -> ROIState:
    s = replace(
        s,
        frames_track=s.frames_track + 1,
        detect_window=_push(s.detect_window, success, cfg.quality_window_size),
    )
    if success:
        s = _update_bounds(s, obs, cfg, expanded=False)

    if s.consecutive_failures >= cfg.consecutive_fail_reacquire:
        return _enter_reacquire(s, "consecutive failures")

    if s.frames_in_mode >= cfg.min_dwell_frames:
        rate = failure_rate(s.detect_window)
        if rate >= cfg.fail_ratio_track:
            return _transition(s, ROIMode.EXPAND, f"failure rate {int(rate * 100)}%")
        if is_quality_degraded(s.quality_window, cfg):
            return _transition(s, ROIMode.EXPAND, "quality degraded")
    return s


def _step_expand(s: ROIState, obs: ROIObservation, success: bool, cfg: ROIConfig) -> ROIState:
    s = replace(
        s,
        frames_expand=s.frames_expand + 1,
        detect_window=_push(s.detect_window, success, cfg.quality_window_size),
    )
    if success:
        s = _update_bounds(s, obs, cfg, expanded=True)

    if is_quality_recovered(s.quality_window, cfg):
        return _transition(s, ROIMode.TRACK, "quality recovered")

    if s.frames_in_mode >= cfg.reacquire_frames:
        rate = failure_rate(s.detect_window)
        if rate >= cfg.fail_ratio_expand:
            return _enter_reacquire(s, f"failure rate {int(rate * 100)}%")
        return _enter_reacquire(s, "timeout")
    return s


def _step_reacquire(s: ROIState, obs: ROIObservation, success: bool, cfg: ROIConfig) -> ROIState:
    s = replace(s, frames_reacquire=s.frames_reacquire + 1)
    if success:
        s = _update_bounds(s, obs, cfg, expanded=False)

    if s.frames_in_mode >= cfg.reacquire_frames:
        if is_quality_recovered(s.quality_window, cfg):
            return _transition(s, ROIMode.TRACK, "recovered")
        return _transition(s, ROIMode.EXPAND, "still degraded")
    return s


# =============================================================================
# Stateful wrapper
# =============================================================================


class ROITracker:
    """Frame-loop wrapper around the ROI transition function."""

    def __init__(self, config: ROIConfig | None = None):
        self.config = config or ROIConfig()
        self.state = ROIState()
        self.mode_history: list[ROIMode] = []

    @property
    def mode(self) -> ROIMode:
        return self.state.mode

    @property
    def should_use_roi(self) -> bool:
        return self.state.mode in (ROIMode.TRACK, ROIMode.EXPAND)

    def reset(self) -> None:
        self.state = ROIState()
        self.mode_history = []

    def update(
        self,
        keypoints: np.ndarray | None,
        confidences: np.ndarray | None,
        detected: bool,
    ) -> ROIAction:
        """Feed one frame's detection (full-frame coordinates) and get the next action."""
        obs = ROIObservation(detected=detected, keypoints=keypoints, confidences=confidences)
        self.state, action = step(self.state, obs, self.config)
        self.mode_history.append(self.state.mode)
        return action

    def roi_bounds(self, frame_width: int, frame_height: int, expanded: bool = False) -> ROIBounds:
        """ROI in pixels, or the full frame when no ROI is established or it is too small."""
        full = ROIBounds(0, 0, frame_width, frame_height)
        s = self.state
        if not s.has_bounds:
            return full

        size = s.size
        if expanded:
            size *= self.config.expanded_margin / self.config.margin
        half = size / 2

        left = max(int((s.center_x - half) * frame_width), 0)
        top = max(int((s.center_y - half) * frame_height), 0)
        right = min(int((s.center_x + half) * frame_width), frame_width)
        bottom = min(int((s.center_y + half) * frame_height), frame_height)

        min_px = self.config.min_crop_px
        if right - left < min_px or bottom - top < min_px:
            return full
        return ROIBounds(left, top, right, bottom)

    @staticmethod
    def map_to_full_frame(
        keypoints: np.ndarray, bounds: ROIBounds, frame_width: int, frame_height: int
    ) -> np.ndarray:
        """Map ROI-normalized keypoints (N, 2) to full-frame normalized coordinates."""
        keypoints = np.asarray(keypoints, dtype=float)
        mapped = np.empty_like(keypoints)
        mapped[:, 0] = (bounds.left + keypoints[:, 0] * bounds.width) / frame_width
        mapped[:, 1] = (bounds.top + keypoints[:, 1] * bounds.height) / frame_height
        return mapped

    def crop(self, image: np.ndarray, bounds: ROIBounds) -> np.ndarray:
        """Crop an image to the ROI and resize it to the target size."""
        h, w = image.shape[:2]
        x = min(max(bounds.left, 0), w - 1)
        y = min(max(bounds.top, 0), h - 1)
        cw = min(max(bounds.width, 1), w - x)
        ch = min(max(bounds.height, 1), h - y)
        cropped = image[y:y + ch, x:x + cw]

        target = self.config.target_size
        if target > 0 and (cw != target or ch != target):
            cropped = cv2.resize(cropped, (target, target), interpolation=cv2.INTER_LINEAR)
        return cropped

    def stats(self) -> dict[str, float | int]:
        """Time share per mode and transition counters."""
        s = self.state
        total = s.frames_acquire + s.frames_track + s.frames_expand + s.frames_reacquire
        if total == 0:
            return {}
        return {
            "acquire_pct": s.frames_acquire * 100 / total,
            "track_pct": s.frames_track * 100 / total,
            "expand_pct": s.frames_expand * 100 / total,
            "reacquire_pct": s.frames_reacquire * 100 / total,
            "reacquire_count": s.reacquire_count,
            "transition_count": s.transition_count,
            "max_consecutive_fail": s.max_consecutive_fail,
        }
