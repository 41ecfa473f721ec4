"""
Gait Signal Conditioning
========================

Turn a pose sequence into dense per-frame biomechanical signals:
inter-ankle distance, knee angles, trunk lean, raw ankle / hip positions
and vertical velocities. Short detection gaps are bridged by linear
interpolation and the signals are smoothed with a gap-aware EMA.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields

import numpy as np

from ..core.config import ExtractionConfig
from .extractors.pose import (
    CORE_LEG_JOINTS,
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
    PoseSequence,
)

logger = logging.getLogger(__name__)


@dataclass
class Signals:
    """Per-frame gait signals, all of length num_frames_total. Missing = NaN."""

    timestamps: np.ndarray
    is_valid: np.ndarray  # bool
    inter_ankle_dist: np.ndarray
    knee_angle_left: np.ndarray
    knee_angle_right: np.ndarray
    trunk_angle: np.ndarray
    ankle_left_x: np.ndarray
    ankle_right_x: np.ndarray
    ankle_left_y: np.ndarray
    ankle_right_y: np.ndarray
    hip_left_y: np.ndarray
    hip_right_y: np.ndarray
    ankle_left_vy: np.ndarray
    ankle_right_vy: np.ndarray
    hip_avg_vy: np.ndarray

    @classmethod
    def empty(cls, n_frames: int) -> Signals:
        values = {f.name: np.full(n_frames, np.nan) for f in fields(cls)}
        values["is_valid"] = np.zeros(n_frames, dtype=bool)
        return cls(**values)

    @property
    def n_frames(self) -> int:
        return len(self.timestamps)

    @property
    def valid_frame_count(self) -> int:
        return int(self.is_valid.sum())

    def copy(self) -> Signals:
        return Signals(**{f.name: getattr(self, f.name).copy() for f in fields(self)})


# Signals that are smoothed after interpolation (ankle x is interpolated only)
SMOOTHED_SIGNALS = (
    "inter_ankle_dist",
    "knee_angle_left",
    "knee_angle_right",
    "trunk_angle",
    "ankle_left_y",
    "ankle_right_y",
    "hip_left_y",
    "hip_right_y",
)
INTERPOLATED_SIGNALS = SMOOTHED_SIGNALS + ("ankle_left_x", "ankle_right_x")


# =============================================================================
# Geometry
# =============================================================================


def joint_angle(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """Angle at p2 formed by p1-p2-p3, in degrees."""
    v1 = p1 - p2
    v2 = p3 - p2
    cos_angle = np.dot(v1, v2) / (np.linalg.norm(v1) * np.linalg.norm(v2) + 1e-8)
    return float(np.degrees(np.arccos(np.clip(cos_angle, -1.0, 1.0))))


def trunk_lean(mid_shoulder: np.ndarray, mid_hip: np.ndarray) -> float:
    """Signed trunk angle from vertical in degrees (image y points down)."""
    dx = mid_shoulder[0] - mid_hip[0]
    dy = mid_shoulder[1] - mid_hip[1]
    return float(np.degrees(np.arctan2(dx, -dy)))


# =============================================================================
# Statistics helpers
# =============================================================================


def sample_std(values) -> float:
    """Sample standard deviation (n - 1); 0 for fewer than two values."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def nan_runs(mask: np.ndarray) -> list[tuple[int, int]]:
    """Half-open [start, end) index ranges where mask is True."""
    padded = np.concatenate([[False], np.asarray(mask, dtype=bool), [False]])
    diff = np.diff(padded.astype(np.int8))
    starts = np.flatnonzero(diff == 1)
    ends = np.flatnonzero(diff == -1)
    return list(zip(starts.tolist(), ends.tolist()))


# =============================================================================
# Conditioning
# =============================================================================


def interpolate_gaps(arr: np.ndarray, max_gap: int) -> np.ndarray:
    """
    Linearly fill interior NaN runs of at most max_gap samples.

    Leading and trailing runs and runs longer than max_gap stay NaN.
    """
    out = np.array(arr, dtype=float, copy=True)
    for start, end in nan_runs(np.isnan(out)):
        if start == 0 or end == len(out):
            continue
        gap = end - start
        if gap > max_gap:
            continue
        before, after = out[start - 1], out[end]
        t = np.arange(1, gap + 1) / (gap + 1)
        out[start:end] = before + t * (after - before)
    return out


def ema_smooth_gap_aware(arr: np.ndarray, alpha: float, max_bridge_gap: int) -> np.ndarray:
    """
    Exponential moving average that does not blend across long gaps.

    The state starts at the first finite sample. Across a NaN run of at most
    max_bridge_gap samples the state is held; after a longer run it resets to
    the next finite sample. NaN samples stay NaN.
    """
    out = np.array(arr, dtype=float, copy=True)
    state = np.nan
    gap = 0
    for i in range(len(out)):
        value = out[i]
        if np.isnan(value):
            gap += 1
            continue
        if np.isnan(state) or gap > max_bridge_gap:
            state = value
        else:
            state = alpha * value + (1.0 - alpha) * state
        out[i] = state
        gap = 0
    return out


def centered_velocity(arr: np.ndarray, fps: float) -> np.ndarray:
    """Centered finite difference in units per second; NaN at the edges."""
    arr = np.asarray(arr, dtype=float)
    vel = np.full(len(arr), np.nan)
    if len(arr) >= 3:
        vel[1:-1] = (arr[2:] - arr[:-2]) * fps / 2.0
    return vel


def compute_velocities(signals: Signals, fps: float) -> None:
    """Fill ankle and hip-average vertical velocities in place."""
    signals.ankle_left_vy = centered_velocity(signals.ankle_left_y, fps)
    signals.ankle_right_vy = centered_velocity(signals.ankle_right_y, fps)
    hip_avg = (signals.hip_left_y + signals.hip_right_y) / 2.0
    signals.hip_avg_vy = centered_velocity(hip_avg, fps)


# =============================================================================
# Builder
# =============================================================================


def build_raw_signals(seq: PoseSequence, config: ExtractionConfig | None = None) -> Signals:
    """Per-frame signals from confident frames, without conditioning."""
    config = config or ExtractionConfig()
    n = seq.num_frames_total
    signals = Signals.empty(n)
    if seq.fps > 0:
        signals.timestamps = np.arange(n) / seq.fps

    for frame in seq.frames:
        idx = frame.frame_idx
        if idx < 0 or idx >= n:
            continue
        signals.timestamps[idx] = frame.timestamp

        conf = frame.confidences
        if not all(conf[j] >= config.min_confidence for j in CORE_LEG_JOINTS):
            continue

        kp = frame.keypoints
        signals.is_valid[idx] = True
        signals.inter_ankle_dist[idx] = abs(kp[RIGHT_ANKLE, 0] - kp[LEFT_ANKLE, 0])
        signals.knee_angle_left[idx] = joint_angle(kp[LEFT_HIP], kp[LEFT_KNEE], kp[LEFT_ANKLE])
        signals.knee_angle_right[idx] = joint_angle(kp[RIGHT_HIP], kp[RIGHT_KNEE], kp[RIGHT_ANKLE])

        mid_shoulder = (kp[LEFT_SHOULDER] + kp[RIGHT_SHOULDER]) / 2
        mid_hip = (kp[LEFT_HIP] + kp[RIGHT_HIP]) / 2
        signals.trunk_angle[idx] = trunk_lean(mid_shoulder, mid_hip)

        signals.ankle_left_x[idx] = kp[LEFT_ANKLE, 0]
        signals.ankle_right_x[idx] = kp[RIGHT_ANKLE, 0]
        signals.ankle_left_y[idx] = kp[LEFT_ANKLE, 1]
        signals.ankle_right_y[idx] = kp[RIGHT_ANKLE, 1]
        signals.hip_left_y[idx] = kp[LEFT_HIP, 1]
        signals.hip_right_y[idx] = kp[RIGHT_HIP, 1]

    return signals


def build_signals(seq: PoseSequence, config: ExtractionConfig | None = None) -> Signals:
    """
    Build conditioned gait signals from a pose sequence.

    Args:
        seq: Pose sequence (walking direction already normalized)
        config: Extraction parameters

    Returns:
        Signals with gaps interpolated, smoothed, and velocities computed
    """
    config = config or ExtractionConfig()
    signals = build_raw_signals(seq, config)

    for name in INTERPOLATED_SIGNALS:
        setattr(signals, name, interpolate_gaps(getattr(signals, name), config.max_interp_gap))

    for name in SMOOTHED_SIGNALS:
        smoothed = ema_smooth_gap_aware(getattr(signals, name), config.ema_alpha, config.max_interp_gap)
        setattr(signals, name, smoothed)

    compute_velocities(signals, seq.fps)

    logger.debug(
        "Built signals for %s: %d/%d valid frames",
        seq.video_id,
        signals.valid_frame_count,
        signals.n_frames,
    )
    return signals
