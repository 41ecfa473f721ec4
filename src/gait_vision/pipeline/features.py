"""
Gait Feature Computation
========================

Derive the canonical 16-dimensional gait feature vector from the two
selected strides and the surrounding signal context.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .cycles import CycleSelection
from .extractors.pose import LEFT_HIP, LEFT_SHOULDER, RIGHT_HIP, RIGHT_SHOULDER, PoseSequence
from .signals import Signals, sample_std

DEFAULT_BODY_WIDTH = 0.1

FEATURE_COLUMNS = (
    "cadence_spm",
    "stride_time_s",
    "stride_time_cv",
    "step_time_asymmetry",
    "stride_length_norm",
    "stride_amp_norm",
    "step_length_asymmetry",
    "knee_left_rom",
    "knee_right_rom",
    "knee_left_max",
    "knee_right_max",
    "ldj_knee_left",
    "ldj_knee_right",
    "ldj_hip",
    "trunk_lean_std_deg",
    "inter_ankle_cv",
)


@dataclass
class GaitFeatures:
    """Gait features from the two selected strides."""

    # Temporal
    cadence_spm: float
    stride_time_s: float
    stride_time_cv: float
    step_time_asymmetry: float

    # Spatial
    stride_length_norm: float
    stride_amp_norm: float
    step_length_asymmetry: float

    # Knee kinematics
    knee_left_rom: float
    knee_right_rom: float
    knee_left_max: float
    knee_right_max: float

    # Smoothness
    ldj_knee_left: float
    ldj_knee_right: float
    ldj_hip: float

    # Stability
    trunk_lean_std_deg: float
    inter_ankle_cv: float

    valid_stride_count: int = 0

    @classmethod
    def empty(cls) -> GaitFeatures:
        """Feature set with every value NaN and no strides."""
        return cls(**{name: float("nan") for name in FEATURE_COLUMNS}, valid_stride_count=0)

    @property
    def is_empty(self) -> bool:
        return self.valid_stride_count == 0

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary in column order."""
        return {name: float(getattr(self, name)) for name in FEATURE_COLUMNS}

    def to_array(self) -> np.ndarray:
        """Convert to feature vector."""
        return np.array([getattr(self, name) for name in FEATURE_COLUMNS], dtype=np.float64)

    @classmethod
    def from_array(cls, values, valid_stride_count: int = 2) -> GaitFeatures:
        values = np.asarray(values, dtype=float)
        if values.shape != (len(FEATURE_COLUMNS),):
            raise ValueError(f"Expected {len(FEATURE_COLUMNS)} features, got shape {values.shape}")
        return cls(
            **{name: float(v) for name, v in zip(FEATURE_COLUMNS, values)},
            valid_stride_count=valid_stride_count,
        )


# =============================================================================
# Helpers
# =============================================================================


def asymmetry_index(a: float, b: float) -> float:
    """(a - b) / (a + b), or 0 when the total is 0."""
    total = a + b
    return 0.0 if total == 0 else (a - b) / total


def _mean_or_zero(values: list[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def body_width(seq: PoseSequence) -> float:
    """Mean of shoulder and hip horizontal widths over all frames."""
    if not seq.frames:
        return DEFAULT_BODY_WIDTH
    widths = [
        (
            abs(f.keypoints[LEFT_SHOULDER, 0] - f.keypoints[RIGHT_SHOULDER, 0])
            + abs(f.keypoints[LEFT_HIP, 0] - f.keypoints[RIGHT_HIP, 0])
        )
        / 2
        for f in seq.frames
    ]
    return float(np.mean(widths))


def rms_jerk(values: np.ndarray, fps: float) -> float:
    """
    RMS of the discrete second derivative of the finite samples.

    Returns NaN for fewer than three finite samples.
    """
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size < 3:
        return float("nan")
    velocity = np.diff(values) * fps
    accel = np.diff(velocity) * fps
    return float(np.sqrt(np.mean(accel ** 2)))


# =============================================================================
# Computation
# =============================================================================


def compute_features(
    signals: Signals,
    selection: CycleSelection,
    seq: PoseSequence,
    fps: float | None = None,
) -> GaitFeatures:
    """
    Compute the 16 gait features from the selected strides.

    Args:
        signals: Conditioned signals
        selection: Selected stride pair
        seq: Pose sequence (for body width)
        fps: Frame rate (defaults to seq.fps)

    Returns:
        GaitFeatures with valid_stride_count set to the number of strides used
    """
    fps = seq.fps if fps is None else fps
    strides = selection.strides
    if len(strides) < 2:
        return GaitFeatures.empty()

    last = signals.n_frames - 1
    spans = [slice(s.start_frame, min(s.end_frame, last) + 1) for s in strides]

    # Temporal
    step_times = []
    for s in strides:
        step_times.append(s.step2_time_s - s.start_time_s)
        step_times.append(s.end_time_s - s.step2_time_s)
    mean_step = _mean_or_zero(step_times)
    cadence = 60.0 / mean_step if mean_step > 0 else 0.0

    stride_times = [s.end_time_s - s.start_time_s for s in strides]
    stride_time = _mean_or_zero(stride_times)
    stride_time_cv = sample_std(stride_times) / stride_time if stride_time > 0 else 0.0
    step_time_asym = asymmetry_index(
        _mean_or_zero(step_times[0::2]), _mean_or_zero(step_times[1::2])
    )

    # Spatial
    width = body_width(seq)
    left_lengths, right_lengths = [], []
    for s in strides:
        end = min(s.end_frame, last)
        for series, out in ((signals.ankle_left_x, left_lengths), (signals.ankle_right_x, right_lengths)):
            start_x, end_x = series[s.start_frame], series[end]
            if np.isfinite(start_x) and np.isfinite(end_x):
                out.append(abs(end_x - start_x))
    stride_length = _mean_or_zero(left_lengths) / (width + 1e-8) if left_lengths else 0.0
    step_length_asym = asymmetry_index(_mean_or_zero(left_lengths), _mean_or_zero(right_lengths))

    max_inter_ankle = []
    inter_ankle_values = []
    trunk_values = []
    for span in spans:
        segment = signals.inter_ankle_dist[span]
        segment = segment[np.isfinite(segment)]
        if segment.size:
            max_inter_ankle.append(float(segment.max()))
        inter_ankle_values.extend(segment.tolist())
        trunk = signals.trunk_angle[span]
        trunk_values.extend(np.abs(trunk[np.isfinite(trunk)]).tolist())
    stride_amp = _mean_or_zero(max_inter_ankle) / (width + 1e-8) if max_inter_ankle else 0.0

    inter_ankle_mean = _mean_or_zero(inter_ankle_values)
    inter_ankle_cv = sample_std(inter_ankle_values) / inter_ankle_mean if inter_ankle_mean > 0 else 0.0
    trunk_std = sample_std(trunk_values)

    # Smoothness
    ldj = {"left": [], "right": [], "trunk": []}
    for span in spans:
        for key, series in (
            ("left", signals.knee_angle_left),
            ("right", signals.knee_angle_right),
            ("trunk", signals.trunk_angle),
        ):
            value = rms_jerk(series[span], fps)
            if np.isfinite(value) and value > 0:
                ldj[key].append(value)

    return GaitFeatures(
        cadence_spm=cadence,
        stride_time_s=stride_time,
        stride_time_cv=stride_time_cv,
        step_time_asymmetry=step_time_asym,
        stride_length_norm=stride_length,
        stride_amp_norm=stride_amp,
        step_length_asymmetry=step_length_asym,
        knee_left_rom=_mean_or_zero([s.knee_rom_left for s in strides]),
        knee_right_rom=_mean_or_zero([s.knee_rom_right for s in strides]),
        knee_left_max=_mean_or_zero([s.knee_max_left for s in strides]),
        knee_right_max=_mean_or_zero([s.knee_max_right for s in strides]),
        ldj_knee_left=_mean_or_zero(ldj["left"]),
        ldj_knee_right=_mean_or_zero(ldj["right"]),
        ldj_hip=_mean_or_zero(ldj["trunk"]),
        trunk_lean_std_deg=trunk_std,
        inter_ankle_cv=inter_ankle_cv,
        valid_stride_count=len(strides),
    )
