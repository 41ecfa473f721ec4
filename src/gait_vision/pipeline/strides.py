"""
Stride Segmentation and Validation
==================================

Pair step events into strides and check each stride for frame
completeness, step-time consistency and knee range-of-motion plausibility.
Valid strides get a continuous quality score in [0, 1].
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np

from ..core.config import ExtractionConfig
from .signals import Signals, sample_std
from .steps import StepEvent

logger = logging.getLogger(__name__)

MIN_KNEE_SAMPLES = 5
MIN_ROBUST_SAMPLES = 10
MIN_QUALITY_SAMPLES = 5


@dataclass(frozen=True)
class Stride:
    """One gait cycle spanning three consecutive step events."""

    start_frame: int
    end_frame: int
    start_time_s: float
    end_time_s: float
    step1_frame: int
    step2_frame: int
    step1_time_s: float
    step2_time_s: float
    is_valid: bool = True
    invalid_reason: str | None = None
    knee_rom_left: float = 0.0
    knee_rom_right: float = 0.0
    knee_max_left: float = 0.0
    knee_max_right: float = 0.0
    valid_frame_pct: float = 0.0
    quality_score: float = 0.0

    @property
    def step_time_s(self) -> float:
        return self.step2_time_s - self.step1_time_s

    @property
    def duration_s(self) -> float:
        return self.end_time_s - self.start_time_s


def segment_strides(steps: list[StepEvent], n_frames: int, fps: float) -> list[Stride]:
    """
    Group steps into strides two at a time.

    Stride i spans steps[i]..steps[i + 2]. When the closing step is missing
    the end is extrapolated by the preceding step duration; the end frame is
    clamped to the last frame, the end time is not.
    """
    strides = []
    i = 0
    while i < len(steps) - 1:
        step1, step2 = steps[i], steps[i + 1]
        if i + 2 < len(steps):
            end_frame, end_time = steps[i + 2].frame_idx, steps[i + 2].time_s
        else:
            step_frames = step2.frame_idx - step1.frame_idx
            end_frame = step2.frame_idx + step_frames
            end_time = step2.time_s + (step_frames / fps if fps > 0 else 0.0)

        strides.append(
            Stride(
                start_frame=step1.frame_idx,
                end_frame=min(end_frame, n_frames - 1),
                start_time_s=step1.time_s,
                end_time_s=end_time,
                step1_frame=step1.frame_idx,
                step2_frame=step2.frame_idx,
                step1_time_s=step1.time_s,
                step2_time_s=step2.time_s,
            )
        )
        i += 2
    return strides


# =============================================================================
# Robust extrema
# =============================================================================


def _order_statistic(sorted_values: np.ndarray, percentile: float) -> float:
    idx = int(len(sorted_values) * percentile / 100)
    idx = min(max(idx, 0), len(sorted_values) - 1)
    return float(sorted_values[idx])


def range_of_motion(values: np.ndarray, config: ExtractionConfig) -> float:
    """Knee ROM: robust percentile spread, or max - min for short series."""
    values = np.asarray(values, dtype=float)
    if values.size < 2:
        return 0.0
    if config.use_robust_extrema and values.size >= MIN_ROBUST_SAMPLES:
        ordered = np.sort(values)
        return _order_statistic(ordered, config.extrema_percentile_hi) - _order_statistic(
            ordered, config.extrema_percentile_lo
        )
    return float(values.max() - values.min())


def peak_angle(values: np.ndarray, config: ExtractionConfig) -> float:
    """Peak knee angle: robust upper percentile, or max for short series."""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return 0.0
    if config.use_robust_extrema and values.size >= MIN_ROBUST_SAMPLES:
        return _order_statistic(np.sort(values), config.extrema_percentile_hi)
    return float(values.max())


# =============================================================================
# Signal quality
# =============================================================================


def _grade(value: float, breakpoints: tuple[tuple[float, float], ...], default: float) -> float:
    for upper, score in breakpoints:
        if value < upper:
            return score
    return default


AMPLITUDE_GRADES = ((0.05, 0.1), (0.08, 0.3), (0.10, 0.6), (0.15, 1.0))
PEAK_GRADES = ((0.06, 0.2), (0.10, 0.5), (0.15, 1.0))
JITTER_GRADES = ((0.12, 1.0), (0.20, 0.8), (0.30, 0.5))


def signal_quality_score(segment: np.ndarray) -> float:
    """Grade an inter-ankle distance segment on amplitude, peak height and smoothness."""
    segment = np.asarray(segment, dtype=float)
    segment = segment[np.isfinite(segment)]
    if segment.size < MIN_QUALITY_SAMPLES:
        return 0.0

    peak = float(segment.max())
    signal_range = peak - float(segment.min())

    amplitude_score = _grade(signal_range, AMPLITUDE_GRADES, 0.9)
    peak_score = _grade(peak, PEAK_GRADES, 0.9)
    if signal_range > 0.01:
        jitter = sample_std(np.diff(segment)) / signal_range
        smoothness_score = _grade(jitter, JITTER_GRADES, 0.2)
    else:
        smoothness_score = 0.3

    return 0.45 * amplitude_score + 0.30 * peak_score + 0.25 * smoothness_score


# =============================================================================
# Validation
# =============================================================================


class StrideValidator:
    """Apply the stride gates in order and score the strides that pass."""

    def __init__(self, config: ExtractionConfig | None = None):
        self.config = config or ExtractionConfig()

    def validate(self, strides: list[Stride], signals: Signals) -> list[Stride]:
        """Return validated copies of strides, in the same order."""
        if not strides:
            return []

        median_step = float(np.median([s.step_time_s for s in strides]))
        validated = [self._validate_one(s, signals, median_step) for s in strides]

        n_valid = sum(s.is_valid for s in validated)
        logger.debug("Validated strides: %d/%d valid", n_valid, len(validated))
        return validated

    def _validate_one(self, stride: Stride, signals: Signals, median_step: float) -> Stride:
        cfg = self.config
        start = stride.start_frame
        end = min(stride.end_frame, signals.n_frames - 1)

        if start >= end:
            return _reject(stride, "invalid_frame_range")

        span = slice(start, end + 1)
        valid_pct = float(signals.is_valid[span].mean())
        if valid_pct < cfg.valid_frame_pct:
            return _reject(stride, f"low_valid_frames_{int(valid_pct * 100)}%", valid_frame_pct=valid_pct)

        deviation = abs(stride.step_time_s - median_step) / (median_step + 1e-8)
        if deviation > cfg.step_time_tolerance:
            return _reject(stride, "inconsistent_step_time", valid_frame_pct=valid_pct)

        knee_left = _finite(signals.knee_angle_left[span])
        knee_right = _finite(signals.knee_angle_right[span])
        if knee_left.size < MIN_KNEE_SAMPLES or knee_right.size < MIN_KNEE_SAMPLES:
            return _reject(stride, "insufficient_knee_data", valid_frame_pct=valid_pct)

        rom_left = range_of_motion(knee_left, cfg)
        rom_right = range_of_motion(knee_right, cfg)
        rom = max(rom_left, rom_right)
        if rom < cfg.knee_rom_min or rom > cfg.knee_rom_max:
            return _reject(
                stride,
                f"abnormal_knee_rom_{int(rom)}deg",
                valid_frame_pct=valid_pct,
                knee_rom_left=rom_left,
                knee_rom_right=rom_right,
            )

        rom_span = cfg.knee_rom_max - cfg.knee_rom_min + 1e-8
        rom_margin = min((rom - cfg.knee_rom_min) / rom_span, (cfg.knee_rom_max - rom) / rom_span)
        rom_margin = float(np.clip(rom_margin * 2, 0.0, 1.0))
        timing_score = max(0.0, 1.0 - deviation / cfg.step_time_tolerance)
        quality = signal_quality_score(signals.inter_ankle_dist[span])

        return replace(
            stride,
            is_valid=True,
            invalid_reason=None,
            valid_frame_pct=valid_pct,
            knee_rom_left=rom_left,
            knee_rom_right=rom_right,
            knee_max_left=peak_angle(knee_left, cfg),
            knee_max_right=peak_angle(knee_right, cfg),
            quality_score=0.20 * valid_pct + 0.20 * timing_score + 0.20 * rom_margin + 0.40 * quality,
        )


def validate_strides(
    strides: list[Stride], signals: Signals, config: ExtractionConfig | None = None
) -> list[Stride]:
    """Convenience wrapper around StrideValidator."""
    return StrideValidator(config).validate(strides, signals)


def _finite(values: np.ndarray) -> np.ndarray:
    return values[np.isfinite(values)]


def _reject(stride: Stride, reason: str, **changes) -> Stride:
    return replace(stride, is_valid=False, invalid_reason=reason, quality_score=0.0, **changes)
