"""
Step Detection
==============

Build three candidate step signals, score each for peak count,
autocorrelation periodicity and landmark coverage, and report the peaks
of the best one as step events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from scipy import signal as sp_signal

from ..core.config import ExtractionConfig
from .extractors.pose import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
    PoseSequence,
)
from .signals import Signals, joint_angle, sample_std

logger = logging.getLogger(__name__)

INTER_ANKLE_COVERAGE_CONFIDENCE = 0.3
MIN_PERIODICITY_SAMPLES = 20
MIN_VALID_FRACTION = 0.3
TARGET_PEAK_COUNT = 6
MIN_SELECTION_SCORE = 0.2


class StepSignalMode(Enum):
    """Candidate signals for step detection."""

    INTER_ANKLE = "inter_ankle"
    MAX_ANKLE_VY = "max_ankle_vy"
    MIN_KNEE_ANGLE = "min_knee_angle"


@dataclass(frozen=True)
class StepEvent:
    """A detected step."""

    frame_idx: int
    time_s: float


@dataclass
class StepSignalQuality:
    """Evaluation of one candidate step signal."""

    mode: StepSignalMode
    peak_count: int
    periodicity: float
    coverage: float
    score: float
    rejection_reason: str = ""
    peaks: list[int] = field(default_factory=list)


@dataclass
class StepDetection:
    """Selected step signal and its events."""

    mode: StepSignalMode
    signal: np.ndarray
    events: list[StepEvent]
    candidates: dict[StepSignalMode, StepSignalQuality]

    @property
    def step_count(self) -> int:
        return len(self.events)

    @property
    def step_frames(self) -> list[int]:
        return [e.frame_idx for e in self.events]


# =============================================================================
# Signal primitives
# =============================================================================


def find_peaks(signal: np.ndarray, min_distance: int, min_prominence: float) -> list[int]:
    """
    Strict local maxima filtered by prominence and separation.

    Prominence is the height above the higher of the minima within
    min_distance samples on either side. A peak closer than min_distance to
    the previously accepted peak is dropped.
    """
    x = np.asarray(signal, dtype=float)
    n = len(x)
    distance = max(1, int(min_distance))
    peaks: list[int] = []
    for i in range(1, n - 1):
        if not (x[i] > x[i - 1] and x[i] > x[i + 1]):
            continue
        left_min = x[max(0, i - distance):i].min()
        right_min = x[i + 1:min(n, i + distance + 1)].min()
        if x[i] - max(left_min, right_min) < min_prominence:
            continue
        if peaks and i - peaks[-1] < distance:
            continue
        peaks.append(i)
    return peaks


def normalized_autocorrelation(x: np.ndarray) -> np.ndarray:
    """Autocorrelation of a centred signal at lags 0..n-1, lag 0 ~ 1."""
    x = np.asarray(x, dtype=float)
    full = sp_signal.correlate(x, x, mode="full", method="direct")
    acf = full[len(x) - 1:]
    return acf / (acf[0] + 1e-8)


def fill_nan_linear(x: np.ndarray) -> np.ndarray:
    """Linearly fill all NaNs, holding the edge values."""
    x = np.asarray(x, dtype=float)
    finite = np.isfinite(x)
    if finite.all() or not finite.any():
        return x.copy()
    idx = np.arange(len(x))
    return np.interp(idx, idx[finite], x[finite])


def smooth_segment_aware(signal: np.ndarray, max_gap: int, alpha: float = 0.3) -> np.ndarray:
    """
    Light EMA within data segments.

    A segment is a run of samples interrupted by NaN gaps of at most max_gap.
    Segments shorter than three samples are left as is.
    """
    out = np.array(signal, dtype=float, copy=True)
    n = len(out)
    i = 0
    while i < n:
        while i < n and np.isnan(out[i]):
            i += 1
        if i >= n:
            break
        start = i
        gap = 0
        while i < n:
            if not np.isnan(out[i]):
                gap = 0
            elif gap < max_gap:
                gap += 1
            else:
                break
            i += 1
        end = i - gap
        if end - start >= 3:
            state = np.nan
            for j in range(start, end):
                if np.isnan(out[j]):
                    continue
                state = out[j] if np.isnan(state) else alpha * out[j] + (1 - alpha) * state
                out[j] = state
    return out


def _lag_window(fps: float, n: int, config: ExtractionConfig) -> tuple[int, int]:
    lo = int(fps * config.min_step_time_s)
    hi = min(int(fps * config.max_step_time_s), n - 1)
    return lo, hi


# =============================================================================
# Detector
# =============================================================================


class StepDetector:
    """Select the most reliable step signal and detect steps on it."""

    def __init__(self, config: ExtractionConfig | None = None):
        self.config = config or ExtractionConfig()

    def estimate_step_period(self, signal: np.ndarray, fps: float) -> float:
        """Dominant step period in frames from the autocorrelation."""
        x = np.asarray(signal, dtype=float)
        fallback = fps * 0.5
        centered = x - x.mean()
        if len(x) == 0 or np.sqrt(np.mean(centered ** 2)) < 1e-6:
            return fallback

        lo, hi = _lag_window(fps, len(x), self.config)
        if lo >= hi:
            return fallback

        window = normalized_autocorrelation(centered)[lo:hi + 1]
        peaks = find_peaks(window, 1, 0.1)
        if peaks:
            best = max(peaks, key=lambda p: window[p])
            return float(lo + best)
        return float(lo + int(np.argmax(window)))

    def periodicity_score(self, signal: np.ndarray, fps: float) -> float:
        """Strength of the dominant autocorrelation peak in [0, 1]."""
        x = np.asarray(signal, dtype=float)
        if np.isfinite(x).sum() < MIN_PERIODICITY_SAMPLES:
            return 0.0

        filled = fill_nan_linear(x)
        centered = filled - filled.mean()
        if np.sqrt(np.mean(centered ** 2)) < 1e-6:
            return 0.0

        lo, hi = _lag_window(fps, len(x), self.config)
        if lo >= hi:
            return 0.0

        window = normalized_autocorrelation(centered)[lo:hi + 1]
        peaks = find_peaks(window, 1, 0.05)
        if peaks:
            return float(np.clip(max(window[p] for p in peaks), 0.0, 1.0))
        return float(np.clip(window.max(), 0.0, 1.0)) * 0.5

    def confidence_coverage(self, seq: PoseSequence, mode: StepSignalMode) -> float:
        """Fraction of total frames whose gating landmarks are confident."""
        if seq.num_frames_total <= 0:
            return 0.0

        gate = self.config.candidate_min_confidence
        covered = 0
        for frame in seq.frames:
            conf = frame.confidences
            if mode == StepSignalMode.INTER_ANKLE:
                ok = (
                    conf[LEFT_ANKLE] >= INTER_ANKLE_COVERAGE_CONFIDENCE
                    and conf[RIGHT_ANKLE] >= INTER_ANKLE_COVERAGE_CONFIDENCE
                )
            elif mode == StepSignalMode.MAX_ANKLE_VY:
                ok = conf[LEFT_ANKLE] >= gate or conf[RIGHT_ANKLE] >= gate
            else:
                left = min(conf[LEFT_HIP], conf[LEFT_KNEE], conf[LEFT_ANKLE])
                right = min(conf[RIGHT_HIP], conf[RIGHT_KNEE], conf[RIGHT_ANKLE])
                ok = left >= gate or right >= gate
            if ok:
                covered += 1
        return covered / seq.num_frames_total

    def candidate_signal(
        self, mode: StepSignalMode, signals: Signals, seq: PoseSequence
    ) -> np.ndarray:
        """Build the raw candidate signal for a mode."""
        if mode == StepSignalMode.INTER_ANKLE:
            return signals.inter_ankle_dist.copy()
        if mode == StepSignalMode.MAX_ANKLE_VY:
            return self._max_ankle_vy(seq)
        return self._min_knee_angle(seq)

    def _leg_series(self, seq: PoseSequence, joints: tuple[int, ...], value) -> np.ndarray:
        """Per-frame series gated on the minimum confidence of the given joints."""
        series = np.full(seq.num_frames_total, np.nan)
        gate = self.config.candidate_min_confidence
        for frame in seq.frames:
            if 0 <= frame.frame_idx < seq.num_frames_total and all(
                frame.confidences[j] >= gate for j in joints
            ):
                series[frame.frame_idx] = value(frame.keypoints)
        return smooth_segment_aware(
            series, self.config.max_interp_gap, self.config.candidate_smoothing_alpha
        )

    def _max_ankle_vy(self, seq: PoseSequence) -> np.ndarray:
        per_leg = []
        for ankle in (LEFT_ANKLE, RIGHT_ANKLE):
            y = self._leg_series(seq, (ankle,), lambda kp, a=ankle: kp[a, 1])
            vy = np.full(len(y), np.nan)
            # Upward velocity (image y points down)
            vy[1:] = -(y[1:] - y[:-1]) * seq.fps
            per_leg.append(vy)
        return _nan_reduce(np.fmax, per_leg)

    def _min_knee_angle(self, seq: PoseSequence) -> np.ndarray:
        per_leg = []
        for hip, knee, ankle in ((LEFT_HIP, LEFT_KNEE, LEFT_ANKLE), (RIGHT_HIP, RIGHT_KNEE, RIGHT_ANKLE)):
            angle = self._leg_series(
                seq,
                (hip, knee, ankle),
                lambda kp, h=hip, k=knee, a=ankle: joint_angle(kp[h], kp[k], kp[a]),
            )
            per_leg.append(angle)
        return 180.0 - _nan_reduce(np.fmin, per_leg)

    def evaluate(
        self, mode: StepSignalMode, candidate: np.ndarray, seq: PoseSequence
    ) -> StepSignalQuality:
        """Score a candidate signal."""
        fps = seq.fps
        finite = np.isfinite(candidate)
        if len(candidate) == 0 or finite.mean() < MIN_VALID_FRACTION:
            return StepSignalQuality(
                mode=mode,
                peak_count=0,
                periodicity=0.0,
                coverage=0.0,
                score=0.0,
                rejection_reason="insufficient_valid_data",
            )

        clean = np.where(finite, candidate, 0.0)
        peaks = self.detect_peaks(clean, fps)
        periodicity = self.periodicity_score(candidate, fps)
        coverage = self.confidence_coverage(seq, mode)

        score = (
            0.3 * min(len(peaks) / TARGET_PEAK_COUNT, 1.0)
            + 0.4 * periodicity
            + 0.3 * coverage
        )
        reason = ""
        if len(peaks) < self.config.min_steps:
            score *= 0.1
            reason = f"insufficient_peaks_{len(peaks)}"

        return StepSignalQuality(
            mode=mode,
            peak_count=len(peaks),
            periodicity=periodicity,
            coverage=coverage,
            score=score,
            rejection_reason=reason,
            peaks=peaks,
        )

    def detect_peaks(self, clean: np.ndarray, fps: float) -> list[int]:
        """Peaks of a NaN-free signal using the adaptive separation and prominence."""
        period = self.estimate_step_period(clean, fps)
        min_distance = max(int(period * self.config.step_distance_factor), 5)
        nonzero = clean[clean != 0]
        if nonzero.size:
            min_prominence = sample_std(nonzero) * self.config.step_prominence_factor
        else:
            min_prominence = 0.01
        return find_peaks(clean, min_distance, min_prominence)

    def detect(self, signals: Signals, seq: PoseSequence) -> StepDetection:
        """
        Evaluate every candidate and detect steps on the selected one.

        The best-scoring candidate wins when it has enough peaks and a score
        of at least 0.2; otherwise the candidate with the most peaks is used.
        """
        candidates: dict[StepSignalMode, StepSignalQuality] = {}
        raw: dict[StepSignalMode, np.ndarray] = {}
        for mode in StepSignalMode:
            raw[mode] = self.candidate_signal(mode, signals, seq)
            candidates[mode] = self.evaluate(mode, raw[mode], seq)
            logger.debug(
                "Step candidate %s: peaks=%d periodicity=%.3f coverage=%.3f score=%.3f %s",
                mode.value,
                candidates[mode].peak_count,
                candidates[mode].periodicity,
                candidates[mode].coverage,
                candidates[mode].score,
                candidates[mode].rejection_reason,
            )

        best = max(candidates.values(), key=lambda q: q.score)
        if best.peak_count < self.config.min_steps or best.score < MIN_SELECTION_SCORE:
            best = max(candidates.values(), key=lambda q: q.peak_count)

        fps = seq.fps
        events = [
            StepEvent(frame_idx=p, time_s=p / fps if fps > 0 else 0.0) for p in best.peaks
        ]
        return StepDetection(
            mode=best.mode,
            signal=raw[best.mode],
            events=events,
            candidates=candidates,
        )


def _nan_reduce(func, series: list[np.ndarray]) -> np.ndarray:
    """Element-wise reduction that ignores NaN unless all inputs are NaN."""
    result = series[0]
    for s in series[1:]:
        result = func(result, s)
    return result
