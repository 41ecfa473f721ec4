"""
Gait Feature Extraction
=======================

Orchestrates the gait-signal core for one pose sequence:

    signals -> step detection -> stride segmentation / validation
            -> cycle selection -> features

Data-quality shortfalls are reported through a quality flag and an empty
feature result; they never raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from ..core.config import ExtractionConfig
from .cycles import select_cycles
from .extractors.pose import PoseSequence
from .features import GaitFeatures, compute_features
from .signals import Signals, build_signals
from .steps import StepDetection, StepDetector
from .strides import Stride, StrideValidator, segment_strides

logger = logging.getLogger(__name__)


class QualityFlag(Enum):
    """Outcome of a feature extraction attempt."""

    OK = "OK"
    LOW_DETECTION = "LOW_DETECTION"
    NO_CYCLES = "NO_CYCLES"
    UNPROCESSABLE = "UNPROCESSABLE"


@dataclass
class GaitDiagnostics:
    """Processing metadata for one extraction attempt."""

    video_id: str
    fps_detected: float
    duration_s: float
    num_frames_total: int
    num_frames_valid: int
    valid_frame_rate: float
    num_steps_detected: int = 0
    num_strides_valid: int = 0
    cadence_estimated: float = 0.0
    walking_direction: str = "left_to_right"
    was_flipped: bool = False
    quality_flag: QualityFlag = QualityFlag.OK
    rejection_reasons: list[str] = field(default_factory=list)
    step_signal_mode: str = ""
    selection_reason: str = ""
    selected_indices: list[int] = field(default_factory=list)
    candidate_scores: dict[str, float] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return "; ".join(self.rejection_reasons)


@dataclass
class ExtractionResult:
    """Features plus everything needed to inspect how they were obtained."""

    features: GaitFeatures | None
    diagnostics: GaitDiagnostics
    signals: Signals | None = None
    strides: list[Stride] = field(default_factory=list)
    step_detection: StepDetection | None = None

    @property
    def quality_flag(self) -> QualityFlag:
        return self.diagnostics.quality_flag

    @property
    def ok(self) -> bool:
        return self.features is not None and self.diagnostics.quality_flag == QualityFlag.OK

    @property
    def num_valid_strides(self) -> int:
        return sum(s.is_valid for s in self.strides)


class FeatureExtractor:
    """Extract gait features from a pose sequence."""

    def __init__(self, config: ExtractionConfig | None = None):
        self.config = config or ExtractionConfig()
        self.step_detector = StepDetector(self.config)
        self.stride_validator = StrideValidator(self.config)

    def _diagnostics(self, seq: PoseSequence, flag: QualityFlag, reason: str = "", **kwargs) -> GaitDiagnostics:
        return GaitDiagnostics(
            video_id=seq.video_id,
            fps_detected=seq.fps,
            duration_s=seq.duration,
            num_frames_total=seq.num_frames_total,
            num_frames_valid=len(seq.frames),
            valid_frame_rate=seq.detection_rate,
            walking_direction=seq.walking_direction,
            was_flipped=seq.was_flipped,
            quality_flag=flag,
            rejection_reasons=[reason] if reason else [],
            **kwargs,
        )

    def extract(self, seq: PoseSequence) -> ExtractionResult:
        """
        Run the full extraction on a direction-normalized pose sequence.

        Args:
            seq: Pose sequence (not modified)

        Returns:
            ExtractionResult; features is None unless the quality flag is OK
        """
        cfg = self.config

        if seq.num_frames_total < cfg.min_frames:
            return self._reject(seq, QualityFlag.UNPROCESSABLE, "too_few_frames")

        if seq.detection_rate < cfg.min_detection_rate:
            return self._reject(
                seq, QualityFlag.LOW_DETECTION, f"detection_rate_{int(seq.detection_rate * 100)}%"
            )

        signals = build_signals(seq, cfg)
        detection = self.step_detector.detect(signals, seq)
        n_steps = detection.step_count
        step_info = {
            "num_steps_detected": n_steps,
            "cadence_estimated": self._estimated_cadence(n_steps, seq.duration),
            "step_signal_mode": detection.mode.value,
            "candidate_scores": {m.value: q.score for m, q in detection.candidates.items()},
        }

        if n_steps < cfg.min_steps:
            return self._reject(
                seq,
                QualityFlag.NO_CYCLES,
                f"only_{n_steps}_steps",
                signals=signals,
                step_detection=detection,
                **step_info,
            )

        strides = self.stride_validator.validate(
            segment_strides(detection.events, signals.n_frames, seq.fps), signals
        )
        n_valid = sum(s.is_valid for s in strides)
        if n_valid < 2:
            return self._reject(
                seq,
                QualityFlag.NO_CYCLES,
                f"only_{n_valid}_valid_strides",
                signals=signals,
                strides=strides,
                step_detection=detection,
                num_strides_valid=n_valid,
                **step_info,
            )

        selection = select_cycles(strides)
        if selection is None:
            return self._reject(
                seq,
                QualityFlag.NO_CYCLES,
                "cycle_selection_failed",
                signals=signals,
                strides=strides,
                step_detection=detection,
                num_strides_valid=n_valid,
                **step_info,
            )

        features = compute_features(signals, selection, seq)
        diagnostics = self._diagnostics(
            seq,
            QualityFlag.OK,
            num_strides_valid=n_valid,
            selection_reason=selection.reason,
            selected_indices=selection.indices,
            **step_info,
        )
        logger.info(
            "%s: %d steps, %d/%d valid strides, cadence %.1f spm (%s)",
            seq.video_id,
            n_steps,
            n_valid,
            len(strides),
            features.cadence_spm,
            detection.mode.value,
        )
        return ExtractionResult(
            features=features,
            diagnostics=diagnostics,
            signals=signals,
            strides=strides,
            step_detection=detection,
        )

    def _reject(
        self,
        seq: PoseSequence,
        flag: QualityFlag,
        reason: str,
        signals: Signals | None = None,
        strides: list[Stride] | None = None,
        step_detection: StepDetection | None = None,
        **diag_kwargs,
    ) -> ExtractionResult:
        logger.info("%s: %s (%s)", seq.video_id, flag.value, reason)
        return ExtractionResult(
            features=None,
            diagnostics=self._diagnostics(seq, flag, reason, **diag_kwargs),
            signals=signals,
            strides=strides or [],
            step_detection=step_detection,
        )

    @staticmethod
    def _estimated_cadence(n_steps: int, duration_s: float) -> float:
        if n_steps > 1 and duration_s > 0:
            return n_steps * 60.0 / duration_s
        return 0.0


def extract_features(seq: PoseSequence, config: ExtractionConfig | None = None) -> ExtractionResult:
    """
    Convenience function to extract gait features.

    Args:
        seq: Direction-normalized pose sequence
        config: Extraction parameters

    Returns:
        ExtractionResult
    """
    return FeatureExtractor(config).extract(seq)
