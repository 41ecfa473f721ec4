"""
Video Gait Analysis Pipeline
============================

End-to-end analysis of one walking video:

    decode -> pose detection (full frame) -> direction normalization
           -> feature extraction -> [ROI-tracked retry] -> scoring

Every analysis owns an ``AnalysisContext``; nothing is shared between
analyses. Cancelling a context aborts the analysis with
``AnalysisCancelledError`` and no partial result.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import cv2
import numpy as np

from ..core.config import Settings, get_settings
from ..core.exceptions import AnalysisCancelledError
from ..models.scorer import GaitScorer, ScoringResult
from ..tracking.roi import ROIAction, ROITracker
from .extractor import ExtractionResult, FeatureExtractor, GaitDiagnostics, QualityFlag
from .extractors.pose import (
    MediaPipePoseSource,
    PoseFrame,
    PoseSequence,
    PoseSource,
    VideoInfo,
    iter_video_frames,
    normalize_direction,
    probe_video,
)
from .features import GaitFeatures

logger = logging.getLogger(__name__)

FrameFactory = Callable[[], Iterable[np.ndarray]]
PoseSourceFactory = Callable[[], PoseSource]


@dataclass
class AnalysisContext:
    """State of one video analysis."""

    video_id: str
    participant_id: str = ""
    analysis_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    used_roi: bool = False
    roi_stats: dict = field(default_factory=dict)
    roi_modes: list = field(default_factory=list)
    _cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def cancel(self) -> None:
        """Request cancellation; the analysis stops at the next frame boundary."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise AnalysisCancelledError(f"Analysis {self.analysis_id} of {self.video_id} was cancelled")


@dataclass
class AnalysisResult:
    """Final output of one analysis."""

    extraction: ExtractionResult
    scoring: ScoringResult
    sequence: PoseSequence
    context: AnalysisContext

    @property
    def features(self) -> GaitFeatures | None:
        return self.extraction.features

    @property
    def diagnostics(self) -> GaitDiagnostics:
        return self.extraction.diagnostics

    @property
    def quality_flag(self) -> QualityFlag:
        return self.extraction.quality_flag

    @property
    def used_roi(self) -> bool:
        return self.context.used_roi


class VideoAnalysisPipeline:
    """Analyze walking videos into gait features and health scores."""

    def __init__(
        self,
        settings: Settings | None = None,
        scorer: GaitScorer | None = None,
        pose_source_factory: PoseSourceFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.extractor = FeatureExtractor(self.settings.extraction)
        self._scorer = scorer
        self._pose_source_factory = pose_source_factory or self._default_pose_source
        self._clahe = None

    @property
    def scorer(self) -> GaitScorer:
        """Lazy-load scoring models."""
        if self._scorer is None:
            self._scorer = GaitScorer.from_directory(config=self.settings.scoring)
        return self._scorer

    def _default_pose_source(self) -> PoseSource:
        cfg = self.settings.pipeline
        return MediaPipePoseSource(
            min_detection_confidence=cfg.min_detection_confidence,
            min_tracking_confidence=cfg.min_tracking_confidence,
            model_complexity=cfg.model_complexity,
        )

    # -------------------------------------------------------------------------
    # Image preparation
    # -------------------------------------------------------------------------

    def prepare_image(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Downscale, optionally enhance contrast, and convert to RGB."""
        cfg = self.settings.pipeline
        h, w = frame_bgr.shape[:2]
        if cfg.max_processing_height > 0 and h > cfg.max_processing_height:
            scale = cfg.max_processing_height / h
            frame_bgr = cv2.resize(frame_bgr, (int(w * scale), cfg.max_processing_height), interpolation=cv2.INTER_AREA)

        if cfg.enable_clahe:
            if self._clahe is None:
                self._clahe = cv2.createCLAHE(
                    clipLimit=cfg.clahe_clip_limit,
                    tileGridSize=(cfg.clahe_tile_size, cfg.clahe_tile_size),
                )
            lab = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2LAB)
            lab[:, :, 0] = self._clahe.apply(lab[:, :, 0])
            frame_bgr = cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)

        return cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

    # -------------------------------------------------------------------------
    # Pose collection
    # -------------------------------------------------------------------------

    def collect_poses(
        self,
        frames: Iterable[np.ndarray],
        info: VideoInfo,
        context: AnalysisContext,
        use_roi: bool = False,
    ) -> PoseSequence:
        """
        Run pose detection over decoded frames.

        Args:
            frames: BGR frames in decode order
            info: Video properties (fps, size)
            context: Analysis context (checked for cancellation per frame)
            use_roi: Drive detection with the ROI tracker

        Returns:
            PoseSequence in full-frame normalized coordinates
        """
        fps = info.fps
        source = self._pose_source_factory()
        tracker = ROITracker(self.settings.roi) if use_roi else None
        action = ROIAction(use_roi=False, expanded=False)
        pose_frames: list[PoseFrame] = []
        n_frames = 0

        try:
            for idx, frame in enumerate(frames):
                context.check_cancelled()
                n_frames += 1
                image = self.prepare_image(frame)
                h, w = image.shape[:2]
                timestamp_ms = int(idx * 1000 / fps)

                bounds = None
                if tracker is not None and action.use_roi:
                    bounds = tracker.roi_bounds(w, h, expanded=action.expanded)
                    image = tracker.crop(image, bounds)

                detection = source.detect(image, timestamp_ms)
                keypoints = None
                if detection is not None:
                    keypoints = detection.keypoints
                    if bounds is not None:
                        keypoints = ROITracker.map_to_full_frame(keypoints, bounds, w, h)
                    pose_frames.append(
                        PoseFrame(
                            frame_idx=idx,
                            timestamp=idx / fps,
                            keypoints=keypoints,
                            confidences=detection.confidences,
                            detection_confidence=detection.detection_confidence,
                        )
                    )

                if tracker is not None:
                    action = tracker.update(
                        keypoints,
                        detection.confidences if detection is not None else None,
                        detection is not None,
                    )
        finally:
            source.close()

        if tracker is not None:
            context.roi_stats = tracker.stats()
            context.roi_modes = list(tracker.mode_history)
            logger.debug("ROI stats for %s: %s", context.video_id, context.roi_stats)

        return PoseSequence(
            video_id=f"{context.video_id}_roi" if use_roi else context.video_id,
            fps=fps,
            frame_width=info.width,
            frame_height=info.height,
            num_frames_total=n_frames,
            frames=tuple(pose_frames),
        )

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def extract(self, seq: PoseSequence) -> tuple[PoseSequence, ExtractionResult]:
        """Normalize walking direction and extract features."""
        normalized = normalize_direction(seq, self.settings.extraction.min_confidence)
        return normalized, self.extractor.extract(normalized)

    def analyze_frames(
        self,
        frame_factory: FrameFactory,
        info: VideoInfo,
        context: AnalysisContext,
    ) -> AnalysisResult:
        """
        Analyze frames produced by a re-iterable factory.

        The factory is called again for the ROI retry pass.
        """
        seq, result = self.extract(self.collect_poses(frame_factory(), info, context))

        if result.features is None and self.settings.pipeline.enable_roi_retry:
            logger.info(
                "%s: %s with full frame, retrying with ROI tracking",
                context.video_id,
                result.quality_flag.value,
            )
            roi_seq, roi_result = self.extract(
                self.collect_poses(frame_factory(), info, context, use_roi=True)
            )
            if roi_result.features is not None or roi_result.num_valid_strides > result.num_valid_strides:
                seq, result = roi_seq, roi_result
                context.used_roi = True

        context.check_cancelled()
        return self._finish(seq, result, context)

    def analyze(self, video_path: str | Path, context: AnalysisContext | None = None) -> AnalysisResult:
        """
        Analyze a video file.

        Args:
            video_path: Path to video file
            context: Analysis context (created from the file name when omitted)

        Returns:
            AnalysisResult
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise FileNotFoundError(f"Video not found: {video_path}")

        context = context or AnalysisContext(video_id=video_path.stem)
        info = probe_video(video_path, self.settings.pipeline.default_fps)
        logger.info(
            "Analyzing %s (%dx%d @ %.1f fps, %d frames)",
            video_path.name,
            info.width,
            info.height,
            info.fps,
            info.frame_count,
        )
        return self.analyze_frames(lambda: iter_video_frames(video_path), info, context)

    def analyze_sequence(self, seq: PoseSequence, context: AnalysisContext | None = None) -> AnalysisResult:
        """Extract and score an already collected pose sequence."""
        context = context or AnalysisContext(video_id=seq.video_id)
        context.check_cancelled()
        normalized, result = self.extract(seq)
        return self._finish(normalized, result, context)

    def _finish(self, seq: PoseSequence, result: ExtractionResult, context: AnalysisContext) -> AnalysisResult:
        scoring = self.scorer.score(result.features) if result.features is not None else ScoringResult()
        context.check_cancelled()
        return AnalysisResult(extraction=result, scoring=scoring, sequence=seq, context=context)


def analyze_video(
    video_path: str | Path,
    settings: Settings | None = None,
    participant_id: str = "",
) -> AnalysisResult:
    """
    Convenience function to analyze one video.

    Args:
        video_path: Path to video file
        settings: Settings (global settings when omitted)
        participant_id: Participant identifier recorded in the context

    Returns:
        AnalysisResult
    """
    video_path = Path(video_path)
    context = AnalysisContext(video_id=video_path.stem, participant_id=participant_id)
    return VideoAnalysisPipeline(settings).analyze(video_path, context)
