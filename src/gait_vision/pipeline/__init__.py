"""Gait-signal processing pipeline.

The video-level pipeline lives in ``gait_vision.pipeline.video``.
"""

from .cycles import CycleSelection, select_cycles
from .extractor import (
    ExtractionResult,
    FeatureExtractor,
    GaitDiagnostics,
    QualityFlag,
    extract_features,
)
from .features import FEATURE_COLUMNS, GaitFeatures, compute_features
from .signals import Signals, build_signals, ema_smooth_gap_aware, interpolate_gaps
from .steps import StepDetection, StepDetector, StepEvent, StepSignalMode, find_peaks
from .strides import Stride, StrideValidator, segment_strides, validate_strides

__all__ = [
    # Signals
    "Signals",
    "build_signals",
    "ema_smooth_gap_aware",
    "interpolate_gaps",
    # Steps
    "StepDetection",
    "StepDetector",
    "StepEvent",
    "StepSignalMode",
    "find_peaks",
    # Strides
    "Stride",
    "StrideValidator",
    "segment_strides",
    "validate_strides",
    # Cycles
    "CycleSelection",
    "select_cycles",
    # Features
    "FEATURE_COLUMNS",
    "GaitFeatures",
    "compute_features",
    # Extraction
    "ExtractionResult",
    "FeatureExtractor",
    "GaitDiagnostics",
    "QualityFlag",
    "extract_features",
]
