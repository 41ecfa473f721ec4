"""Core infrastructure modules."""

from .config import (
    ExtractionConfig,
    LoggingConfig,
    PipelineConfig,
    ROIConfig,
    ScoringConfig,
    Settings,
    get_settings,
    reload_settings,
)
from .exceptions import AnalysisCancelledError, DescriptorError, GaitVisionError, InferenceError
from .logging import setup_logging

__all__ = [
    "AnalysisCancelledError",
    "DescriptorError",
    "ExtractionConfig",
    "GaitVisionError",
    "InferenceError",
    "LoggingConfig",
    "PipelineConfig",
    "ROIConfig",
    "ScoringConfig",
    "Settings",
    "get_settings",
    "reload_settings",
    "setup_logging",
]
