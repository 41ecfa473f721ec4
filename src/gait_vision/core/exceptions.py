"""Exception types for infrastructure failures.

Data-quality shortfalls (too few frames, no gait cycles) are reported through
quality flags, never through these exceptions.
"""

from __future__ import annotations


class GaitVisionError(Exception):
    """Base class for gait-vision errors."""


class DescriptorError(GaitVisionError):
    """A scoring model descriptor is missing or malformed."""


class InferenceError(GaitVisionError):
    """A scoring model failed while running inference."""


class AnalysisCancelledError(GaitVisionError):
    """The caller abandoned an analysis before it completed."""
