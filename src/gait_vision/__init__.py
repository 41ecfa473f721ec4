"""Gait Vision: video-based gait analysis.

Turns per-frame body landmarks from a walking video into sixteen clinical
gait features and three independent 0-100 health scores.
"""

__version__ = "0.1.0"

from gait_vision.core import (
    GaitVisionError,
    Settings,
    get_settings,
    setup_logging,
)

__all__ = [
    "GaitVisionError",
    "Settings",
    "__version__",
    "get_settings",
    "setup_logging",
]
