"""Configuration management with dataclasses and YAML loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ExtractionConfig:
    """Gait signal processing parameters."""

    min_confidence: float = 0.32
    max_interp_gap: int = 5  # frames
    ema_alpha: float = 0.68
    min_step_time_s: float = 0.32
    max_step_time_s: float = 1.70
    step_distance_factor: float = 0.41
    step_prominence_factor: float = 0.33
    valid_frame_pct: float = 0.66
    step_time_tolerance: float = 0.22
    knee_rom_min: float = 3.6  # degrees
    knee_rom_max: float = 62.1  # degrees

    # Robust extrema for knee ROM / peak flexion
    use_robust_extrema: bool = True
    extrema_percentile_lo: float = 5.0
    extrema_percentile_hi: float = 95.0

    # Step candidate conditioning
    candidate_min_confidence: float = 0.15
    candidate_smoothing_alpha: float = 0.3

    # Rejection thresholds
    min_frames: int = 20
    min_detection_rate: float = 0.3
    min_steps: int = 4


@dataclass
class ROIConfig:
    """ROI tracker state machine parameters."""

    margin: float = 1.4  # ROI is margin x body size
    expanded_margin: float = 1.8
    center_ema_alpha: float = 0.3
    size_expand_alpha: float = 0.5  # fast expansion
    size_shrink_alpha: float = 0.1  # slow shrinking
    min_size: float = 0.3  # normalized
    target_size: int = 512  # crop is resized to this for pose detection
    min_crop_px: int = 100
    landmark_min_confidence: float = 0.3
    acquire_stable_frames: int = 10
    quality_window_size: int = 15
    quality_threshold: float = 0.3  # far-leg confidence below this = degraded
    degraded_ratio_threshold: float = 0.5
    recovery_window: int = 5
    recovery_min_good: int = 4
    reacquire_frames: int = 15
    fail_ratio_track: float = 0.30
    fail_ratio_expand: float = 0.50
    consecutive_fail_reacquire: int = 5
    min_dwell_frames: int = 10


@dataclass
class PipelineConfig:
    """Video processing options."""

    enable_roi_retry: bool = True
    enable_clahe: bool = False
    clahe_clip_limit: float = 3.0
    clahe_tile_size: int = 8
    default_fps: float = 30.0  # fallback if FPS detection fails
    min_detection_confidence: float = 0.40
    min_tracking_confidence: float = 0.61
    model_complexity: int = 2
    max_processing_height: int = 720  # frames are downscaled to this height before detection


@dataclass
class ScoringConfig:
    """Scoring model descriptor locations."""

    models_dir: Path = field(default_factory=lambda: Path("models"))
    ae_descriptor: str = "AE-4D-normal.json"
    ridge_descriptor: str = "Ridge.json"
    pca_descriptor: str = "PCA-4.json"

    def __post_init__(self) -> None:
        """Load models directory from environment and convert to Path."""
        env_dir = os.getenv("GAIT_VISION_MODELS_DIR", "")
        if env_dir:
            self.models_dir = Path(env_dir)
        if isinstance(self.models_dir, str):
            self.models_dir = Path(self.models_dir)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    rich_tracebacks: bool = True

    def __post_init__(self) -> None:
        """Load log level from environment."""
        env_level = os.getenv("GAIT_VISION_LOG_LEVEL", "")
        if env_level:
            self.level = env_level
        self.level = self.level.upper()


@dataclass
class Settings:
    """Main application settings."""

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    roi: ROIConfig = field(default_factory=ROIConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create Settings from dictionary."""
        return cls(
            extraction=ExtractionConfig(**data.get("extraction", {})),
            roi=ROIConfig(**data.get("roi", {})),
            pipeline=PipelineConfig(**data.get("pipeline", {})),
            scoring=ScoringConfig(**data.get("scoring", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary."""
        from dataclasses import asdict

        result = asdict(self)
        # Convert Path objects to strings
        for key in result.get("scoring", {}):
            val = result["scoring"][key]
            if isinstance(val, Path):
                result["scoring"][key] = str(val)
        return result

    def to_yaml(self, path: str | Path) -> None:
        """Write settings to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)


# Global settings instance
_settings: Settings | None = None


def get_settings(config_path: str | Path | None = None) -> Settings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        if config_path is None:
            for candidate in [
                Path("config/settings.yaml"),
                Path.home() / ".config/gait-vision/settings.yaml",
            ]:
                if candidate.exists():
                    config_path = candidate
                    break

        _settings = Settings.from_yaml(config_path) if config_path else Settings()

    return _settings


def reload_settings(config_path: str | Path | None = None) -> Settings:
    """Force reload settings from file."""
    global _settings
    _settings = None
    return get_settings(config_path)
