"""
Result Export
=============

CSV export of per-video features and scores, per-frame signal dumps, and
the record persisted to storage. Missing numeric values render as ``NaN``.
"""

from __future__ import annotations

import csv
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any

from ..models.scorer import ScoringResult
from ..pipeline.extractor import GaitDiagnostics
from ..pipeline.features import FEATURE_COLUMNS, GaitFeatures
from ..pipeline.signals import Signals

logger = logging.getLogger(__name__)

METADATA_COLUMNS = (
    "participant_id",
    "video_name",
    "timestamp",
    "quality_flag",
    "walking_direction",
    "was_flipped",
    "fps_detected",
    "duration_s",
    "num_frames_total",
    "num_frames_valid",
    "valid_frame_rate",
    "num_steps_detected",
    "num_strides_valid",
)
SCORE_COLUMNS = ("ae_score", "ridge_score", "pca_score")

SIGNAL_COLUMNS = (
    "frame_idx",
    "timestamp_s",
    "is_valid",
    "inter_ankle_dist",
    "knee_angle_left",
    "knee_angle_right",
    "trunk_angle",
    "ankle_left_y",
    "ankle_right_y",
    "hip_left_y",
    "hip_right_y",
    "ankle_left_vy",
    "ankle_right_vy",
    "hip_avg_vy",
)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def format_value(value: Any) -> str:
    """Render a CSV cell; None and NaN become the literal NaN."""
    if value is None:
        return "NaN"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return "NaN" if math.isnan(value) else repr(value)
    return str(value)


def _format_signal(value: float) -> str:
    return "NaN" if math.isnan(value) else f"{value:.4f}"


def feature_csv_header() -> list[str]:
    """Column order of the features CSV."""
    return [*METADATA_COLUMNS, *FEATURE_COLUMNS, *SCORE_COLUMNS]


def feature_csv_row(
    diagnostics: GaitDiagnostics,
    features: GaitFeatures | None,
    scoring: ScoringResult | None,
    participant_id: str,
    video_name: str,
    timestamp: str | None = None,
) -> list[str]:
    """One data row matching feature_csv_header()."""
    timestamp = timestamp or datetime.now().strftime(TIMESTAMP_FORMAT)
    metadata = [
        participant_id,
        video_name,
        timestamp,
        diagnostics.quality_flag.value,
        diagnostics.walking_direction,
        diagnostics.was_flipped,
        float(diagnostics.fps_detected),
        float(diagnostics.duration_s),
        diagnostics.num_frames_total,
        diagnostics.num_frames_valid,
        float(diagnostics.valid_frame_rate),
        diagnostics.num_steps_detected,
        diagnostics.num_strides_valid,
    ]
    if features is not None:
        feature_values = list(features.to_dict().values())
    else:
        feature_values = [None] * len(FEATURE_COLUMNS)

    scoring = scoring or ScoringResult()
    scores = [scoring.ae_score, scoring.ridge_score, scoring.pca_score]
    return [format_value(v) for v in (*metadata, *feature_values, *scores)]


def write_feature_csv(
    path: str | Path,
    diagnostics: GaitDiagnostics,
    features: GaitFeatures | None,
    scoring: ScoringResult | None,
    participant_id: str,
    video_name: str,
    timestamp: str | None = None,
    append: bool = False,
) -> Path:
    """
    Write (or append) one result row to a features CSV.

    The header is written when the file is new or append is False.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_header = not append or not path.exists() or path.stat().st_size == 0

    with open(path, "a" if append else "w", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        if write_header:
            writer.writerow(feature_csv_header())
        writer.writerow(
            feature_csv_row(diagnostics, features, scoring, participant_id, video_name, timestamp)
        )

    logger.debug("Exported features to %s", path)
    return path


def write_signals_csv(path: str | Path, signals: Signals) -> Path:
    """Dump the per-frame signals with four decimals."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(SIGNAL_COLUMNS)
        for i in range(signals.n_frames):
            writer.writerow(
                [
                    i,
                    _format_signal(signals.timestamps[i]),
                    "1" if signals.is_valid[i] else "0",
                    *(_format_signal(getattr(signals, name)[i]) for name in SIGNAL_COLUMNS[3:]),
                ]
            )

    logger.debug("Exported %d signal frames to %s", signals.n_frames, path)
    return path


def score_band(score: float) -> str:
    """Qualitative band of a 0-100 health score."""
    if score >= 80:
        return "good"
    if score >= 60:
        return "fair"
    return "poor"


def storage_record(
    features: GaitFeatures | None,
    scoring: ScoringResult | None,
    diagnostics: GaitDiagnostics,
) -> dict[str, Any]:
    """
    Record persisted per analysis: the canonical score plus selected sub-values.

    Sub-values are None when no features were extracted.
    """
    scoring = scoring or ScoringResult()
    overall = scoring.score_for_storage()

    def sub_value(name: str) -> float | None:
        if features is None or features.is_empty:
            return None
        value = float(getattr(features, name))
        return None if math.isnan(value) else value

    return {
        "video_id": diagnostics.video_id,
        "quality_flag": diagnostics.quality_flag.value,
        "overall_score": overall,
        "score_band": score_band(overall),
        "left_knee_rom": sub_value("knee_left_rom"),
        "right_knee_rom": sub_value("knee_right_rom"),
        "ldj_hip": sub_value("ldj_hip"),
        "trunk_lean_std_deg": sub_value("trunk_lean_std_deg"),
    }
