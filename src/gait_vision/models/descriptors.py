"""
Scoring Model Descriptors
=========================

Self-contained JSON documents describing one scoring model: feature
standardization, model parameters, and the calibration that turns the
model's raw score into a 0-100 health score.

Example (ridge)::

    {
      "model_name": "Ridge",
      "kind": "ridge",
      "scaler": {"mean": [...16], "scale": [...16]},
      "coefficients": [...16],
      "intercept": 0.12,
      "clinical_mapping": {
        "lower_is_better": true,
        "breakpoints": [0.5, 1.0, 2.0],
        "health_anchors": [100, 80, 50, 20]
      }
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from ..core.exceptions import DescriptorError
from ..pipeline.features import FEATURE_COLUMNS

logger = logging.getLogger(__name__)

N_FEATURES = len(FEATURE_COLUMNS)
SCALE_EPSILON = 1e-8

MODEL_KINDS = ("autoencoder", "ridge", "pca")


@dataclass(frozen=True, eq=False)
class Standardizer:
    """Per-feature (x - mean) / scale, with NaN inputs replaced by 0 first."""

    mean: np.ndarray
    scale: np.ndarray

    def __post_init__(self) -> None:
        mean = np.asarray(self.mean, dtype=np.float64)
        scale = np.asarray(self.scale, dtype=np.float64)
        if mean.shape != (N_FEATURES,) or scale.shape != (N_FEATURES,):
            raise DescriptorError(
                f"Scaler needs {N_FEATURES} means and scales, got {mean.shape} and {scale.shape}"
            )
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "scale", scale)

    def transform(self, x: np.ndarray) -> np.ndarray:
        x = np.nan_to_num(np.asarray(x, dtype=np.float64), nan=0.0)
        centered = x - self.mean
        safe_scale = np.where(self.scale > SCALE_EPSILON, self.scale, 1.0)
        return centered / safe_scale

    def to_dict(self) -> dict:
        return {"mean": self.mean.tolist(), "scale": self.scale.tolist()}


@dataclass(frozen=True)
class ClinicalMapping:
    """
    Piecewise-linear calibration from raw score to health score.

    Knots are (0, h0), (b1, h1), ..., (bk, hk). Raw scores below 0 hold h0.
    Beyond bk the last segment's slope continues, bounded by the worst end of
    the health scale (0 when lower raw is healthier, 100 otherwise).
    """

    breakpoints: tuple[float, ...]
    health_anchors: tuple[float, ...]
    lower_is_better: bool = True

    def __post_init__(self) -> None:
        bps = tuple(float(b) for b in self.breakpoints)
        anchors = tuple(float(h) for h in self.health_anchors)
        object.__setattr__(self, "breakpoints", bps)
        object.__setattr__(self, "health_anchors", anchors)

        if not bps:
            raise DescriptorError("Clinical mapping needs at least one breakpoint")
        if len(anchors) != len(bps) + 1:
            raise DescriptorError(
                f"Clinical mapping needs {len(bps) + 1} anchors for {len(bps)} breakpoints, got {len(anchors)}"
            )
        knots = (0.0,) + bps
        if any(b <= a for a, b in zip(knots, knots[1:])):
            raise DescriptorError(f"Breakpoints must be positive and strictly ascending: {bps}")
        if any(not 0.0 <= h <= 100.0 for h in anchors):
            raise DescriptorError(f"Health anchors must lie in [0, 100]: {anchors}")
        steps = np.diff(anchors)
        if self.lower_is_better and np.any(steps > 0):
            raise DescriptorError("Anchors must be non-increasing when lower raw scores are healthier")
        if not self.lower_is_better and np.any(steps < 0):
            raise DescriptorError("Anchors must be non-decreasing when higher raw scores are healthier")

    def to_health(self, raw: float) -> float:
        knots = (0.0,) + self.breakpoints
        anchors = self.health_anchors
        if raw <= 0.0:
            return anchors[0]
        if raw <= knots[-1]:
            return float(np.interp(raw, knots, anchors))

        slope = (anchors[-1] - anchors[-2]) / (knots[-1] - knots[-2])
        value = anchors[-1] + slope * (raw - knots[-1])
        value = max(value, 0.0) if self.lower_is_better else min(value, 100.0)
        return float(np.clip(value, 0.0, 100.0))

    def to_dict(self) -> dict:
        return {
            "lower_is_better": self.lower_is_better,
            "breakpoints": list(self.breakpoints),
            "health_anchors": list(self.health_anchors),
        }


@dataclass(frozen=True)
class PercentileMapping:
    """Deprecated linear calibration between the 1st and 99th raw-score percentiles."""

    p1: float
    p99: float

    def __post_init__(self) -> None:
        if not self.p99 > self.p1:
            raise DescriptorError(f"score_mapping needs p99 > p1, got p1={self.p1}, p99={self.p99}")

    def to_health(self, raw: float) -> float:
        normalized = (raw - self.p1) / (self.p99 - self.p1) * 100
        return float(100 - np.clip(normalized, 0.0, 100.0))

    def to_dict(self) -> dict:
        return {"p1": self.p1, "p99": self.p99}


@dataclass
class ModelDescriptor:
    """Parsed model descriptor."""

    model_name: str
    kind: str
    scaler: Standardizer
    mapping: ClinicalMapping | PercentileMapping
    params: dict[str, Any] = field(default_factory=dict)
    source: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model_name": self.model_name,
            "kind": self.kind,
            "feature_columns": list(FEATURE_COLUMNS),
            "scaler": self.scaler.to_dict(),
        }
        data.update(self.params)
        if isinstance(self.mapping, ClinicalMapping):
            data["clinical_mapping"] = self.mapping.to_dict()
        else:
            data["score_mapping"] = self.mapping.to_dict()
        return data

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path


def _infer_kind(data: dict[str, Any]) -> str:
    if "autoencoder" in data or "model_path" in data:
        return "autoencoder"
    if "coefficients" in data:
        return "ridge"
    if "pca" in data:
        return "pca"
    raise DescriptorError("Cannot infer model kind from descriptor")


def _parse_mapping(data: dict[str, Any]) -> ClinicalMapping | PercentileMapping:
    if "clinical_mapping" in data:
        block = data["clinical_mapping"]
        return ClinicalMapping(
            breakpoints=tuple(block["breakpoints"]),
            health_anchors=tuple(block["health_anchors"]),
            lower_is_better=bool(block.get("lower_is_better", True)),
        )
    if "score_mapping" in data:
        block = data["score_mapping"]
        logger.debug("Using deprecated percentile score mapping")
        return PercentileMapping(p1=float(block["p1"]), p99=float(block["p99"]))
    raise DescriptorError("Descriptor has neither clinical_mapping nor score_mapping")


def parse_descriptor(data: dict[str, Any], source: Path | None = None) -> ModelDescriptor:
    """Build a ModelDescriptor from decoded JSON."""
    try:
        kind = data.get("kind") or _infer_kind(data)
        if kind not in MODEL_KINDS:
            raise DescriptorError(f"Unknown model kind: {kind}")

        scaler_block = data["scaler"]
        scaler = Standardizer(mean=scaler_block["mean"], scale=scaler_block["scale"])
        mapping = _parse_mapping(data)

        reserved = {"model_name", "kind", "scaler", "clinical_mapping", "score_mapping", "feature_columns"}
        params = {k: v for k, v in data.items() if k not in reserved}
        name = data.get("model_name") or (source.stem if source else kind)
    except DescriptorError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise DescriptorError(f"Malformed descriptor {source or ''}: {e}") from e

    return ModelDescriptor(
        model_name=str(name),
        kind=kind,
        scaler=scaler,
        mapping=mapping,
        params=params,
        source=source,
    )


def load_descriptor(path: str | Path) -> ModelDescriptor:
    """
    Load a model descriptor from JSON.

    Raises:
        DescriptorError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise DescriptorError(f"Descriptor not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DescriptorError(f"Could not read descriptor {path}: {e}") from e
    if not isinstance(data, dict):
        raise DescriptorError(f"Descriptor {path} is not a JSON object")
    return parse_descriptor(data, source=path)
