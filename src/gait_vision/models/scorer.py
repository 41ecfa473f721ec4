"""
Gait Scoring
============

Three independent descriptor-driven models turn the 16 gait features into
0-100 health scores:

- autoencoder: reconstruction MSE of a small torch autoencoder (canonical score)
- ridge: linear score, dot(standardized, coefficients) + intercept
- pca: reconstruction MSE after projecting on a few principal directions

A model whose descriptor or inference path fails is reported as unavailable
(score None) without affecting the other two.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import torch
from torch import nn

from ..core.config import ScoringConfig
from ..core.exceptions import DescriptorError, GaitVisionError, InferenceError
from ..pipeline.features import GaitFeatures
from .base import ModelConfig, ScoringModel, get_model, register_model
from .descriptors import N_FEATURES, ModelDescriptor, load_descriptor

logger = logging.getLogger(__name__)

ACTIVATIONS = {
    "relu": nn.ReLU,
    "tanh": nn.Tanh,
    "sigmoid": nn.Sigmoid,
    "leaky_relu": nn.LeakyReLU,
}


def build_autoencoder(layers: list[dict]) -> nn.Sequential:
    """Build an nn.Sequential from [{"weight", "bias", "activation"}] layer specs."""
    modules: list[nn.Module] = []
    for i, spec in enumerate(layers):
        weight = torch.tensor(spec["weight"], dtype=torch.float32)
        bias = torch.tensor(spec["bias"], dtype=torch.float32)
        if weight.ndim != 2 or bias.shape != (weight.shape[0],):
            raise DescriptorError(f"Layer {i}: weight {tuple(weight.shape)} / bias {tuple(bias.shape)} mismatch")

        linear = nn.Linear(weight.shape[1], weight.shape[0])
        with torch.no_grad():
            linear.weight.copy_(weight)
            linear.bias.copy_(bias)
        modules.append(linear)

        activation = spec.get("activation") or "linear"
        if activation != "linear":
            if activation not in ACTIVATIONS:
                raise DescriptorError(f"Layer {i}: unknown activation {activation!r}")
            modules.append(ACTIVATIONS[activation]())

    if not modules:
        raise DescriptorError("Autoencoder has no layers")
    return nn.Sequential(*modules)


@register_model("autoencoder")
class AutoencoderModel(ScoringModel):
    """Reconstruction-error model backed by torch."""

    def load(self, checkpoint_path: str | Path | None = None) -> None:
        params = self.descriptor.params
        try:
            if checkpoint_path is not None or "model_path" in params:
                path = Path(checkpoint_path or params["model_path"])
                if not path.is_absolute() and self.descriptor.source is not None:
                    path = self.descriptor.source.parent / path
                if not path.exists():
                    raise DescriptorError(f"Autoencoder weights not found: {path}")
                model = torch.jit.load(str(path), map_location=self.config.device)
            else:
                model = build_autoencoder(params["autoencoder"]["layers"])
        except (KeyError, TypeError, ValueError, RuntimeError) as e:
            raise DescriptorError(f"Could not build autoencoder {self.name}: {e}") from e

        model.eval()
        self._model = model
        self._is_loaded = True

    def raw_score(self, standardized: np.ndarray) -> float:
        x = torch.from_numpy(standardized.astype(np.float32)).unsqueeze(0)
        try:
            with torch.no_grad():
                recon = self._model(x).squeeze(0).numpy().astype(np.float64)
        except RuntimeError as e:
            raise InferenceError(f"{self.name} inference failed: {e}") from e
        if recon.shape != standardized.shape:
            raise InferenceError(f"{self.name} returned shape {recon.shape}, expected {standardized.shape}")
        return float(np.mean((recon - standardized) ** 2))


@register_model("ridge")
class RidgeModel(ScoringModel):
    """Linear score on standardized features."""

    def load(self, checkpoint_path: str | Path | None = None) -> None:
        try:
            coefficients = np.asarray(self.descriptor.params["coefficients"], dtype=np.float64)
            intercept = float(self.descriptor.params.get("intercept", 0.0))
        except (KeyError, TypeError, ValueError) as e:
            raise DescriptorError(f"Malformed ridge parameters in {self.name}: {e}") from e
        if coefficients.shape != (N_FEATURES,):
            raise DescriptorError(f"Ridge needs {N_FEATURES} coefficients, got {coefficients.shape}")
        self._model = (coefficients, intercept)
        self._is_loaded = True

    def raw_score(self, standardized: np.ndarray) -> float:
        coefficients, intercept = self._model
        return float(np.dot(standardized, coefficients) + intercept)


@register_model("pca")
class PCAModel(ScoringModel):
    """Reconstruction error after projection on principal components."""

    def load(self, checkpoint_path: str | Path | None = None) -> None:
        try:
            block = self.descriptor.params["pca"]
            components = np.asarray(block["components"], dtype=np.float64)
            mean = np.asarray(block.get("mean", np.zeros(N_FEATURES)), dtype=np.float64)
        except (KeyError, TypeError, ValueError) as e:
            raise DescriptorError(f"Malformed PCA parameters in {self.name}: {e}") from e
        if components.ndim != 2 or components.shape[1] != N_FEATURES or mean.shape != (N_FEATURES,):
            raise DescriptorError(f"PCA components must be (k, {N_FEATURES}), got {components.shape}")
        self._model = (components, mean)
        self._is_loaded = True

    def raw_score(self, standardized: np.ndarray) -> float:
        components, mean = self._model
        centered = standardized - mean
        recon = (centered @ components.T) @ components + mean
        return float(np.mean((recon - standardized) ** 2))


# =============================================================================
# Scorer
# =============================================================================


@dataclass
class ScoringResult:
    """Health scores (0-100) per model; None means the model was unavailable."""

    ae_score: float | None = None
    ridge_score: float | None = None
    pca_score: float | None = None

    def score_for_storage(self) -> float:
        """Canonical persisted score: the autoencoder score, 0 when unavailable."""
        return self.ae_score if self.ae_score is not None else 0.0

    def available_models(self) -> list[str]:
        return [name for name, score in self.to_dict().items() if score is not None]

    def average_score(self) -> float | None:
        """Mean of available scores (advisory only)."""
        scores = [s for s in self.to_dict().values() if s is not None]
        return float(np.mean(scores)) if scores else None

    def to_dict(self) -> dict[str, float | None]:
        return {"ae": self.ae_score, "ridge": self.ridge_score, "pca": self.pca_score}


class GaitScorer:
    """Score gait features with the autoencoder, ridge and PCA models."""

    def __init__(
        self,
        ae_model: ScoringModel | None = None,
        ridge_model: ScoringModel | None = None,
        pca_model: ScoringModel | None = None,
    ):
        self.models: dict[str, ScoringModel | None] = {
            "ae": ae_model,
            "ridge": ridge_model,
            "pca": pca_model,
        }

    @classmethod
    def from_directory(
        cls,
        models_dir: str | Path | None = None,
        config: ScoringConfig | None = None,
        device: str = "cpu",
    ) -> GaitScorer:
        """Load the three model descriptors from a directory; each may fail independently."""
        config = config or ScoringConfig()
        models_dir = Path(models_dir) if models_dir is not None else config.models_dir
        return cls(
            ae_model=load_model(models_dir / config.ae_descriptor, device),
            ridge_model=load_model(models_dir / config.ridge_descriptor, device),
            pca_model=load_model(models_dir / config.pca_descriptor, device),
        )

    @property
    def available_models(self) -> list[str]:
        return [name for name, model in self.models.items() if model is not None]

    def score(self, features: GaitFeatures | np.ndarray | None) -> ScoringResult:
        """
        Score a feature vector.

        Args:
            features: GaitFeatures or a 16-vector; empty features give no scores

        Returns:
            ScoringResult with None for unavailable models
        """
        if features is None:
            return ScoringResult()
        if isinstance(features, GaitFeatures):
            if features.is_empty:
                return ScoringResult()
            vector = features.to_array()
        else:
            vector = np.asarray(features, dtype=np.float64)
        if vector.shape != (N_FEATURES,):
            raise ValueError(f"Expected {N_FEATURES} features, got shape {vector.shape}")

        scores = {name: self._score_one(name, model, vector) for name, model in self.models.items()}
        return ScoringResult(ae_score=scores["ae"], ridge_score=scores["ridge"], pca_score=scores["pca"])

    def _score_one(self, slot: str, model: ScoringModel | None, vector: np.ndarray) -> float | None:
        if model is None:
            return None
        try:
            result = model.predict(vector)
        except GaitVisionError as e:
            logger.warning("Model %s (%s) unavailable: %s", slot, model.name, e)
            return None
        logger.debug("Model %s: raw=%.5f health=%.1f", slot, result.raw_score, result.health_score)
        return result.health_score


def load_model(path: str | Path, device: str = "cpu") -> ScoringModel | None:
    """Load and initialize one model, or None (with a warning) when it is unavailable."""
    try:
        descriptor = load_descriptor(path)
        model = get_model(descriptor, ModelConfig(name=descriptor.model_name, device=device))
        model.load()
    except DescriptorError as e:
        logger.warning("Scoring model unavailable: %s", e)
        return None
    return model
