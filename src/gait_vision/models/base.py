"""
Scoring Model Base
==================

Every scoring model is described by a JSON descriptor. Scoring a feature
vector always runs the same three steps:

    standardize (descriptor scaler) -> raw score (model) -> 0-100 health (mapping)

Subclasses only load their parameters and compute the raw score. They are
registered by descriptor kind so ``get_model`` can build the right class.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from ..core.exceptions import InferenceError
from .descriptors import ModelDescriptor


@dataclass
class ModelConfig:
    """Runtime options for one scoring model."""

    name: str
    device: str = "cpu"  # torch device for the autoencoder


@dataclass
class InferenceResult:
    """Score produced by one model for one feature vector."""

    raw_score: float
    health_score: float
    metadata: dict = field(default_factory=dict)


class ScoringModel(ABC):
    """Descriptor-driven model mapping a feature vector to a health score."""

    kind: str = ""

    def __init__(self, descriptor: ModelDescriptor, config: ModelConfig | None = None):
        self.descriptor = descriptor
        self.config = config or ModelConfig(name=descriptor.model_name)
        self._model = None
        self._is_loaded = False

    @property
    def name(self) -> str:
        return self.descriptor.model_name

    @property
    def is_loaded(self) -> bool:
        return self._is_loaded

    @abstractmethod
    def load(self, checkpoint_path: str | Path | None = None) -> None:
        """
        Prepare the model parameters from the descriptor.

        Raises:
            DescriptorError: If the parameters are missing or inconsistent
        """

    @abstractmethod
    def raw_score(self, standardized: np.ndarray) -> float:
        """Raw model output for a standardized feature vector."""

    def predict(self, inputs: np.ndarray) -> InferenceResult:
        if not self._is_loaded:
            self.load()
        standardized = self.descriptor.scaler.transform(inputs)
        raw = float(self.raw_score(standardized))
        if not np.isfinite(raw):
            raise InferenceError(f"{self.name} produced a non-finite raw score")
        return InferenceResult(
            raw_score=raw,
            health_score=self.descriptor.mapping.to_health(raw),
            metadata={"model": self.name, "kind": self.kind},
        )


_MODEL_REGISTRY: dict[str, type[ScoringModel]] = {}


def register_model(kind: str):
    """Class decorator registering a scoring model for a descriptor kind."""
    def decorator(cls: type[ScoringModel]) -> type[ScoringModel]:
        cls.kind = kind
        _MODEL_REGISTRY[kind] = cls
        return cls
    return decorator


def get_model(descriptor: ModelDescriptor, config: ModelConfig | None = None) -> ScoringModel:
    """Instantiate the registered model class for a descriptor."""
    try:
        model_cls = _MODEL_REGISTRY[descriptor.kind]
    except KeyError:
        raise ValueError(
            f"Unknown model kind: {descriptor.kind}. Available: {sorted(_MODEL_REGISTRY)}"
        ) from None
    return model_cls(descriptor, config)


def list_models() -> list[str]:
    """Registered descriptor kinds."""
    return sorted(_MODEL_REGISTRY)
