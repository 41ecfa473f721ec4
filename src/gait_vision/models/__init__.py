"""Gait scoring models."""

from .base import (
    InferenceResult,
    ModelConfig,
    ScoringModel,
    get_model,
    list_models,
    register_model,
)
from .descriptors import (
    ClinicalMapping,
    ModelDescriptor,
    PercentileMapping,
    Standardizer,
    load_descriptor,
    parse_descriptor,
)
from .scorer import (
    AutoencoderModel,
    GaitScorer,
    PCAModel,
    RidgeModel,
    ScoringResult,
    build_autoencoder,
    load_model,
)

__all__ = [
    # Base
    "InferenceResult",
    "ModelConfig",
    "ScoringModel",
    "get_model",
    "list_models",
    "register_model",
    # Descriptors
    "ClinicalMapping",
    "ModelDescriptor",
    "PercentileMapping",
    "Standardizer",
    "load_descriptor",
    "parse_descriptor",
    # Scorer
    "AutoencoderModel",
    "GaitScorer",
    "PCAModel",
    "RidgeModel",
    "ScoringResult",
    "build_autoencoder",
    "load_model",
]
