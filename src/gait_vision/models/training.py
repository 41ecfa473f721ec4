"""
Descriptor Training
===================

Fit the three scoring models on a table of gait features and write their
JSON descriptors:

- StandardScaler + Ridge (scikit-learn) against a severity target
- StandardScaler + PCA (scikit-learn)
- StandardScaler + a small torch autoencoder

Clinical mappings are derived from percentiles of the training raw scores.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import torch
from sklearn.decomposition import PCA
from sklearn.linear_model import Ridge
from sklearn.preprocessing import StandardScaler
from torch import nn

from ..core.config import ScoringConfig
from ..pipeline.features import FEATURE_COLUMNS
from .descriptors import ClinicalMapping, ModelDescriptor, Standardizer

logger = logging.getLogger(__name__)

DEFAULT_PERCENTILES = (50.0, 75.0, 90.0, 99.0)
DEFAULT_ANCHORS = (100.0, 90.0, 75.0, 50.0, 20.0)


@dataclass
class TrainingConfig:
    """Descriptor training options."""

    ridge_alpha: float = 1.0
    pca_components: int = 4
    ae_hidden: int = 8
    ae_bottleneck: int = 4
    ae_epochs: int = 300
    ae_lr: float = 1e-2
    random_state: int = 42
    percentiles: tuple[float, ...] = DEFAULT_PERCENTILES
    anchors: tuple[float, ...] = DEFAULT_ANCHORS


def _set_seed(seed: int) -> None:
    np.random.seed(seed)
    torch.manual_seed(seed)


def load_feature_table(
    path: str | Path, target_column: str | None = None, ok_only: bool = True
) -> tuple[np.ndarray, np.ndarray | None]:
    """
    Read feature rows from an exported features CSV.

    Args:
        path: CSV with the 16 feature columns
        target_column: Optional column to return as the regression target
        ok_only: Skip rows whose quality_flag is present and not OK

    Returns:
        (X of shape (n, 16), y or None)
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Feature table not found: {path}")

    rows_x, rows_y = [], []
    with open(path, newline="") as f:
        reader = csv.DictReader(f)
        missing = [c for c in FEATURE_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Feature table {path} is missing columns: {missing}")
        if target_column and target_column not in reader.fieldnames:
            raise ValueError(f"Target column {target_column!r} not in {path}")

        for row in reader:
            if ok_only and row.get("quality_flag", "OK") != "OK":
                continue
            values = [float(row[c]) for c in FEATURE_COLUMNS]
            if not np.all(np.isfinite(values)):
                continue
            rows_x.append(values)
            if target_column:
                rows_y.append(float(row[target_column]))

    X = np.asarray(rows_x, dtype=np.float64).reshape(-1, len(FEATURE_COLUMNS))
    y = np.asarray(rows_y, dtype=np.float64) if target_column else None
    return X, y


def derive_clinical_mapping(
    raw_scores: np.ndarray,
    percentiles: tuple[float, ...] = DEFAULT_PERCENTILES,
    anchors: tuple[float, ...] = DEFAULT_ANCHORS,
) -> ClinicalMapping:
    """Breakpoints at raw-score percentiles of a reference population (lower is better)."""
    if len(anchors) != len(percentiles) + 1:
        raise ValueError("Need one more anchor than percentiles")
    breakpoints = np.percentile(np.asarray(raw_scores, dtype=np.float64), percentiles)
    # Breakpoints must be positive and strictly ascending
    floor = 1e-6
    fixed = []
    for b in breakpoints:
        b = max(float(b), floor)
        fixed.append(b)
        floor = b * (1 + 1e-6) + 1e-9
    return ClinicalMapping(breakpoints=tuple(fixed), health_anchors=tuple(anchors), lower_is_better=True)


def _standardizer(scaler: StandardScaler) -> Standardizer:
    return Standardizer(mean=scaler.mean_, scale=scaler.scale_)


def fit_ridge(X: np.ndarray, y: np.ndarray, config: TrainingConfig | None = None) -> ModelDescriptor:
    config = config or TrainingConfig()
    scaler = StandardScaler().fit(X)
    Z = scaler.transform(X)
    ridge = Ridge(alpha=config.ridge_alpha, random_state=config.random_state).fit(Z, y)
    raw = ridge.predict(Z)
    return ModelDescriptor(
        model_name="Ridge",
        kind="ridge",
        scaler=_standardizer(scaler),
        mapping=derive_clinical_mapping(raw, config.percentiles, config.anchors),
        params={"coefficients": ridge.coef_.tolist(), "intercept": float(ridge.intercept_)},
    )


def fit_pca(X: np.ndarray, config: TrainingConfig | None = None) -> ModelDescriptor:
    config = config or TrainingConfig()
    scaler = StandardScaler().fit(X)
    Z = scaler.transform(X)
    n_components = min(config.pca_components, Z.shape[0], Z.shape[1])
    pca = PCA(n_components=n_components, random_state=config.random_state).fit(Z)
    recon = pca.inverse_transform(pca.transform(Z))
    raw = np.mean((recon - Z) ** 2, axis=1)
    return ModelDescriptor(
        model_name=f"PCA-{n_components}",
        kind="pca",
        scaler=_standardizer(scaler),
        mapping=derive_clinical_mapping(raw, config.percentiles, config.anchors),
        params={"pca": {"components": pca.components_.tolist(), "mean": pca.mean_.tolist()}},
    )


class GaitAutoencoder(nn.Module):
    def __init__(self, n_features: int, hidden: int, bottleneck: int):
        super().__init__()
        self.net = nn.Sequential(
            nn.Linear(n_features, hidden),
            nn.ReLU(),
            nn.Linear(hidden, bottleneck),
            nn.ReLU(),
            nn.Linear(bottleneck, hidden),
            nn.ReLU(),
            nn.Linear(hidden, n_features),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)

    def layer_specs(self) -> list[dict]:
        """Export linear layers as descriptor layer specs."""
        specs = []
        modules = list(self.net)
        for i, module in enumerate(modules):
            if not isinstance(module, nn.Linear):
                continue
            follows_relu = i + 1 < len(modules) and isinstance(modules[i + 1], nn.ReLU)
            specs.append(
                {
                    "weight": module.weight.detach().cpu().tolist(),
                    "bias": module.bias.detach().cpu().tolist(),
                    "activation": "relu" if follows_relu else "linear",
                }
            )
        return specs


def fit_autoencoder(X: np.ndarray, config: TrainingConfig | None = None) -> ModelDescriptor:
    config = config or TrainingConfig()
    _set_seed(config.random_state)
    scaler = StandardScaler().fit(X)
    Z = torch.from_numpy(scaler.transform(X)).float()

    model = GaitAutoencoder(Z.shape[1], config.ae_hidden, config.ae_bottleneck)
    opt = torch.optim.Adam(model.parameters(), lr=config.ae_lr)
    criterion = nn.MSELoss()

    model.train()
    for epoch in range(config.ae_epochs):
        opt.zero_grad()
        loss = criterion(model(Z), Z)
        loss.backward()
        opt.step()
        if (epoch + 1) % 100 == 0:
            logger.debug("AE epoch %d: loss=%.5f", epoch + 1, loss.item())

    model.eval()
    with torch.no_grad():
        raw = torch.mean((model(Z) - Z) ** 2, dim=1).numpy()

    return ModelDescriptor(
        model_name=f"AE-{config.ae_bottleneck}D-normal",
        kind="autoencoder",
        scaler=_standardizer(scaler),
        mapping=derive_clinical_mapping(raw, config.percentiles, config.anchors),
        params={"autoencoder": {"layers": model.layer_specs()}},
    )


def fit_descriptors(
    X: np.ndarray,
    output_dir: str | Path,
    y: np.ndarray | None = None,
    config: TrainingConfig | None = None,
    scoring: ScoringConfig | None = None,
) -> dict[str, Path]:
    """
    Fit all models and write their descriptors.

    Ridge needs a target and is skipped when y is None.

    Returns:
        Mapping of model slot to written descriptor path
    """
    config = config or TrainingConfig()
    scoring = scoring or ScoringConfig()
    output_dir = Path(output_dir)
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[1] != len(FEATURE_COLUMNS):
        raise ValueError(f"Expected (n, {len(FEATURE_COLUMNS)}) features, got {X.shape}")
    if X.shape[0] < 2:
        raise ValueError("Need at least two feature rows to fit models")

    written = {
        "ae": fit_autoencoder(X, config).save(output_dir / scoring.ae_descriptor),
        "pca": fit_pca(X, config).save(output_dir / scoring.pca_descriptor),
    }
    if y is not None:
        written["ridge"] = fit_ridge(X, y, config).save(output_dir / scoring.ridge_descriptor)
    else:
        logger.warning("No target given, skipping ridge model")

    logger.info("Wrote %d descriptors to %s", len(written), output_dir)
    return written
