"""Tests for descriptors, clinical mapping and the gait scorer."""

from __future__ import annotations

import json

import numpy as np
import pytest

from gait_vision.core.config import ScoringConfig
from gait_vision.core.exceptions import DescriptorError, InferenceError
from gait_vision.models import (
    ClinicalMapping,
    GaitScorer,
    ScoringResult,
    load_descriptor,
    load_model,
)
from gait_vision.models.base import ScoringModel, get_model, list_models
from gait_vision.models.descriptors import PercentileMapping, Standardizer, parse_descriptor
from gait_vision.pipeline.features import GaitFeatures

ONES = np.ones(16)


class TestClinicalMapping:
    """Tests for raw-to-health calibration."""

    @pytest.fixture
    def mapping(self) -> ClinicalMapping:
        return ClinicalMapping(breakpoints=(1.0, 2.0, 4.0), health_anchors=(100, 80, 50, 20))

    def test_knots(self, mapping):
        assert mapping.to_health(0.0) == 100.0
        assert mapping.to_health(1.0) == pytest.approx(80.0)
        assert mapping.to_health(4.0) == pytest.approx(20.0)

    def test_midpoint(self, mapping):
        assert mapping.to_health(1.5) == pytest.approx(65.0)

    def test_below_zero_holds_first_anchor(self, mapping):
        assert mapping.to_health(-3.0) == 100.0

    def test_extrapolation_is_bounded(self, mapping):
        # Last segment slope is -15 per unit
        assert mapping.to_health(5.0) == pytest.approx(5.0)
        assert mapping.to_health(100.0) == 0.0

    def test_higher_is_better(self):
        mapping = ClinicalMapping(
            breakpoints=(1.0, 2.0), health_anchors=(0, 50, 90), lower_is_better=False
        )
        assert mapping.to_health(1.5) == pytest.approx(70.0)
        assert mapping.to_health(10.0) == 100.0

    @pytest.mark.parametrize(
        "breakpoints, anchors",
        [
            ((), (100,)),
            ((1.0, 2.0), (100, 80)),
            ((2.0, 1.0), (100, 80, 50)),
            ((0.0, 1.0), (100, 80, 50)),
            ((1.0, 2.0), (100, 80, 120)),
            ((1.0, 2.0), (80, 100, 50)),
        ],
    )
    def test_invalid(self, breakpoints, anchors):
        with pytest.raises(DescriptorError):
            ClinicalMapping(breakpoints=breakpoints, health_anchors=anchors)

    def test_percentile_mapping(self):
        mapping = PercentileMapping(p1=0.0, p99=2.0)
        assert mapping.to_health(1.0) == pytest.approx(50.0)
        assert mapping.to_health(5.0) == 0.0
        with pytest.raises(DescriptorError):
            PercentileMapping(p1=1.0, p99=1.0)


class TestDescriptors:
    """Tests for descriptor parsing."""

    def test_standardizer(self):
        scaler = Standardizer(mean=np.ones(16), scale=np.r_[np.full(15, 2.0), 0.0])
        x = np.full(16, 3.0)
        x[0] = np.nan

        z = scaler.transform(x)

        assert z[0] == pytest.approx(-0.5)
        assert z[1] == pytest.approx(1.0)
        assert z[15] == pytest.approx(2.0)

    def test_wrong_scaler_length(self):
        with pytest.raises(DescriptorError):
            Standardizer(mean=np.zeros(3), scale=np.ones(3))

    def test_kind_inferred(self, descriptor_dicts):
        descriptor = parse_descriptor(descriptor_dicts["ae"])
        assert descriptor.kind == "autoencoder"
        assert descriptor.model_name == "AE-4D-normal"

    def test_missing_mapping(self, descriptor_dicts):
        data = dict(descriptor_dicts["ridge"])
        del data["clinical_mapping"]
        with pytest.raises(DescriptorError):
            parse_descriptor(data)

    def test_deprecated_score_mapping(self, descriptor_dicts):
        data = dict(descriptor_dicts["ridge"])
        del data["clinical_mapping"]
        data["score_mapping"] = {"p1": 0.0, "p99": 3.2}

        descriptor = parse_descriptor(data)

        assert isinstance(descriptor.mapping, PercentileMapping)

    def test_load_missing(self, temp_dir):
        with pytest.raises(DescriptorError):
            load_descriptor(temp_dir / "nope.json")

    def test_load_invalid_json(self, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text("{not json")
        with pytest.raises(DescriptorError):
            load_descriptor(path)

    def test_save_round_trip(self, models_dir, temp_dir):
        descriptor = load_descriptor(models_dir / "Ridge.json")
        path = descriptor.save(temp_dir / "copy" / "Ridge.json")

        reloaded = load_descriptor(path)

        assert reloaded.kind == "ridge"
        assert reloaded.params["coefficients"] == descriptor.params["coefficients"]
        assert reloaded.mapping == descriptor.mapping


class TestModels:
    """Tests for the individual scoring models."""

    def test_registry(self):
        assert set(list_models()) >= {"autoencoder", "ridge", "pca"}

    def test_ridge(self, models_dir):
        model = load_model(models_dir / "Ridge.json")
        result = model.predict(ONES)

        assert result.raw_score == pytest.approx(1.6)
        assert result.health_score == pytest.approx(62.0)
        assert result.metadata["kind"] == "ridge"

    def test_pca(self, models_dir):
        result = load_model(models_dir / "PCA-4.json").predict(ONES)

        assert result.raw_score == pytest.approx(0.75)
        assert result.health_score == pytest.approx(65.0)

    def test_autoencoder(self, models_dir):
        result = load_model(models_dir / "AE-4D-normal.json").predict(ONES)

        assert result.raw_score == pytest.approx(1.0)
        assert result.health_score == pytest.approx(50.0)

    def test_autoencoder_torchscript(self, temp_dir, descriptor_dicts):
        import torch

        net = torch.nn.Sequential(torch.nn.Linear(16, 16))
        with torch.no_grad():
            net[0].weight.copy_(torch.eye(16))
            net[0].bias.zero_()
        torch.jit.script(net).save(str(temp_dir / "ae.pt"))

        data = dict(descriptor_dicts["ae"])
        del data["autoencoder"]
        data["model_path"] = "ae.pt"
        path = temp_dir / "AE.json"
        path.write_text(json.dumps(data))

        result = load_model(path).predict(ONES)

        assert result.raw_score == pytest.approx(0.0, abs=1e-10)
        assert result.health_score == 100.0

    def test_missing_weights_unavailable(self, temp_dir, descriptor_dicts):
        data = dict(descriptor_dicts["ae"])
        del data["autoencoder"]
        data["model_path"] = "missing.pt"
        path = temp_dir / "AE.json"
        path.write_text(json.dumps(data))

        assert load_model(path) is None

    def test_bad_ridge_coefficients(self, temp_dir, descriptor_dicts):
        data = dict(descriptor_dicts["ridge"])
        data["coefficients"] = [1.0, 2.0]
        path = temp_dir / "Ridge.json"
        path.write_text(json.dumps(data))

        assert load_model(path) is None

    def test_non_finite_raw_score(self, descriptor_dicts):
        class BrokenModel(ScoringModel):
            def load(self, checkpoint_path=None):
                self._is_loaded = True

            def raw_score(self, standardized):
                return float("nan")

        model = BrokenModel(parse_descriptor(descriptor_dicts["ridge"]))
        with pytest.raises(InferenceError):
            model.predict(ONES)

    def test_get_model_unknown_kind(self, descriptor_dicts):
        descriptor = parse_descriptor(descriptor_dicts["ridge"])
        descriptor.kind = "svm"
        with pytest.raises(ValueError):
            get_model(descriptor)


class TestGaitScorer:
    """Tests for the three-model scorer."""

    def test_all_models(self, models_dir):
        scorer = GaitScorer.from_directory(models_dir)
        result = scorer.score(ONES)

        assert scorer.available_models == ["ae", "ridge", "pca"]
        assert result.ae_score == pytest.approx(50.0)
        assert result.ridge_score == pytest.approx(62.0)
        assert result.pca_score == pytest.approx(65.0)
        assert result.score_for_storage() == pytest.approx(50.0)
        assert result.average_score() == pytest.approx((50.0 + 62.0 + 65.0) / 3)

    def test_from_config(self, models_dir):
        scorer = GaitScorer.from_directory(config=ScoringConfig(models_dir=models_dir))
        assert len(scorer.available_models) == 3

    def test_missing_model_independent(self, models_dir):
        (models_dir / "PCA-4.json").unlink()
        (models_dir / "Ridge.json").write_text("[]")

        result = GaitScorer.from_directory(models_dir).score(ONES)

        assert result.pca_score is None
        assert result.ridge_score is None
        assert result.ae_score == pytest.approx(50.0)
        assert result.available_models() == ["ae"]

    def test_no_models(self, temp_dir):
        result = GaitScorer.from_directory(temp_dir).score(ONES)

        assert result.to_dict() == {"ae": None, "ridge": None, "pca": None}
        assert result.score_for_storage() == 0.0
        assert result.average_score() is None

    def test_inference_failure_isolated(self, models_dir, descriptor_dicts):
        class BrokenModel(ScoringModel):
            def load(self, checkpoint_path=None):
                self._is_loaded = True

            def raw_score(self, standardized):
                return float("inf")

        scorer = GaitScorer.from_directory(models_dir)
        scorer.models["ridge"] = BrokenModel(parse_descriptor(descriptor_dicts["ridge"]))

        result = scorer.score(ONES)

        assert result.ridge_score is None
        assert result.ae_score is not None

    def test_empty_features(self, models_dir):
        scorer = GaitScorer.from_directory(models_dir)

        assert scorer.score(None) == ScoringResult()
        assert scorer.score(GaitFeatures.empty()) == ScoringResult()

    def test_gait_features_input(self, models_dir):
        features = GaitFeatures.from_array(ONES)
        result = GaitScorer.from_directory(models_dir).score(features)
        assert result.ridge_score == pytest.approx(62.0)

    def test_wrong_shape(self, models_dir):
        with pytest.raises(ValueError):
            GaitScorer.from_directory(models_dir).score(np.ones(5))

    def test_scores_in_range(self, models_dir):
        rng = np.random.default_rng(0)
        scorer = GaitScorer.from_directory(models_dir)
        for _ in range(20):
            result = scorer.score(rng.normal(scale=5.0, size=16))
            for value in result.to_dict().values():
                assert 0.0 <= value <= 100.0
