"""Tests for feature computation and end-to-end extraction."""

from __future__ import annotations

import numpy as np
import pytest

from gait_vision.core.config import ExtractionConfig
from gait_vision.pipeline import (
    FEATURE_COLUMNS,
    FeatureExtractor,
    GaitFeatures,
    QualityFlag,
    extract_features,
)
from gait_vision.pipeline.cycles import BEST_CONSECUTIVE_PAIR
from gait_vision.pipeline.extractors.pose import normalize_direction
from gait_vision.pipeline.features import asymmetry_index, body_width, rms_jerk


class TestFeatureHelpers:
    """Tests for feature helper functions."""

    def test_asymmetry_index(self):
        assert asymmetry_index(3.0, 1.0) == pytest.approx(0.5)
        assert asymmetry_index(0.0, 0.0) == 0.0

    def test_rms_jerk(self):
        assert np.isnan(rms_jerk(np.array([1.0, 2.0]), 30.0))
        assert rms_jerk(np.arange(10, dtype=float), 30.0) == pytest.approx(0.0)
        assert rms_jerk(np.array([0.0, 1.0, 0.0]), 1.0) == pytest.approx(2.0)

    def test_body_width(self, walking_sequence, make_walk):
        assert body_width(walking_sequence) == pytest.approx(0.1)
        assert body_width(make_walk(keep=lambda i: False)) == 0.1

    def test_empty_features(self):
        features = GaitFeatures.empty()
        assert features.is_empty
        assert np.isnan(features.to_array()).all()
        assert list(features.to_dict()) == list(FEATURE_COLUMNS)

    def test_from_array(self):
        features = GaitFeatures.from_array(np.arange(16, dtype=float))
        assert features.knee_left_rom == 7.0
        assert features.valid_stride_count == 2
        with pytest.raises(ValueError):
            GaitFeatures.from_array(np.zeros(15))


class TestFeatureExtractor:
    """End-to-end extraction on synthetic walking."""

    def test_walking_is_ok(self, walking_sequence):
        result = FeatureExtractor().extract(walking_sequence)

        assert result.quality_flag == QualityFlag.OK
        assert result.ok
        features = result.features
        assert features.valid_stride_count == 2
        assert features.cadence_spm == pytest.approx(66.67, abs=2.0)
        assert features.stride_time_s == pytest.approx(1.8, abs=0.07)
        assert abs(features.step_time_asymmetry) < 0.05
        assert features.knee_left_rom > 3.6
        assert features.trunk_lean_std_deg == pytest.approx(0.0, abs=1e-6)
        assert np.isfinite(features.to_array()).all()

    def test_walking_diagnostics(self, walking_sequence):
        diag = FeatureExtractor().extract(walking_sequence).diagnostics

        assert diag.video_id == "walk"
        assert diag.step_signal_mode == "inter_ankle"
        assert diag.selection_reason == BEST_CONSECUTIVE_PAIR
        assert len(diag.selected_indices) == 2
        assert diag.num_strides_valid >= 2
        assert diag.num_steps_detected >= 5
        assert diag.valid_frame_rate == 1.0
        assert diag.rejection_reasons == []
        assert set(diag.candidate_scores) == {"inter_ankle", "max_ankle_vy", "min_knee_angle"}

    def test_deterministic(self, walking_sequence):
        first = extract_features(walking_sequence).features.to_array()
        second = extract_features(walking_sequence).features.to_array()
        assert np.array_equal(first, second, equal_nan=True)

    def test_input_not_modified(self, walking_sequence):
        before = walking_sequence.to_array().copy()
        FeatureExtractor().extract(walking_sequence)
        np.testing.assert_array_equal(walking_sequence.to_array(), before)

    def test_too_few_frames(self, short_sequence):
        result = FeatureExtractor().extract(short_sequence)

        assert result.quality_flag == QualityFlag.UNPROCESSABLE
        assert result.features is None
        assert result.diagnostics.reason == "too_few_frames"

    def test_low_detection(self, make_walk):
        seq = make_walk(keep=lambda i: i % 5 == 0)
        result = FeatureExtractor().extract(seq)

        assert result.quality_flag == QualityFlag.LOW_DETECTION
        assert result.features is None
        assert result.diagnostics.reason.startswith("detection_rate_")

    def test_still_subject(self, still_sequence):
        result = FeatureExtractor().extract(still_sequence)

        assert result.quality_flag == QualityFlag.NO_CYCLES
        assert result.features is None
        assert result.num_valid_strides < 2

    def test_required_steps(self, walking_sequence):
        result = FeatureExtractor(ExtractionConfig(min_steps=12)).extract(walking_sequence)

        assert result.quality_flag == QualityFlag.NO_CYCLES
        assert result.diagnostics.reason.startswith("only_")
        assert result.signals is not None

    def test_right_to_left_matches_left_to_right(self, make_walk):
        ltr = FeatureExtractor().extract(normalize_direction(make_walk()))
        rtl_seq = normalize_direction(make_walk(mirrored=True))
        rtl = FeatureExtractor().extract(rtl_seq)

        assert rtl.ok
        assert rtl.diagnostics.was_flipped is True
        assert rtl.diagnostics.walking_direction == "right_to_left"
        np.testing.assert_allclose(rtl.features.to_array(), ltr.features.to_array(), rtol=1e-6, atol=1e-9)

    def test_short_gaps_tolerated(self, make_walk):
        seq = make_walk(keep=lambda i: i % 17 != 5)
        result = FeatureExtractor().extract(seq)

        assert result.ok
        assert result.features.cadence_spm == pytest.approx(66.67, abs=2.0)
