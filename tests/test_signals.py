"""Tests for gait signal conditioning."""

from __future__ import annotations

import numpy as np
import pytest

from gait_vision.core.config import ExtractionConfig
from gait_vision.pipeline.extractors.pose import LEFT_ANKLE, PoseFrame
from gait_vision.pipeline.signals import (
    Signals,
    build_raw_signals,
    build_signals,
    centered_velocity,
    ema_smooth_gap_aware,
    interpolate_gaps,
    joint_angle,
    nan_runs,
    sample_std,
    trunk_lean,
)

nan = np.nan


class TestGeometry:
    """Tests for joint angle helpers."""

    def test_straight_leg(self):
        angle = joint_angle(np.array([0.5, 0.5]), np.array([0.5, 0.7]), np.array([0.5, 0.9]))
        assert angle == pytest.approx(180.0)

    def test_right_angle(self):
        angle = joint_angle(np.array([0.0, 0.0]), np.array([0.0, 1.0]), np.array([1.0, 1.0]))
        assert angle == pytest.approx(90.0)

    def test_trunk_lean_sign(self):
        hip = np.array([0.5, 0.5])
        assert trunk_lean(np.array([0.5, 0.2]), hip) == pytest.approx(0.0)
        assert trunk_lean(np.array([0.6, 0.4]), hip) == pytest.approx(45.0)
        assert trunk_lean(np.array([0.4, 0.4]), hip) == pytest.approx(-45.0)

    def test_sample_std(self):
        assert sample_std([1.0]) == 0.0
        assert sample_std([1.0, 3.0]) == pytest.approx(np.sqrt(2.0))


class TestInterpolation:
    """Tests for gap interpolation."""

    def test_short_gap_filled(self):
        out = interpolate_gaps(np.array([0.0, nan, nan, 3.0]), max_gap=5)
        np.testing.assert_allclose(out, [0.0, 1.0, 2.0, 3.0])

    def test_long_gap_kept(self):
        arr = np.array([0.0] + [nan] * 6 + [7.0])
        out = interpolate_gaps(arr, max_gap=5)
        assert np.isnan(out[1:7]).all()

    def test_edges_kept(self):
        out = interpolate_gaps(np.array([nan, 1.0, nan, 3.0, nan]), max_gap=5)
        assert np.isnan(out[0]) and np.isnan(out[-1])
        assert out[2] == pytest.approx(2.0)

    def test_input_not_modified(self):
        arr = np.array([0.0, nan, 2.0])
        interpolate_gaps(arr, 5)
        assert np.isnan(arr[1])

    def test_nan_runs(self):
        mask = np.array([True, False, True, True, False])
        assert nan_runs(mask) == [(0, 1), (2, 4)]


class TestEMA:
    """Tests for the gap-aware EMA."""

    def test_basic_smoothing(self):
        out = ema_smooth_gap_aware(np.array([0.0, 1.0, 1.0]), alpha=0.5, max_bridge_gap=5)
        np.testing.assert_allclose(out, [0.0, 0.5, 0.75])

    def test_nan_stays_nan(self):
        out = ema_smooth_gap_aware(np.array([nan, 1.0, nan, 1.0]), alpha=0.5, max_bridge_gap=5)
        assert np.isnan(out[0]) and np.isnan(out[2])
        assert out[1] == 1.0

    def test_state_held_across_short_gap(self):
        arr = np.array([0.0, nan, nan, 1.0])
        out = ema_smooth_gap_aware(arr, alpha=0.5, max_bridge_gap=2)
        assert out[3] == pytest.approx(0.5)

    def test_state_reset_after_long_gap(self):
        arr = np.array([0.0, nan, nan, nan, 1.0])
        out = ema_smooth_gap_aware(arr, alpha=0.5, max_bridge_gap=2)
        assert out[4] == pytest.approx(1.0)


class TestVelocity:
    """Tests for centered finite differences."""

    def test_centered(self):
        vel = centered_velocity(np.array([0.0, 1.0, 2.0, 3.0]), fps=10.0)
        assert np.isnan(vel[0]) and np.isnan(vel[-1])
        np.testing.assert_allclose(vel[1:-1], [10.0, 10.0])

    def test_short_input(self):
        assert np.isnan(centered_velocity(np.array([1.0, 2.0]), 30.0)).all()


class TestBuildSignals:
    """Tests for signal building from pose sequences."""

    def test_lengths_and_validity(self, walking_sequence):
        signals = build_signals(walking_sequence)

        assert signals.n_frames == 150
        assert signals.valid_frame_count == 150
        assert np.isfinite(signals.inter_ankle_dist).all()
        np.testing.assert_allclose(signals.timestamps[:3], [0.0, 1 / 30, 2 / 30])

    def test_raw_inter_ankle_and_knee(self, walking_sequence):
        raw = build_raw_signals(walking_sequence)

        assert raw.inter_ankle_dist[10] == pytest.approx(0.15)
        assert raw.knee_angle_left[0] == pytest.approx(175.0, abs=1e-4)
        assert raw.knee_angle_right[0] == pytest.approx(174.0, abs=1e-4)
        assert raw.trunk_angle[0] == pytest.approx(0.0)

    def test_low_confidence_frame_invalid(self, walking_sequence):
        frames = list(walking_sequence.frames)
        target = frames[50]
        conf = target.confidences.copy()
        conf[LEFT_ANKLE] = 0.1
        frames[50] = PoseFrame(target.frame_idx, target.timestamp, target.keypoints, conf)
        seq = walking_sequence.with_frames(frames)

        raw = build_raw_signals(seq)
        signals = build_signals(seq)

        assert not raw.is_valid[50]
        assert np.isnan(raw.inter_ankle_dist[50])
        # Single-frame gap is bridged
        assert np.isfinite(signals.inter_ankle_dist[50])
        assert not signals.is_valid[50]

    def test_long_gap_stays_missing(self, make_walk):
        seq = make_walk(keep=lambda i: not 40 <= i < 50)
        signals = build_signals(seq)

        assert np.isnan(signals.inter_ankle_dist[40:50]).all()
        assert signals.valid_frame_count == 140
        assert np.isfinite(signals.inter_ankle_dist[50])

    def test_empty_and_copy(self):
        signals = Signals.empty(4)
        copy = signals.copy()
        copy.inter_ankle_dist[0] = 1.0

        assert np.isnan(signals.inter_ankle_dist[0])
        assert signals.valid_frame_count == 0

    def test_config_threshold(self, walking_sequence):
        signals = build_signals(walking_sequence, ExtractionConfig(min_confidence=0.95))
        assert signals.valid_frame_count == 0
