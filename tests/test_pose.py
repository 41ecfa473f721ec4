"""Tests for the pose data model and direction normalization."""

from __future__ import annotations

import json

import numpy as np
import pytest

from gait_vision.pipeline.extractors.pose import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_TO_RIGHT,
    MEDIAPIPE_POSE_LANDMARKS,
    MIRROR_INDEX,
    NUM_LANDMARKS,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_TO_LEFT,
    PoseFrame,
    PoseSequence,
    determine_walking_direction,
    load_pose_sequence,
    normalize_direction,
    save_pose_sequence,
)


class TestPoseFrame:
    """Tests for PoseFrame."""

    def test_arrays_are_read_only(self):
        """Test that frame arrays cannot be modified."""
        frame = PoseFrame(
            frame_idx=0,
            timestamp=0.0,
            keypoints=np.random.rand(NUM_LANDMARKS, 2),
            confidences=np.ones(NUM_LANDMARKS),
        )
        with pytest.raises(ValueError):
            frame.keypoints[0, 0] = 1.0
        assert frame.detection_confidence == 1.0

    def test_construction_copies_input(self):
        keypoints = np.zeros((NUM_LANDMARKS, 2))
        frame = PoseFrame(0, 0.0, keypoints, np.ones(NUM_LANDMARKS))
        keypoints[0, 0] = 0.7

        assert frame.keypoints[0, 0] == 0.0

    def test_wrong_shape(self):
        """Test that malformed arrays are rejected."""
        with pytest.raises(ValueError):
            PoseFrame(0, 0.0, np.zeros((33, 3)), np.ones(NUM_LANDMARKS))

    def test_mirror_index_swaps_sides(self):
        names = MEDIAPIPE_POSE_LANDMARKS
        assert names[MIRROR_INDEX[LEFT_HIP]] == "right_hip"
        assert names[MIRROR_INDEX[names.index("mouth_left")]] == "mouth_right"
        assert MIRROR_INDEX[0] == 0  # nose

    def test_mirrored(self):
        """Test horizontal mirroring swaps left and right."""
        keypoints = np.full((NUM_LANDMARKS, 2), 0.5)
        keypoints[LEFT_ANKLE] = (0.2, 0.9)
        keypoints[RIGHT_ANKLE] = (0.4, 0.8)
        confidences = np.ones(NUM_LANDMARKS)
        confidences[LEFT_ANKLE] = 0.3
        frame = PoseFrame(3, 0.1, keypoints, confidences)

        mirrored = frame.mirrored()

        np.testing.assert_allclose(mirrored.keypoints[RIGHT_ANKLE], (0.8, 0.9))
        np.testing.assert_allclose(mirrored.keypoints[LEFT_ANKLE], (0.6, 0.8))
        assert mirrored.confidences[RIGHT_ANKLE] == 0.3
        assert mirrored.frame_idx == 3
        np.testing.assert_allclose(mirrored.mirrored().keypoints, frame.keypoints)


class TestPoseSequence:
    """Tests for PoseSequence."""

    def test_empty_sequence(self):
        seq = PoseSequence(video_id="x", fps=30.0, frame_width=0, frame_height=0, num_frames_total=0)
        assert seq.duration == 0.0
        assert seq.detection_rate == 0.0
        assert seq.to_array().shape == (0, NUM_LANDMARKS, 3)

    def test_properties(self, walking_sequence):
        assert walking_sequence.detection_rate == 1.0
        assert walking_sequence.duration == pytest.approx(149 / 30)
        assert walking_sequence.to_array().shape == (150, NUM_LANDMARKS, 3)

    def test_json_round_trip(self, walking_sequence, temp_dir):
        """Test saving and loading a sequence."""
        path = save_pose_sequence(walking_sequence, temp_dir / "poses" / "walk.json")

        loaded = load_pose_sequence(path)

        assert loaded.video_id == "walk"
        assert loaded.num_frames_total == 150
        assert len(loaded.frames) == 150
        np.testing.assert_allclose(loaded.to_array(), walking_sequence.to_array())

    def test_load_missing(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_pose_sequence(temp_dir / "missing.json")

    def test_load_malformed(self, temp_dir):
        path = temp_dir / "bad.json"
        path.write_text(json.dumps({"video_id": "bad"}))

        with pytest.raises(ValueError):
            load_pose_sequence(path)


class TestWalkingDirection:
    """Tests for walking direction normalization."""

    def test_left_to_right(self, walking_sequence):
        assert determine_walking_direction(walking_sequence) == LEFT_TO_RIGHT

        normalized = normalize_direction(walking_sequence)
        assert normalized.was_flipped is False
        assert normalized.frames == walking_sequence.frames

    def test_right_to_left_is_mirrored(self, make_walk):
        seq = make_walk(mirrored=True)
        assert determine_walking_direction(seq) == RIGHT_TO_LEFT

        normalized = normalize_direction(seq)

        assert normalized.was_flipped is True
        assert normalized.walking_direction == RIGHT_TO_LEFT
        assert determine_walking_direction(normalized) == LEFT_TO_RIGHT
        np.testing.assert_allclose(normalized.to_array(), make_walk().to_array(), atol=1e-12)

    def test_too_few_confident_frames(self, make_walk):
        """Fewer than ten confident hip frames default to left to right."""
        seq = make_walk(mirrored=True, keep=lambda i: i < 9)
        assert determine_walking_direction(seq) == LEFT_TO_RIGHT

    def test_low_confidence_hips_ignored(self, walking_sequence):
        frames = []
        for f in walking_sequence.frames:
            conf = f.confidences.copy()
            conf[[LEFT_HIP, RIGHT_HIP]] = 0.1
            frames.append(PoseFrame(f.frame_idx, f.timestamp, f.keypoints, conf))

        seq = walking_sequence.with_frames(frames)

        assert determine_walking_direction(seq) == LEFT_TO_RIGHT
        assert normalize_direction(seq).was_flipped is False
