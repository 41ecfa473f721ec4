"""Pytest fixtures for gait-vision tests."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import numpy as np
import pytest

from gait_vision.core.config import ScoringConfig, Settings
from gait_vision.pipeline.extractors.pose import (
    LEFT_ANKLE,
    LEFT_HIP,
    LEFT_KNEE,
    LEFT_SHOULDER,
    NUM_LANDMARKS,
    RIGHT_ANKLE,
    RIGHT_HIP,
    RIGHT_KNEE,
    RIGHT_SHOULDER,
    Detection,
    PoseFrame,
    PoseSequence,
)

WALK_FPS = 30.0
WALK_FRAMES = 150
STEP_PERIOD = 27  # frames between inter-ankle peaks
FIRST_PEAK = 10


def _knee_position(hip: np.ndarray, ankle: np.ndarray, angle_deg: float) -> np.ndarray:
    """Knee point that makes the hip-knee-ankle angle equal angle_deg."""
    mid = (hip + ankle) / 2
    chord = ankle - hip
    length = np.linalg.norm(chord)
    normal = np.array([chord[1], -chord[0]]) / length
    offset = (length / 2) / np.tan(np.radians(angle_deg) / 2)
    return mid + normal * offset


def walking_keypoints(
    i: int,
    n_frames: int = WALK_FRAMES,
    period: int = STEP_PERIOD,
    amplitude: float = 0.05,
    knee_ramp: float = 0.2,
) -> np.ndarray:
    """Keypoints of a subject walking left to right at frame i."""
    hc = 0.3 + 0.4 * i / (n_frames - 1)
    d = 0.1 + amplitude * np.cos(2 * np.pi * (i - FIRST_PEAK) / period)

    kp = np.full((NUM_LANDMARKS, 2), 0.5)
    kp[LEFT_SHOULDER] = (hc - 0.05, 0.2)
    kp[RIGHT_SHOULDER] = (hc + 0.05, 0.2)
    kp[LEFT_HIP] = (hc - 0.05, 0.5)
    kp[RIGHT_HIP] = (hc + 0.05, 0.5)
    kp[LEFT_ANKLE] = (hc - d / 2, 0.9)
    kp[RIGHT_ANKLE] = (hc + d / 2, 0.9)

    left_angle = 175.0 - knee_ramp * i
    kp[LEFT_KNEE] = _knee_position(kp[LEFT_HIP], kp[LEFT_ANKLE], left_angle)
    kp[RIGHT_KNEE] = _knee_position(kp[RIGHT_HIP], kp[RIGHT_ANKLE], left_angle - 1.0)
    return kp


def build_walking_sequence(
    n_frames: int = WALK_FRAMES,
    fps: float = WALK_FPS,
    video_id: str = "walk",
    amplitude: float = 0.05,
    knee_ramp: float = 0.2,
    keep=None,
    mirrored: bool = False,
) -> PoseSequence:
    """
    Synthetic walking sequence.

    Args:
        keep: Optional predicate on the frame index; frames failing it are dropped
        mirrored: Mirror every frame (subject walks right to left)
    """
    frames = []
    for i in range(n_frames):
        if keep is not None and not keep(i):
            continue
        frame = PoseFrame(
            frame_idx=i,
            timestamp=i / fps,
            keypoints=walking_keypoints(i, n_frames, amplitude=amplitude, knee_ramp=knee_ramp),
            confidences=np.full(NUM_LANDMARKS, 0.9),
        )
        frames.append(frame.mirrored() if mirrored else frame)
    return PoseSequence(
        video_id=video_id,
        fps=fps,
        frame_width=640,
        frame_height=480,
        num_frames_total=n_frames,
        frames=tuple(frames),
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path, monkeypatch) -> Settings:
    """Settings with models pointed at an empty temporary directory."""
    monkeypatch.delenv("GAIT_VISION_MODELS_DIR", raising=False)
    monkeypatch.delenv("GAIT_VISION_LOG_LEVEL", raising=False)
    return Settings(scoring=ScoringConfig(models_dir=temp_dir / "models"))


@pytest.fixture
def make_walk():
    """Factory for synthetic walking sequences."""
    return build_walking_sequence


@pytest.fixture
def walking_sequence() -> PoseSequence:
    """150 frames of steady walking at 30 fps, left to right."""
    return build_walking_sequence()


@pytest.fixture
def still_sequence() -> PoseSequence:
    """Subject standing still: no periodic motion."""
    return build_walking_sequence(video_id="still", amplitude=0.0, knee_ramp=0.0)


@pytest.fixture
def short_sequence() -> PoseSequence:
    """Too few frames to process."""
    return build_walking_sequence(n_frames=10, video_id="short")


class FakePoseSource:
    """Pose source replaying synthetic walking keypoints in call order."""

    def __init__(self, n_frames: int = WALK_FRAMES, detect_every: int = 1, on_detect=None):
        self.n_frames = n_frames
        self.detect_every = detect_every
        self.on_detect = on_detect
        self.calls = 0
        self.closed = False

    def detect(self, image_rgb: np.ndarray, timestamp_ms: int) -> Detection | None:
        idx = self.calls
        self.calls += 1
        if self.on_detect is not None:
            self.on_detect(idx)
        if self.detect_every <= 0 or idx % self.detect_every:
            return None
        return Detection(
            keypoints=walking_keypoints(idx, self.n_frames),
            confidences=np.full(NUM_LANDMARKS, 0.9),
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_source_factory():
    """Factory producing FakePoseSource instances and remembering them."""

    class Factory:
        def __init__(self):
            self.sources: list[FakePoseSource] = []
            self.kwargs: dict = {}

        def __call__(self) -> FakePoseSource:
            source = FakePoseSource(**self.kwargs)
            self.sources.append(source)
            return source

    return Factory()


@pytest.fixture
def blank_frames():
    """Factory of re-iterable blank BGR frames."""

    def factory(n_frames: int = WALK_FRAMES, width: int = 64, height: int = 48):
        return lambda: (np.zeros((height, width, 3), dtype=np.uint8) for _ in range(n_frames))

    return factory


# =============================================================================
# Model descriptors
# =============================================================================

N_FEATURES = 16

IDENTITY_SCALER = {"mean": [0.0] * N_FEATURES, "scale": [1.0] * N_FEATURES}


def ridge_descriptor() -> dict:
    return {
        "model_name": "Ridge",
        "kind": "ridge",
        "scaler": IDENTITY_SCALER,
        "coefficients": [0.1] * N_FEATURES,
        "intercept": 0.0,
        "clinical_mapping": {
            "lower_is_better": True,
            "breakpoints": [1.0, 2.0, 4.0],
            "health_anchors": [100, 80, 50, 20],
        },
    }


def pca_descriptor() -> dict:
    components = np.eye(N_FEATURES)[:4].tolist()
    return {
        "model_name": "PCA-4",
        "kind": "pca",
        "scaler": IDENTITY_SCALER,
        "pca": {"components": components, "mean": [0.0] * N_FEATURES},
        "clinical_mapping": {
            "lower_is_better": True,
            "breakpoints": [0.5, 1.0, 2.0],
            "health_anchors": [100, 80, 50, 20],
        },
    }


def ae_descriptor() -> dict:
    """Autoencoder that reconstructs everything as zero."""
    return {
        "model_name": "AE-4D-normal",
        "scaler": IDENTITY_SCALER,
        "autoencoder": {
            "layers": [
                {
                    "weight": [[0.0] * N_FEATURES for _ in range(N_FEATURES)],
                    "bias": [0.0] * N_FEATURES,
                    "activation": "linear",
                }
            ]
        },
        "clinical_mapping": {
            "lower_is_better": True,
            "breakpoints": [0.5, 1.0, 2.0],
            "health_anchors": [100, 80, 50, 20],
        },
    }


@pytest.fixture
def descriptor_dicts() -> dict[str, dict]:
    return {"ae": ae_descriptor(), "ridge": ridge_descriptor(), "pca": pca_descriptor()}


@pytest.fixture
def models_dir(temp_dir: Path, descriptor_dicts) -> Path:
    """Directory holding the three descriptors under their default names."""
    directory = temp_dir / "models"
    directory.mkdir()
    names = ScoringConfig()
    for slot, filename in (
        ("ae", names.ae_descriptor),
        ("ridge", names.ridge_descriptor),
        ("pca", names.pca_descriptor),
    ):
        (directory / filename).write_text(json.dumps(descriptor_dicts[slot]))
    return directory
