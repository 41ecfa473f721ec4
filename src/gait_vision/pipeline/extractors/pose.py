"""
Pose Data Model and Pose Sources
================================

Immutable pose frames and sequences in normalized image coordinates,
walking-direction normalization, JSON persistence, and the MediaPipe-backed
pose source used by the video pipeline.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterator, Protocol

import cv2
import numpy as np

# Optional MediaPipe
try:
    import mediapipe as mp
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False
    mp = None

logger = logging.getLogger(__name__)


# MediaPipe pose landmark indices
MEDIAPIPE_POSE_LANDMARKS = [
    "nose", "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer",
    "left_ear", "right_ear", "mouth_left", "mouth_right",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_pinky", "right_pinky",
    "left_index", "right_index", "left_thumb", "right_thumb",
    "left_hip", "right_hip", "left_knee", "right_knee",
    "left_ankle", "right_ankle", "left_heel", "right_heel",
    "left_foot_index", "right_foot_index",
]

NUM_LANDMARKS = len(MEDIAPIPE_POSE_LANDMARKS)

# Key joint indices for gait analysis
GAIT_JOINTS = {
    "left_hip": 23, "right_hip": 24,
    "left_knee": 25, "right_knee": 26,
    "left_ankle": 27, "right_ankle": 28,
    "left_shoulder": 11, "right_shoulder": 12,
}

LEFT_SHOULDER = GAIT_JOINTS["left_shoulder"]
RIGHT_SHOULDER = GAIT_JOINTS["right_shoulder"]
LEFT_HIP = GAIT_JOINTS["left_hip"]
RIGHT_HIP = GAIT_JOINTS["right_hip"]
LEFT_KNEE = GAIT_JOINTS["left_knee"]
RIGHT_KNEE = GAIT_JOINTS["right_knee"]
LEFT_ANKLE = GAIT_JOINTS["left_ankle"]
RIGHT_ANKLE = GAIT_JOINTS["right_ankle"]

# Landmarks that must be confident for a frame to count as valid
CORE_LEG_JOINTS = (LEFT_HIP, RIGHT_HIP, LEFT_KNEE, RIGHT_KNEE, LEFT_ANKLE, RIGHT_ANKLE)

LEFT_TO_RIGHT = "left_to_right"
RIGHT_TO_LEFT = "right_to_left"


def _mirror_index() -> np.ndarray:
    """Index permutation that swaps every left landmark with its right twin."""
    lookup = {name: i for i, name in enumerate(MEDIAPIPE_POSE_LANDMARKS)}
    swap = {"left": "right", "right": "left"}
    index = np.arange(NUM_LANDMARKS)
    for i, name in enumerate(MEDIAPIPE_POSE_LANDMARKS):
        twin = "_".join(swap.get(part, part) for part in name.split("_"))
        index[i] = lookup[twin]
    return index


MIRROR_INDEX = _mirror_index()


def _frozen_array(values, shape: tuple[int, ...]) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    if arr.shape != shape:
        raise ValueError(f"Expected array of shape {shape}, got {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class PoseFrame:
    """Single frame pose data in normalized [0, 1] image coordinates."""

    frame_idx: int
    timestamp: float  # seconds
    keypoints: np.ndarray  # (33, 2) - x, y
    confidences: np.ndarray  # (33,)
    detection_confidence: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "keypoints", _frozen_array(self.keypoints, (NUM_LANDMARKS, 2)))
        object.__setattr__(self, "confidences", _frozen_array(self.confidences, (NUM_LANDMARKS,)))

    def mirrored(self) -> PoseFrame:
        """Return the horizontally mirrored frame with left/right swapped."""
        keypoints = self.keypoints[MIRROR_INDEX].copy()
        keypoints[:, 0] = 1.0 - keypoints[:, 0]
        return replace(
            self,
            keypoints=keypoints,
            confidences=self.confidences[MIRROR_INDEX],
        )

    def to_dict(self) -> dict:
        return {
            "frame_idx": self.frame_idx,
            "timestamp": self.timestamp,
            "keypoints": self.keypoints.tolist(),
            "confidences": self.confidences.tolist(),
            "detection_confidence": self.detection_confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PoseFrame:
        return cls(
            frame_idx=int(data["frame_idx"]),
            timestamp=float(data["timestamp"]),
            keypoints=data["keypoints"],
            confidences=data["confidences"],
            detection_confidence=float(data.get("detection_confidence", 1.0)),
        )


@dataclass(frozen=True, eq=False)
class PoseSequence:
    """Sequence of poses from a video."""

    video_id: str
    fps: float
    frame_width: int
    frame_height: int
    num_frames_total: int
    frames: tuple[PoseFrame, ...] = field(default_factory=tuple)
    walking_direction: str = LEFT_TO_RIGHT
    was_flipped: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "frames", tuple(self.frames))

    @property
    def duration(self) -> float:
        return self.frames[-1].timestamp if self.frames else 0.0

    @property
    def detection_rate(self) -> float:
        """Fraction of decoded frames with a detected pose."""
        if self.num_frames_total <= 0:
            return 0.0
        return len(self.frames) / self.num_frames_total

    def with_frames(self, frames) -> PoseSequence:
        return replace(self, frames=tuple(frames))

    def to_array(self) -> np.ndarray:
        """Convert to numpy array (T, N, 3) of x, y, confidence."""
        if not self.frames:
            return np.zeros((0, NUM_LANDMARKS, 3))
        return np.stack(
            [np.column_stack([f.keypoints, f.confidences]) for f in self.frames]
        )

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "fps": self.fps,
            "frame_width": self.frame_width,
            "frame_height": self.frame_height,
            "num_frames_total": self.num_frames_total,
            "walking_direction": self.walking_direction,
            "was_flipped": self.was_flipped,
            "frames": [f.to_dict() for f in self.frames],
        }

    @classmethod
    def from_dict(cls, data: dict) -> PoseSequence:
        return cls(
            video_id=str(data.get("video_id", "")),
            fps=float(data["fps"]),
            frame_width=int(data.get("frame_width", 0)),
            frame_height=int(data.get("frame_height", 0)),
            num_frames_total=int(data["num_frames_total"]),
            frames=tuple(PoseFrame.from_dict(f) for f in data.get("frames", [])),
            walking_direction=data.get("walking_direction", LEFT_TO_RIGHT),
            was_flipped=bool(data.get("was_flipped", False)),
        )


def save_pose_sequence(seq: PoseSequence, path: str | Path) -> Path:
    """Write a pose sequence to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(seq.to_dict(), f)
    return path


def load_pose_sequence(path: str | Path) -> PoseSequence:
    """Read a pose sequence written by save_pose_sequence."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pose file not found: {path}")
    with open(path) as f:
        data = json.load(f)
    try:
        return PoseSequence.from_dict(data)
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed pose file {path}: {e}") from e


# =============================================================================
# Walking direction
# =============================================================================


def determine_walking_direction(seq: PoseSequence, min_confidence: float = 0.32) -> str:
    """
    Classify walking direction from the mid-hip horizontal trajectory.

    Compares the mean mid-hip x of the last quarter of confident frames
    against the first quarter.
    """
    hip_x = [
        (f.keypoints[LEFT_HIP, 0] + f.keypoints[RIGHT_HIP, 0]) / 2
        for f in seq.frames
        if f.confidences[LEFT_HIP] > min_confidence and f.confidences[RIGHT_HIP] > min_confidence
    ]
    if len(hip_x) < 10:
        return LEFT_TO_RIGHT

    quarter = len(hip_x) // 4
    start = float(np.mean(hip_x[:quarter]))
    end = float(np.mean(hip_x[-quarter:]))
    return LEFT_TO_RIGHT if end > start else RIGHT_TO_LEFT


def normalize_direction(seq: PoseSequence, min_confidence: float = 0.32) -> PoseSequence:
    """Return a sequence in which the subject walks left to right."""
    direction = determine_walking_direction(seq, min_confidence)
    if direction == LEFT_TO_RIGHT:
        return replace(seq, walking_direction=LEFT_TO_RIGHT, was_flipped=False)

    logger.debug("Mirroring %s (walking right to left)", seq.video_id)
    return replace(
        seq,
        frames=tuple(f.mirrored() for f in seq.frames),
        walking_direction=RIGHT_TO_LEFT,
        was_flipped=True,
    )


# =============================================================================
# Pose sources
# =============================================================================


@dataclass(frozen=True, eq=False)
class Detection:
    """Pose detector output for one image, normalized to that image."""

    keypoints: np.ndarray  # (33, 2)
    confidences: np.ndarray  # (33,)
    detection_confidence: float = 1.0


class PoseSource(Protocol):
    """Anything that turns an RGB image into a single-person pose."""

    def detect(self, image_rgb: np.ndarray, timestamp_ms: int) -> Detection | None:
        ...

    def close(self) -> None:
        ...


class MediaPipePoseSource:
    """Pose source backed by mediapipe.solutions.pose."""

    def __init__(
        self,
        min_detection_confidence: float = 0.40,
        min_tracking_confidence: float = 0.61,
        model_complexity: int = 2,
    ):
        if not MEDIAPIPE_AVAILABLE:
            raise ImportError(
                "mediapipe is not installed. Install it with: pip install 'gait-vision[pose]'"
            )
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.model_complexity = model_complexity
        self._pose = None

    @property
    def pose_model(self):
        """Lazy-load pose model."""
        if self._pose is None:
            self._pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=self.model_complexity,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        return self._pose

    def detect(self, image_rgb: np.ndarray, timestamp_ms: int) -> Detection | None:
        results = self.pose_model.process(image_rgb)
        if results.pose_landmarks is None:
            return None

        landmarks = results.pose_landmarks.landmark
        keypoints = np.array([[lm.x, lm.y] for lm in landmarks])
        confidences = np.array([lm.visibility for lm in landmarks])
        return Detection(keypoints=keypoints, confidences=confidences)

    def close(self):
        """Release resources."""
        if self._pose is not None:
            self._pose.close()
            self._pose = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


@dataclass
class VideoInfo:
    """Basic properties of a decoded video."""

    fps: float
    width: int
    height: int
    frame_count: int


def probe_video(video_path: str | Path, default_fps: float = 30.0) -> VideoInfo:
    """Read frame rate and dimensions without decoding frames."""
    video_path = Path(video_path)
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise ValueError(f"Could not open video: {video_path}")

    try:
        fps = cap.get(cv2.CAP_PROP_FPS)
        if not fps or fps <= 0 or not np.isfinite(fps):
            logger.warning("FPS detection failed for %s, using %.1f", video_path.name, default_fps)
            fps = default_fps
        return VideoInfo(
            fps=float(fps),
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )
    finally:
        cap.release()


def iter_video_frames(video_path: str | Path) -> Iterator[np.ndarray]:
    """Yield BGR frames in decode order."""
    video_path = Path(video_path)
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise ValueError(f"Could not open video: {video_path}")

    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break
            yield frame
    finally:
        cap.release()
