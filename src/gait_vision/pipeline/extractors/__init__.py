"""Pose extraction and pose data model."""

from .pose import (
    GAIT_JOINTS,
    MEDIAPIPE_AVAILABLE,
    MEDIAPIPE_POSE_LANDMARKS,
    Detection,
    MediaPipePoseSource,
    PoseFrame,
    PoseSequence,
    PoseSource,
    VideoInfo,
    determine_walking_direction,
    iter_video_frames,
    load_pose_sequence,
    normalize_direction,
    probe_video,
    save_pose_sequence,
)

__all__ = [
    "GAIT_JOINTS",
    "MEDIAPIPE_AVAILABLE",
    "MEDIAPIPE_POSE_LANDMARKS",
    "Detection",
    "MediaPipePoseSource",
    "PoseFrame",
    "PoseSequence",
    "PoseSource",
    "VideoInfo",
    "determine_walking_direction",
    "iter_video_frames",
    "load_pose_sequence",
    "normalize_direction",
    "probe_video",
    "save_pose_sequence",
]
