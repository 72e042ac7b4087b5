"""
Detected faces as handed over by the vision collaborator.

Provides:
- Best-face selection (confidence gate, then largest box)
- Head pose estimation from landmarks, used only during enrollment
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..models import Embedding, as_embedding

POSE_FRONT = 'front'
POSE_LEFT = 'left'
POSE_RIGHT = 'right'
POSE_UP = 'up'
POSE_DOWN = 'down'


@dataclass
class Detection:
    """
    One detected face.

    Attributes:
        bbox: Bounding box [x1, y1, x2, y2]
        score: Detection confidence in [0, 1]
        embedding: Face embedding
        landmarks: (N, 2) landmark positions, 68-point or 5-point layout
    """

    bbox: np.ndarray
    score: float
    embedding: Embedding
    landmarks: Optional[np.ndarray] = None

    def __post_init__(self):
        self.bbox = np.asarray(self.bbox, dtype=np.float32).reshape(4)
        self.embedding = as_embedding(self.embedding)
        if self.landmarks is not None:
            self.landmarks = np.asarray(self.landmarks, dtype=np.float32).reshape(-1, 2)

    @property
    def area(self) -> float:
        x1, y1, x2, y2 = self.bbox
        return float(max(0.0, x2 - x1) * max(0.0, y2 - y1))


def best_face(detections: Sequence[Detection], min_score: float = 0.6) -> Optional[Detection]:
    """
    Pick the face to act on.

    Detections at or below ``min_score`` are dropped; of the rest the
    largest box (closest to the camera) wins.
    """
    valid = [d for d in detections if d.score > min_score]
    if not valid:
        return None
    return max(valid, key=lambda d: d.area)


@dataclass(frozen=True)
class HeadPose:
    """
    Bucketed head pose.

    yaw: 0 = centered, -30 = turned right, +30 = turned left
    pitch: 0 = level, -30 = looking up, +30 = looking down
    """

    yaw_ratio: float
    pitch_ratio: float
    yaw: int
    pitch: int


def _bucket(ratio: float, low: float, high: float) -> int:
    if ratio < low:
        return -30
    if ratio > high:
        return 30
    return 0


def estimate_head_pose(landmarks: np.ndarray) -> HeadPose:
    """
    Approximate head pose from 2-D landmarks.

    Supports the 68-point layout (jaw 0-16, nose 27-35, eyes 36-47) and
    the 5-point layout (eyes, nose, mouth corners).

    Raises:
        ValueError: For any other landmark layout
    """
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)

    if len(points) == 68:
        nose_tip = points[30]
        left_eye = points[36]
        right_eye = points[45]
        left_jaw, right_jaw, chin = points[0], points[16], points[8]

        yaw_ratio = (nose_tip[0] - left_jaw[0]) / (right_jaw[0] - left_jaw[0])
        eye_mid_y = (left_eye[1] + right_eye[1]) / 2
        pitch_ratio = (nose_tip[1] - eye_mid_y) / (chin[1] - eye_mid_y)

        return HeadPose(
            yaw_ratio=round(float(yaw_ratio), 2),
            pitch_ratio=round(float(pitch_ratio), 2),
            yaw=_bucket(yaw_ratio, 0.45, 0.55),
            pitch=_bucket(pitch_ratio, 0.35, 0.5),
        )

    if len(points) == 5:
        left_eye, right_eye, nose_tip, mouth_left, mouth_right = points

        yaw_ratio = (nose_tip[0] - left_eye[0]) / (right_eye[0] - left_eye[0])
        eye_mid_y = (left_eye[1] + right_eye[1]) / 2
        mouth_mid_y = (mouth_left[1] + mouth_right[1]) / 2
        pitch_ratio = (nose_tip[1] - eye_mid_y) / (mouth_mid_y - eye_mid_y)

        return HeadPose(
            yaw_ratio=round(float(yaw_ratio), 2),
            pitch_ratio=round(float(pitch_ratio), 2),
            yaw=_bucket(yaw_ratio, 0.35, 0.65),
            pitch=_bucket(pitch_ratio, 0.4, 0.7),
        )

    raise ValueError(f'unsupported landmark layout with {len(points)} points')


def classify_pose(pose: HeadPose) -> str:
    """Name of the pose bucket; yaw takes precedence over pitch."""
    if pose.yaw < 0:
        return POSE_RIGHT
    if pose.yaw > 0:
        return POSE_LEFT
    if pose.pitch < 0:
        return POSE_UP
    if pose.pitch > 0:
        return POSE_DOWN
    return POSE_FRONT
