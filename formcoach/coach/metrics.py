"""Per-frame body metrics in canvas pixel space."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np

from formcoach.core.config import CoachConfig
from formcoach.vision.keypoints import FrameGeometry, Keypoint, index_keypoints

Point = Tuple[float, float]

LOWER_BODY = (
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)
SHOULDERS = ("left_shoulder", "right_shoulder")


@dataclass(frozen=True)
class Incomplete:
    """The frame did not contain every landmark the metrics need."""

    missing: Tuple[str, ...]


@dataclass(frozen=True)
class BodyLandmarks:
    """Canvas-space landmarks of the side facing the camera best."""

    shoulder: Point
    hip: Point
    knee: Point
    ankle: Point
    confidence: float


@dataclass(frozen=True)
class FrameMetrics:
    smoothed_hip_y: float
    hip_y: float
    knee_y: float
    baseline: float
    depth_threshold: float
    up_threshold: float
    torso_angle_deg: float
    knee_angle_deg: float
    confidence: float

    @property
    def hip_displacement(self) -> float:
        return self.smoothed_hip_y - self.baseline

    @property
    def knee_displacement(self) -> float:
        return self.knee_y - self.baseline

    def as_bag(self) -> Dict[str, float]:
        """Flat name -> value mapping consumed by the rule evaluator."""
        bag = asdict(self)
        bag["hip_displacement"] = self.hip_displacement
        bag["knee_displacement"] = self.knee_displacement
        return bag


def joint_angle(a: Point, b: Point, c: Point) -> float:
    """Interior angle at ``b`` in degrees; 180 when either segment has zero length."""
    v1 = np.array(a, dtype=float) - np.array(b, dtype=float)
    v2 = np.array(c, dtype=float) - np.array(b, dtype=float)
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0:
        return 180.0
    cos = np.clip(np.dot(v1, v2) / norm, -1.0, 1.0)
    return math.degrees(math.acos(cos))


def torso_angle(shoulder: Point, hip: Point) -> float:
    """Deviation of the hip -> shoulder segment from vertical, 0 when upright.

    Image y grows downwards, so an upright torso has the shoulder above the hip.
    """
    dx = shoulder[0] - hip[0]
    dy = shoulder[1] - hip[1]
    if dx == 0 and dy == 0:
        return 0.0
    return math.degrees(math.atan2(abs(dx), -dy))


class MetricExtractor:
    def __init__(self, config: Optional[CoachConfig] = None) -> None:
        self.config = config or CoachConfig()

    def default_geometry(self) -> FrameGeometry:
        return FrameGeometry.identity(self.config.canvas_width, self.config.canvas_height)

    def locate(
        self, keypoints: Iterable[Keypoint], geometry: Optional[FrameGeometry] = None
    ) -> Union[BodyLandmarks, Incomplete]:
        """Pick the landmarks used for coaching and map them to canvas pixels.

        All six lower-body joints must be usable plus at least one shoulder. For each joint
        type the side with the higher score is used.
        """
        geometry = geometry or self.default_geometry()
        usable = index_keypoints(keypoints, self.config.keypoint_min_score)
        missing = tuple(name for name in LOWER_BODY if name not in usable)
        if not any(name in usable for name in SHOULDERS):
            missing += ("shoulder",)
        if missing:
            return Incomplete(missing=missing)

        def best(joint: str) -> Point:
            candidates = [usable[n] for n in (f"left_{joint}", f"right_{joint}") if n in usable]
            kp = max(candidates, key=lambda k: k.score)
            return geometry.to_canvas(kp.x, kp.y)

        confidence = sum(usable[name].score for name in LOWER_BODY) / len(LOWER_BODY)
        return BodyLandmarks(
            shoulder=best("shoulder"),
            hip=best("hip"),
            knee=best("knee"),
            ankle=best("ankle"),
            confidence=min(1.0, max(0.0, confidence)),
        )

    def compute(self, landmarks: BodyLandmarks, smoothed_hip_y: float, baseline: float) -> FrameMetrics:
        knee_y = landmarks.knee[1]
        span = knee_y - baseline
        return FrameMetrics(
            smoothed_hip_y=smoothed_hip_y,
            hip_y=landmarks.hip[1],
            knee_y=knee_y,
            baseline=baseline,
            depth_threshold=baseline + self.config.depth_fraction * span,
            up_threshold=baseline + self.config.up_fraction * span,
            torso_angle_deg=torso_angle(landmarks.shoulder, landmarks.hip),
            knee_angle_deg=joint_angle(landmarks.hip, landmarks.knee, landmarks.ankle),
            confidence=landmarks.confidence,
        )

    def extract(
        self,
        keypoints: Iterable[Keypoint],
        smoothed_hip_y: float,
        baseline: float,
        geometry: Optional[FrameGeometry] = None,
    ) -> Union[FrameMetrics, Incomplete]:
        landmarks = self.locate(keypoints, geometry)
        if isinstance(landmarks, Incomplete):
            return landmarks
        return self.compute(landmarks, smoothed_hip_y, baseline)
