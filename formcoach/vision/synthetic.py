"""Deterministic synthetic squat keypoints.

Stands in for the pose model when no camera is available (demo endpoint, scripts, tests).
Coordinates are produced directly in canvas pixels for a side-on athlete.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np

from formcoach.vision.keypoints import Keypoint


@dataclass
class SquatScript:
    standing_frames: int = 45
    cycles: int = 3
    frames_per_cycle: int = 16
    rest_frames: int = 4
    depth: float = 1.0  # fraction of the standing-hip -> knee span reached at the bottom
    torso_lean_deg: float = 10.0
    score: float = 0.9
    frame_interval_ms: float = 150.0
    jitter_px: float = 0.0
    seed: int = 7

    # Standing skeleton (canvas pixels)
    shoulder_height_px: float = 110.0
    hip_y: float = 260.0
    knee_y: float = 350.0
    ankle_y: float = 440.0
    center_x: float = 320.0
    hip_shift_px: float = 60.0


def squat_profile(script: SquatScript) -> List[float]:
    """Descent fraction per frame: 0 = standing, 1 = bottom of the scripted depth."""
    profile = [0.0] * script.standing_frames
    n = max(2, script.frames_per_cycle)
    for _ in range(script.cycles):
        for k in range(n):
            profile.append((1.0 - math.cos(2.0 * math.pi * k / n)) / 2.0)
        profile.extend([0.0] * script.rest_frames)
    return profile


def pose_at(script: SquatScript, fraction: float, noise: Optional[np.ndarray] = None) -> List[Keypoint]:
    """Build both-sided keypoints for a given descent fraction."""
    span = script.knee_y - script.hip_y
    hip_y = script.hip_y + script.depth * span * fraction
    hip_x = script.center_x - script.hip_shift_px * fraction
    lean = math.radians(script.torso_lean_deg)
    shoulder_x = hip_x + script.shoulder_height_px * math.sin(lean)
    shoulder_y = hip_y - script.shoulder_height_px * math.cos(lean)
    points = {
        "shoulder": (shoulder_x, shoulder_y),
        "hip": (hip_x, hip_y),
        "knee": (script.center_x, script.knee_y),
        "ankle": (script.center_x, script.ankle_y),
    }
    keypoints: List[Keypoint] = []
    offset = 0
    for side, base_index in (("left", 5), ("right", 6)):
        for joint, step in (("shoulder", 0), ("hip", 6), ("knee", 8), ("ankle", 10)):
            x, y = points[joint]
            if noise is not None:
                x += float(noise[offset, 0])
                y += float(noise[offset, 1])
            offset += 1
            keypoints.append(
                Keypoint(name=f"{side}_{joint}", x=x, y=y, score=script.score, index=base_index + step)
            )
    return keypoints


def squat_frames(script: SquatScript, start_ms: float = 0.0) -> Iterator[Tuple[float, List[Keypoint]]]:
    """Yield ``(timestamp_ms, keypoints)`` for the whole script."""
    rng = np.random.default_rng(script.seed)
    t = start_ms
    for fraction in squat_profile(script):
        noise = rng.normal(0.0, script.jitter_px, size=(8, 2)) if script.jitter_px > 0 else None
        yield t, pose_at(script, fraction, noise)
        t += script.frame_interval_ms
