from __future__ import annotations

from typing import List

import pytest

from formcoach.coach.rule_store import ExerciseRuleSpec, parse_rule_spec
from formcoach.vision.keypoints import Keypoint


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, ms: float) -> float:
        self.t += ms
        return self.t


def body(hip_y: float, knee_y: float = 400.0, score: float = 0.9, lean_px: float = 0.0) -> List[Keypoint]:
    """Both-sided side-on skeleton with the hip at ``hip_y`` (canvas pixels)."""
    points = {
        "shoulder": (300.0 + lean_px, hip_y - 150.0),
        "hip": (300.0, hip_y),
        "knee": (300.0, knee_y),
        "ankle": (300.0, knee_y + 90.0),
    }
    out = []
    for side in ("left", "right"):
        for joint, (x, y) in points.items():
            out.append(Keypoint(name=f"{side}_{joint}", x=x, y=y, score=score))
    return out


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def squat_spec() -> ExerciseRuleSpec:
    return parse_rule_spec(
        {
            "id": "test_squat",
            "metrics": {"min_confidence": 0.5},
            "rules": [
                {"id": "depth", "type": "ratio", "params": {"min_ratio": 0.35}, "severity": "warn"},
                {"id": "torso_angle", "type": "max", "metric": "torso_angle_deg", "params": {"max_deg": 25}, "severity": "fail"},
            ],
            "messages": {
                "depth": {"pass": "Nice depth", "warn": "Go deeper"},
                "torso_angle": {"fail": "Chest up"},
            },
        }
    )
