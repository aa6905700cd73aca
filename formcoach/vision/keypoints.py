"""Keypoint input boundary: decoding pose-model output and mapping it to canvas space."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

# MoveNet / COCO 17-keypoint indexing
COCO_INDEX: Dict[int, str] = {
    0: "nose",
    1: "left_eye",
    2: "right_eye",
    3: "left_ear",
    4: "right_ear",
    5: "left_shoulder",
    6: "right_shoulder",
    7: "left_elbow",
    8: "right_elbow",
    9: "left_wrist",
    10: "right_wrist",
    11: "left_hip",
    12: "right_hip",
    13: "left_knee",
    14: "right_knee",
    15: "left_ankle",
    16: "right_ankle",
}

_CAMEL_ALIASES: Dict[str, str] = {
    "leftShoulder": "left_shoulder",
    "rightShoulder": "right_shoulder",
    "leftHip": "left_hip",
    "rightHip": "right_hip",
    "leftKnee": "left_knee",
    "rightKnee": "right_knee",
    "leftAnkle": "left_ankle",
    "rightAnkle": "right_ankle",
    "hip_left": "left_hip",
    "hip_right": "right_hip",
}


@dataclass
class Keypoint:
    name: str
    x: float
    y: float
    score: float = 1.0
    index: Optional[int] = None


@dataclass(frozen=True)
class FrameGeometry:
    """Maps pose-model input pixels to rendering canvas pixels."""

    source_width: float
    source_height: float
    canvas_width: float
    canvas_height: float

    @classmethod
    def identity(cls, width: float, height: float) -> "FrameGeometry":
        return cls(width, height, width, height)

    def to_canvas(self, x: float, y: float) -> Tuple[float, float]:
        sw = self.source_width or self.canvas_width or 1.0
        sh = self.source_height or self.canvas_height or 1.0
        return x / sw * self.canvas_width, y / sh * self.canvas_height


def normalize_name(name: Optional[str], index: Optional[int] = None) -> Optional[str]:
    if name:
        name = str(name).strip()
        return _CAMEL_ALIASES.get(name, name.lower())
    if index is not None:
        return COCO_INDEX.get(int(index))
    return None


def parse_keypoints(raw: Iterable[Any]) -> List[Keypoint]:
    """Decode keypoints from dicts (``name``/``part``/``index``) or :class:`Keypoint` objects.

    Entries without a resolvable name are dropped. A missing score counts as fully confident.
    When a list position is the only identifier, it is treated as the COCO index.
    """
    out: List[Keypoint] = []
    for position, item in enumerate(raw):
        if isinstance(item, Keypoint):
            out.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        index = item.get("index")
        name = normalize_name(item.get("name") or item.get("part"), index if index is not None else position)
        if name is None or item.get("x") is None or item.get("y") is None:
            continue
        score = item.get("score")
        out.append(
            Keypoint(
                name=name,
                x=float(item["x"]),
                y=float(item["y"]),
                score=1.0 if score is None else float(score),
                index=int(index) if index is not None else None,
            )
        )
    return out


def index_keypoints(keypoints: Iterable[Keypoint], min_score: float) -> Dict[str, Keypoint]:
    """Return usable keypoints keyed by canonical name.

    Keypoints scoring below ``min_score`` are treated as absent.
    """
    usable: Dict[str, Keypoint] = {}
    for kp in keypoints:
        name = normalize_name(kp.name, kp.index)
        if name is None or kp.score < min_score:
            continue
        current = usable.get(name)
        if current is None or kp.score > current.score:
            usable[name] = kp
    return usable
