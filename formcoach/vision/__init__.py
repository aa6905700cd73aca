from formcoach.vision.keypoints import FrameGeometry, Keypoint, index_keypoints, parse_keypoints
from formcoach.vision.synthetic import SquatScript, squat_frames

__all__ = [
    "FrameGeometry",
    "Keypoint",
    "SquatScript",
    "index_keypoints",
    "parse_keypoints",
    "squat_frames",
]
