"""
Landmark geometry used by the attention monitor: head orientation from the
nose and eye points, and descriptor distance for identity matching.
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

Point = Tuple[float, float]


@dataclass(frozen=True)
class HeadPose:
    looking_away: bool
    direction: Optional[str] = None
    horizontal_offset: Optional[float] = None
    vertical_offset: Optional[float] = None


def head_pose(
    nose: Sequence[Point],
    left_eye: Sequence[Point],
    right_eye: Sequence[Point],
    horizontal_threshold: float = 0.4,
    vertical_threshold: float = 0.45,
) -> HeadPose:
    """Estimate whether the head is turned away from the screen.

    The nose tip (last nose point) is compared against the midpoint of the two
    eye centers; both offsets are normalized by the inter-eye distance.
    Horizontal drift is checked before vertical drift, so a face turned both
    ways reports ``left``/``right``.
    """
    if len(nose) == 0 or len(left_eye) == 0 or len(right_eye) == 0:
        return HeadPose(looking_away=False)

    left_center = np.asarray(left_eye, dtype=float).mean(axis=0)
    right_center = np.asarray(right_eye, dtype=float).mean(axis=0)
    eye_center = (left_center + right_center) / 2
    nose_tip = np.asarray(nose[-1], dtype=float)

    face_width = abs(right_center[0] - left_center[0])
    if face_width == 0:
        return HeadPose(looking_away=False)

    horizontal = float((nose_tip[0] - eye_center[0]) / face_width)
    vertical = float((nose_tip[1] - eye_center[1]) / face_width)

    direction = None
    if abs(horizontal) > horizontal_threshold:
        direction = "right" if horizontal > 0 else "left"
    elif vertical > vertical_threshold:
        direction = "down"
    elif vertical < -vertical_threshold:
        direction = "up"

    return HeadPose(
        looking_away=direction is not None,
        direction=direction,
        horizontal_offset=horizontal,
        vertical_offset=vertical,
    )


def face_distance(descriptor, reference) -> float:
    return float(np.linalg.norm(np.asarray(descriptor, dtype=float) - np.asarray(reference, dtype=float)))
