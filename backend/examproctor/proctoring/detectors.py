"""
Face detection backends for the attention monitor.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .geometry import Point

logger = logging.getLogger(__name__)


@dataclass
class DetectedFace:
    # (top, right, bottom, left) in frame pixels
    box: Tuple[int, int, int, int]
    nose: Sequence[Point] = field(default_factory=list)
    left_eye: Sequence[Point] = field(default_factory=list)
    right_eye: Sequence[Point] = field(default_factory=list)
    descriptor: Optional[np.ndarray] = None

    @property
    def has_landmarks(self) -> bool:
        return bool(self.nose) and bool(self.left_eye) and bool(self.right_eye)


class FaceDetector(Protocol):
    def detect(self, frame: np.ndarray, with_descriptors: bool = False) -> List[DetectedFace]:
        ...


class FaceRecognitionDetector:
    """
    Detects faces with the ``face_recognition`` library (dlib underneath).

    Provides, per face:
    - bounding box
    - nose and eye landmarks for head orientation
    - 128-d descriptor for identity matching (only when requested)
    """

    def __init__(self, model: str = "hog", upsample: int = 1):
        try:
            import cv2
            import face_recognition
        except ImportError:
            logger.error("face_recognition/opencv not installed. Install the 'monitor' extra")
            raise
        self._cv2 = cv2
        self._face_recognition = face_recognition
        self.model = model
        self.upsample = upsample

    def detect(self, frame: np.ndarray, with_descriptors: bool = False) -> List[DetectedFace]:
        if frame is None or frame.size == 0:
            return []

        rgb = self._cv2.cvtColor(frame, self._cv2.COLOR_BGR2RGB)
        locations = self._face_recognition.face_locations(
            rgb, number_of_times_to_upsample=self.upsample, model=self.model
        )
        if not locations:
            return []

        landmarks: List[Dict[str, list]] = self._face_recognition.face_landmarks(rgb, locations)
        descriptors = (
            self._face_recognition.face_encodings(rgb, locations) if with_descriptors else [None] * len(locations)
        )

        faces = []
        for location, marks, descriptor in zip(locations, landmarks, descriptors):
            faces.append(DetectedFace(
                box=tuple(location),
                nose=list(marks.get("nose_bridge", [])) + list(marks.get("nose_tip", [])),
                left_eye=list(marks.get("left_eye", [])),
                right_eye=list(marks.get("right_eye", [])),
                descriptor=descriptor,
            ))
        return faces
