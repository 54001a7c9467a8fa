"""
Temporal debouncing for the attention monitor.

Each noisy anomaly category keeps its own streak of consecutive ticks. A
streak grows only while ticks keep matching its category and drops to zero on
any other tick, including a tick classified as a different anomaly. When a
streak reaches the threshold the category fires once and the streak restarts
from zero, so a new incident needs a fresh run of consecutive detections.
"""
from dataclasses import dataclass
from typing import Optional

NO_FACE = "no-face"
MULTIPLE_FACES = "multiple-faces"
HEAD_MOVEMENT = "head-movement"

DEBOUNCED_CATEGORIES = (NO_FACE, MULTIPLE_FACES, HEAD_MOVEMENT)


@dataclass
class DebounceState:
    threshold: int = 3
    no_face_streak: int = 0
    multi_face_streak: int = 0
    head_move_streak: int = 0

    def __post_init__(self):
        if self.threshold < 1:
            raise ValueError("Debounce threshold must be at least 1")

    def observe(self, category: Optional[str]) -> Optional[str]:
        """Record one tick and return the category that fired, if any.

        ``category`` is the anomaly seen on this tick, or ``None`` for a clean
        tick. Categories outside the debounced set (a face mismatch, for
        example) reset every streak.
        """
        self.no_face_streak = self.no_face_streak + 1 if category == NO_FACE else 0
        self.multi_face_streak = self.multi_face_streak + 1 if category == MULTIPLE_FACES else 0
        self.head_move_streak = self.head_move_streak + 1 if category == HEAD_MOVEMENT else 0

        if self.no_face_streak >= self.threshold:
            self.no_face_streak = 0
            return NO_FACE
        if self.multi_face_streak >= self.threshold:
            self.multi_face_streak = 0
            return MULTIPLE_FACES
        if self.head_move_streak >= self.threshold:
            self.head_move_streak = 0
            return HEAD_MOVEMENT
        return None

    def reset(self):
        self.no_face_streak = 0
        self.multi_face_streak = 0
        self.head_move_streak = 0
