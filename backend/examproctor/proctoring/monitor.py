"""
Attention monitor: a single cooperative polling loop over the webcam.

Every tick classifies the current frame as no-face, multiple-faces or
single-face. Single faces are checked against the registered descriptor (when
the student has one) and for head orientation. Noisy categories go through
:class:`DebounceState`; a face mismatch is reported on the tick it is seen.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import numpy as np

from .config import monitor_settings
from .camera import FrameSource
from .debounce import HEAD_MOVEMENT, MULTIPLE_FACES, NO_FACE, DebounceState
from .detectors import DetectedFace, FaceDetector
from .geometry import face_distance, head_pose

logger = logging.getLogger(__name__)

VIOLATION_FOR_CATEGORY = {
    NO_FACE: ("no-face-detected", "high"),
    MULTIPLE_FACES: ("multiple-faces", "high"),
    HEAD_MOVEMENT: ("excessive-head-movement", "medium"),
}


@dataclass
class MonitorEvent:
    violation_type: str
    severity: str
    metadata: Dict[str, str] = field(default_factory=dict)
    frame: Optional[np.ndarray] = None


EventHandler = Callable[[MonitorEvent], Awaitable[Any]]


class AttentionMonitor:

    def __init__(
        self,
        detector: FaceDetector,
        camera: FrameSource,
        on_event: EventHandler,
        reference_descriptor: Optional[List[float]] = None,
        interval: Optional[float] = None,
        threshold: Optional[int] = None,
        face_match_threshold: Optional[float] = None,
        horizontal_threshold: Optional[float] = None,
        vertical_threshold: Optional[float] = None,
    ):
        self.detector = detector
        self.camera = camera
        self.on_event = on_event
        self.reference_descriptor = (
            np.asarray(reference_descriptor, dtype=float) if reference_descriptor is not None else None
        )
        self.interval = interval if interval is not None else monitor_settings.interval_seconds
        self.face_match_threshold = (
            face_match_threshold if face_match_threshold is not None else monitor_settings.face_match_threshold
        )
        self.horizontal_threshold = (
            horizontal_threshold if horizontal_threshold is not None else monitor_settings.head_horizontal_threshold
        )
        self.vertical_threshold = (
            vertical_threshold if vertical_threshold is not None else monitor_settings.head_vertical_threshold
        )
        self.debounce = DebounceState(threshold if threshold is not None else monitor_settings.detection_threshold)
        self.last_frame: Optional[np.ndarray] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self.camera.open()
        self.debounce.reset()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Attention monitor started (interval={self.interval}s)")

    async def stop(self):
        """Stop the loop and release the camera. Safe from any state.

        Called from inside the loop (an event handler that ends the exam), the
        loop is not cancelled; it exits on its own once the current tick returns.
        """
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
        self.debounce.reset()
        self.last_frame = None
        self.camera.release()
        if task is not None:
            logger.info("Attention monitor stopped")

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in monitoring loop: {e}", exc_info=True)

            if self._task is not asyncio.current_task():
                break

            # ticks never overlap: slots missed by a slow tick are skipped
            next_tick += self.interval
            now = loop.time()
            if next_tick < now:
                next_tick += ((now - next_tick) // self.interval + 1) * self.interval

    async def tick(self) -> Optional[MonitorEvent]:
        """Run one detection pass and report whatever it fires."""
        frame = self.camera.read()
        if frame is None:
            logger.debug("No camera frame available, skipping tick")
            return None
        self.last_frame = frame

        faces = await asyncio.to_thread(
            self.detector.detect, frame, self.reference_descriptor is not None
        )

        if not faces:
            event = self._debounced(NO_FACE, {})
        elif len(faces) > 1:
            event = self._debounced(MULTIPLE_FACES, {"face_count": str(len(faces))})
        else:
            event = self._single_face(faces[0])

        if event is not None:
            event.frame = frame
            logger.warning(f"Attention monitor fired {event.violation_type} {event.metadata}")
            await self.on_event(event)
        return event

    def _single_face(self, face: DetectedFace) -> Optional[MonitorEvent]:
        if self.reference_descriptor is not None and face.descriptor is not None:
            distance = face_distance(face.descriptor, self.reference_descriptor)
            if distance >= self.face_match_threshold:
                self.debounce.observe(None)
                return MonitorEvent("face-not-matching", "high", {"distance": f"{distance:.3f}"})

        if not face.has_landmarks:
            return self._debounced(None, {})

        pose = head_pose(
            face.nose,
            face.left_eye,
            face.right_eye,
            self.horizontal_threshold,
            self.vertical_threshold,
        )
        if pose.looking_away:
            return self._debounced(HEAD_MOVEMENT, {"direction": pose.direction})
        return self._debounced(None, {})

    def _debounced(self, category: Optional[str], metadata: Dict[str, str]) -> Optional[MonitorEvent]:
        fired = self.debounce.observe(category)
        if fired is None:
            return None
        violation_type, severity = VIOLATION_FOR_CATEGORY[fired]
        return MonitorEvent(violation_type, severity, metadata)
