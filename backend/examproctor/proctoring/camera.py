"""
Webcam access for the attention monitor.
"""
import base64
import logging
from typing import Optional, Protocol

import numpy as np

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def open(self) -> None:
        ...

    def read(self) -> Optional[np.ndarray]:
        ...

    def release(self) -> None:
        ...


class Camera:
    """OpenCV capture device. ``release()`` is safe to call any number of times."""

    def __init__(self, device_index: int = 0, width: int = 640, height: int = 480):
        try:
            import cv2
        except ImportError:
            logger.error("opencv not installed. Install the 'monitor' extra")
            raise
        self._cv2 = cv2
        self.device_index = device_index
        self.width = width
        self.height = height
        self._capture = None

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def open(self):
        if self._capture is not None:
            return
        capture = self._cv2.VideoCapture(self.device_index)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Camera {self.device_index} could not be opened")
        capture.set(self._cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(self._cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture = capture
        logger.info(f"Camera {self.device_index} opened")

    def read(self) -> Optional[np.ndarray]:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def release(self):
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
            logger.info(f"Camera {self.device_index} released")


def encode_snapshot(frame: Optional[np.ndarray], quality: int = 80) -> Optional[str]:
    """Encode a BGR frame as a ``data:image/jpeg;base64,...`` string."""
    if frame is None or frame.size == 0:
        return None
    import cv2

    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        logger.warning("Snapshot encoding failed")
        return None
    return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")
