from .client import ProctoringClient, violation_enabled
from .debounce import DebounceState
from .detectors import DetectedFace, FaceRecognitionDetector
from .camera import Camera
from .monitor import AttentionMonitor, MonitorEvent
from .timer import ExamCountdown

__all__ = [
    "ProctoringClient",
    "violation_enabled",
    "DebounceState",
    "DetectedFace",
    "FaceRecognitionDetector",
    "Camera",
    "AttentionMonitor",
    "MonitorEvent",
    "ExamCountdown",
]
