"""
HTTP glue between the attention monitor and the proctoring API.

The client is what a student's machine runs for one exam session: it reports
violations (gated by the exam's proctoring policy and de-duplicated), saves
answers, submits, and shuts the monitor down once the server auto-submits.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .camera import Camera, FrameSource, encode_snapshot
from .config import monitor_settings
from .detectors import FaceDetector, FaceRecognitionDetector
from .monitor import AttentionMonitor, MonitorEvent
from .timer import ExamCountdown

logger = logging.getLogger(__name__)

BROWSER_EVENTS = ("tab-switch", "window-blur", "fullscreen-exit")

POLICY_FLAG = {
    "no-face-detected": "face_detection_enabled",
    "multiple-faces": "multi_face_detection",
    "excessive-head-movement": "head_movement_detection",
    "tab-switch": "tab_switch_detection",
    "window-blur": "tab_switch_detection",
    "fullscreen-exit": "tab_switch_detection",
}


def violation_enabled(policy: Optional[Dict[str, Any]], violation_type: str) -> bool:
    """Whether the exam's proctoring policy wants this violation type reported.

    Types without a policy flag (face mismatch among them) are always reported;
    with no policy loaded yet, everything is.
    """
    flag = POLICY_FLAG.get(violation_type)
    if flag is None or policy is None:
        return True
    return bool(policy.get(flag, True))


class ProctoringClient:

    def __init__(
        self,
        session_id: int,
        token: str,
        base_url: Optional[str] = None,
        proctoring_settings: Optional[Dict[str, Any]] = None,
        dedup_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_auto_submit: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self.proctoring_settings = proctoring_settings
        self.dedup_seconds = dedup_seconds if dedup_seconds is not None else monitor_settings.violation_dedup_seconds
        self.on_auto_submit = on_auto_submit
        self.clock = clock
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url or monitor_settings.api_url,
            timeout=monitor_settings.request_timeout,
        )
        self._http.headers["Authorization"] = f"Bearer {token}"

        self.monitor: Optional[AttentionMonitor] = None
        self.countdown: Optional[ExamCountdown] = None
        self.warning_count = 0
        self.auto_submitted = False
        self._last_violation: Optional[tuple] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _url(self, action: str) -> str:
        return f"/api/v1/proctoring/{action}/{self.session_id}"

    async def load_session(self) -> Dict[str, Any]:
        """Fetch questions and exam metadata; picks up the proctoring policy."""
        response = await self._http.get(f"/api/v1/proctoring/session/{self.session_id}/questions")
        response.raise_for_status()
        data = response.json()
        self.proctoring_settings = data["exam"]["proctoring_settings"]
        self.warning_count = data.get("warning_count", 0)
        return data

    async def load_reference_descriptor(self) -> Optional[List[float]]:
        """The student's registered face descriptor, or ``None`` if they never registered one."""
        response = await self._http.get("/api/v1/auth/face-descriptor")
        response.raise_for_status()
        return response.json()["descriptor"]

    def start_monitor(
        self,
        detector: Optional[FaceDetector] = None,
        camera: Optional[FrameSource] = None,
        reference_descriptor: Optional[List[float]] = None,
        **options: Any,
    ) -> AttentionMonitor:
        """Open the camera and start watching; defaults to the local webcam and face_recognition.

        Extra keyword arguments (interval, thresholds) go to :class:`AttentionMonitor`.
        """
        self.monitor = AttentionMonitor(
            detector or FaceRecognitionDetector(),
            camera or Camera(monitor_settings.camera_index),
            self.handle_monitor_event,
            reference_descriptor=reference_descriptor,
            **options,
        )
        self.monitor.start()
        return self.monitor

    async def handle_monitor_event(self, event: MonitorEvent):
        await self.report_violation(
            event.violation_type,
            severity=event.severity,
            metadata=event.metadata,
            snapshot=encode_snapshot(event.frame),
        )

    async def report_browser_event(self, violation_type: str) -> Optional[Dict[str, Any]]:
        if violation_type not in BROWSER_EVENTS:
            raise ValueError(f"Not a browser event: {violation_type}")
        return await self.report_violation(violation_type, severity="medium")

    async def report_violation(
        self,
        violation_type: str,
        severity: str = "medium",
        metadata: Optional[Dict[str, str]] = None,
        snapshot: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Send one violation to the ledger.

        Returns the server response, or ``None`` when the violation was not
        sent (disabled by policy, duplicate, already auto-submitted) or could
        not be stored. A failed report is logged and left for the caller to
        retry; it never raises into the monitor loop.
        """
        if self.auto_submitted:
            return None
        if not violation_enabled(self.proctoring_settings, violation_type):
            logger.debug(f"Violation {violation_type} disabled by exam policy")
            return None

        now = self.clock()
        if self._last_violation is not None:
            last_type, last_at = self._last_violation
            if last_type == violation_type and now - last_at < self.dedup_seconds:
                logger.debug(f"Skipping duplicate violation {violation_type}")
                return None
        self._last_violation = (violation_type, now)

        payload = {
            "violation_type": violation_type,
            "severity": severity,
            "snapshot": snapshot,
            "description": description,
            "metadata": {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **{key: str(value) for key, value in (metadata or {}).items()},
            },
        }
        try:
            response = await self._http.post(self._url("violation"), json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Could not log violation {violation_type} for session {self.session_id}: {e}")
            return None

        data = response.json()
        self.warning_count = data.get("warning_count", self.warning_count)
        logger.info(f"Violation {violation_type} logged, warnings {self.warning_count}/{data.get('threshold')}")

        if data.get("auto_submitted"):
            await self._handle_auto_submit()
        return data

    async def _handle_auto_submit(self):
        logger.warning(f"Session {self.session_id} auto-submitted by the server")
        self.auto_submitted = True
        await self.stop()
        if self.on_auto_submit is not None:
            await self.on_auto_submit()

    async def submit_answer(self, question_id: int, selected_option: int, time_spent: int = 0) -> Dict[str, Any]:
        response = await self._http.post(
            self._url("answer"),
            json={"question_id": question_id, "selected_option": selected_option, "time_spent": time_spent},
        )
        response.raise_for_status()
        return response.json()

    async def submit(self, reason: str = "manual") -> Dict[str, Any]:
        await self.stop()
        response = await self._http.post(self._url("submit"), json={"reason": reason})
        response.raise_for_status()
        return response.json()

    def start_countdown(self, seconds: float) -> ExamCountdown:
        """Start the exam clock; at zero it submits with reason ``time-expiry``."""
        self.countdown = ExamCountdown(seconds, lambda: self.submit("time-expiry"))
        self.countdown.start()
        return self.countdown

    async def stop(self):
        if self.monitor is not None:
            await self.monitor.stop()
        if self.countdown is not None:
            await self.countdown.stop()

    async def close(self):
        await self.stop()
        await self._http.aclose()
