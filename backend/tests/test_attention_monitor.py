"""
Tests for the attention monitor loop, the proctoring client and the exam countdown
"""
import asyncio
import json

import httpx
import numpy as np
import pytest

from examproctor.proctoring.client import ProctoringClient, violation_enabled
from examproctor.proctoring.detectors import DetectedFace
from examproctor.proctoring.monitor import AttentionMonitor, MonitorEvent
from examproctor.proctoring.timer import ExamCountdown

FRAME = np.zeros((48, 64, 3), dtype=np.uint8)
REFERENCE = [0.1] * 128


def face(nose_tip=(50, 56), descriptor=None):
    return DetectedFace(
        box=(10, 70, 90, 30),
        nose=[(50, 45), nose_tip],
        left_eye=[(38, 50), (42, 50)],
        right_eye=[(58, 50), (62, 50)],
        descriptor=np.asarray(descriptor) if descriptor is not None else None,
    )


NONE = []
ONE = [face()]
TWO = [face(), face()]
TURNED = [face(nose_tip=(61, 56))]


class FakeCamera:
    def __init__(self, frame=FRAME):
        self.frame = frame
        self.opened = 0
        self.released = 0

    def open(self):
        self.opened += 1

    def read(self):
        return self.frame

    def release(self):
        self.released += 1


class FakeDetector:
    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def detect(self, frame, with_descriptors=False):
        self.calls.append(with_descriptors)
        return self.script.pop(0) if self.script else []


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event: MonitorEvent):
        self.events.append(event)


def make_monitor(script, **kwargs):
    recorder = Recorder()
    camera = FakeCamera()
    monitor = AttentionMonitor(FakeDetector(script), camera, recorder, interval=0.01, threshold=3, **kwargs)
    return monitor, camera, recorder


async def run_ticks(monitor, count):
    return [await monitor.tick() for _ in range(count)]


class TestAttentionMonitor:

    @pytest.mark.asyncio
    async def test_isolated_no_face_does_not_count(self):
        monitor, _, recorder = make_monitor([NONE, ONE, NONE, NONE, NONE])

        fired = await run_ticks(monitor, 5)

        assert [event is not None for event in fired] == [False, False, False, False, True]
        assert [e.violation_type for e in recorder.events] == ["no-face-detected"]
        assert recorder.events[0].severity == "high"
        assert recorder.events[0].frame is FRAME

    @pytest.mark.asyncio
    async def test_multiple_faces_report_the_count(self):
        monitor, _, recorder = make_monitor([TWO, TWO, TWO])

        await run_ticks(monitor, 3)

        assert recorder.events[0].violation_type == "multiple-faces"
        assert recorder.events[0].metadata == {"face_count": "2"}

    @pytest.mark.asyncio
    async def test_head_movement_needs_consecutive_ticks(self):
        monitor, _, recorder = make_monitor([TURNED, TURNED, ONE, TURNED, TURNED, TURNED])

        await run_ticks(monitor, 6)

        assert len(recorder.events) == 1
        assert recorder.events[0].violation_type == "excessive-head-movement"
        assert recorder.events[0].severity == "medium"
        assert recorder.events[0].metadata == {"direction": "right"}

    @pytest.mark.asyncio
    async def test_face_mismatch_is_reported_immediately(self):
        stranger = [face(descriptor=[0.9] * 128)]
        monitor, _, recorder = make_monitor([stranger], reference_descriptor=REFERENCE)

        event = await monitor.tick()

        assert event.violation_type == "face-not-matching"
        assert float(event.metadata["distance"]) > 0.6
        assert monitor.detector.calls == [True]

    @pytest.mark.asyncio
    async def test_matching_face_is_accepted(self):
        owner = [face(descriptor=[0.11] * 128)]
        monitor, _, recorder = make_monitor([owner], reference_descriptor=REFERENCE)

        assert await monitor.tick() is None
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_mismatch_tick_breaks_a_head_movement_streak(self):
        stranger = face(nose_tip=(61, 56), descriptor=[0.9] * 128)
        owner_turned = face(nose_tip=(61, 56), descriptor=[0.1] * 128)
        script = [[owner_turned], [owner_turned], [stranger], [owner_turned], [owner_turned]]
        monitor, _, recorder = make_monitor(script, reference_descriptor=REFERENCE)

        await run_ticks(monitor, 5)

        assert [e.violation_type for e in recorder.events] == ["face-not-matching"]

    @pytest.mark.asyncio
    async def test_identity_check_is_skipped_without_reference(self):
        monitor, _, recorder = make_monitor([[face(descriptor=[0.9] * 128)]])

        assert await monitor.tick() is None
        assert monitor.detector.calls == [False]

    @pytest.mark.asyncio
    async def test_missing_frame_skips_the_tick(self):
        monitor, camera, recorder = make_monitor([NONE, NONE, NONE])
        camera.frame = None

        await run_ticks(monitor, 3)

        assert recorder.events == []
        assert monitor.debounce.no_face_streak == 0

    @pytest.mark.asyncio
    async def test_loop_runs_and_stop_releases_camera(self):
        monitor, camera, recorder = make_monitor([NONE] * 50)

        monitor.start()
        await asyncio.sleep(0.1)
        assert monitor.running
        await monitor.stop()

        assert not monitor.running
        assert camera.opened == 1
        assert camera.released == 1
        assert any(e.violation_type == "no-face-detected" for e in recorder.events)
        assert monitor.debounce.no_face_streak == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        monitor, camera, _ = make_monitor([])

        await monitor.stop()
        monitor.start()
        await monitor.stop()
        await monitor.stop()

        assert not monitor.running
        assert camera.released == 3

    @pytest.mark.asyncio
    async def test_stop_from_inside_the_callback(self):
        stopped = asyncio.Event()
        monitor, camera, _ = make_monitor([NONE] * 10)

        async def stop_on_first_event(event):
            await monitor.stop()
            stopped.set()

        monitor.on_event = stop_on_first_event
        monitor.start()
        await asyncio.wait_for(stopped.wait(), timeout=2)
        await asyncio.sleep(0.05)

        assert not monitor.running
        assert camera.released == 1

    @pytest.mark.asyncio
    async def test_detector_errors_do_not_kill_the_loop(self):
        class FlakyDetector(FakeDetector):
            def detect(self, frame, with_descriptors=False):
                if not self.calls:
                    self.calls.append("boom")
                    raise RuntimeError("model not loaded")
                return super().detect(frame, with_descriptors)

        recorder = Recorder()
        monitor = AttentionMonitor(FlakyDetector([NONE] * 20), FakeCamera(), recorder, interval=0.01, threshold=3)

        monitor.start()
        await asyncio.sleep(0.15)
        await monitor.stop()

        assert recorder.events


def api_handler(responses, requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status_code, body = responses.pop(0) if responses else (200, {"success": True})
        return httpx.Response(status_code, json=body)
    return handler


def make_client(responses, requests, clock=None, **kwargs):
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(api_handler(responses, requests)),
        base_url="http://testserver",
    )
    return ProctoringClient(
        session_id=7,
        token="token-123",
        http_client=http,
        clock=clock or (lambda: 0.0),
        **kwargs,
    )


def violation_response(warning_count, auto_submitted=False):
    return 200, {
        "success": True,
        "warning_count": warning_count,
        "threshold": 3,
        "auto_submitted": auto_submitted,
    }


class TestViolationPolicy:

    def test_policy_flags_gate_their_types(self):
        policy = {
            "face_detection_enabled": False,
            "multi_face_detection": True,
            "head_movement_detection": False,
            "tab_switch_detection": False,
        }

        assert violation_enabled(policy, "no-face-detected") is False
        assert violation_enabled(policy, "multiple-faces") is True
        assert violation_enabled(policy, "excessive-head-movement") is False
        assert violation_enabled(policy, "window-blur") is False
        assert violation_enabled(policy, "face-not-matching") is True

    def test_everything_is_reported_without_a_policy(self):
        assert violation_enabled(None, "tab-switch") is True


class TestProctoringClient:

    @pytest.mark.asyncio
    async def test_reports_violation_with_auth_and_payload(self):
        requests = []
        client = make_client([violation_response(1)], requests)

        data = await client.report_violation("tab-switch", metadata={"count": 1})
        await client.close()

        assert data["warning_count"] == 1
        assert client.warning_count == 1
        request = requests[0]
        assert request.url.path == "/api/v1/proctoring/violation/7"
        assert request.headers["Authorization"] == "Bearer token-123"
        body = json.loads(request.content)
        assert body["violation_type"] == "tab-switch"
        assert body["metadata"]["count"] == "1"
        assert "timestamp" in body["metadata"]

    @pytest.mark.asyncio
    async def test_duplicate_type_within_window_is_dropped(self):
        now = [100.0]
        requests = []
        client = make_client([violation_response(1), violation_response(2), violation_response(3)],
                             requests, clock=lambda: now[0])

        assert await client.report_violation("window-blur") is not None
        now[0] = 101.0
        assert await client.report_violation("window-blur") is None
        assert await client.report_violation("tab-switch") is not None
        now[0] = 104.0
        assert await client.report_violation("tab-switch") is not None
        await client.close()

        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_disabled_types_are_not_sent(self):
        requests = []
        client = make_client([], requests, proctoring_settings={"tab_switch_detection": False})

        assert await client.report_browser_event("tab-switch") is None
        await client.close()

        assert requests == []

    @pytest.mark.asyncio
    async def test_failed_report_returns_none(self):
        requests = []
        client = make_client([(503, {"success": False, "retry": True})], requests)

        assert await client.report_violation("no-face-detected", severity="high") is None
        await client.close()

        assert client.auto_submitted is False

    @pytest.mark.asyncio
    async def test_auto_submit_stops_the_monitor(self):
        requests = []
        notified = []

        async def on_auto_submit():
            notified.append(True)

        client = make_client([violation_response(3, auto_submitted=True)], requests, on_auto_submit=on_auto_submit)
        camera = FakeCamera()
        client.start_monitor(detector=FakeDetector([]), camera=camera)

        data = await client.report_violation("multiple-faces", severity="high")

        assert data["auto_submitted"] is True
        assert client.auto_submitted is True
        assert not client.monitor.running
        assert camera.released == 1
        assert notified == [True]
        assert await client.report_violation("tab-switch") is None
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("with_countdown", [False, True])
    async def test_monitor_driven_auto_submit_shuts_everything_down(self, with_countdown):
        """Auto-submit triggered by the monitor's own report ends the loop and still notifies the caller."""
        requests = []
        notified = asyncio.Event()

        async def on_auto_submit():
            await asyncio.sleep(0)
            notified.set()

        client = make_client([violation_response(3, auto_submitted=True)], requests, on_auto_submit=on_auto_submit)
        countdown = client.start_countdown(100) if with_countdown else None
        camera = FakeCamera()
        monitor = client.start_monitor(detector=FakeDetector([NONE] * 50), camera=camera, interval=0.01, threshold=3)
        loop_task = monitor._task

        await asyncio.wait_for(notified.wait(), timeout=2)
        await asyncio.wait_for(loop_task, timeout=1)

        assert client.auto_submitted is True
        assert loop_task.done() and not loop_task.cancelled()
        assert not monitor.running
        assert camera.released == 1
        assert len(requests) == 1
        if countdown is not None:
            assert not countdown.running
            assert not countdown.expired
        await client.close()

    @pytest.mark.asyncio
    async def test_load_session_picks_up_policy(self):
        requests = []
        payload = {
            "session_id": 7,
            "exam": {"proctoring_settings": {"face_detection_enabled": False}},
            "questions": [],
            "warning_count": 2,
        }
        client = make_client([(200, payload)], requests)

        await client.load_session()
        await client.close()

        assert client.proctoring_settings == {"face_detection_enabled": False}
        assert client.warning_count == 2
        assert requests[0].url.path == "/api/v1/proctoring/session/7/questions"

    @pytest.mark.asyncio
    async def test_answer_and_submit(self):
        requests = []
        client = make_client([
            (200, {"success": True, "answered_count": 1, "total_questions": 5}),
            (200, {"success": True, "status": "completed"}),
        ], requests)

        progress = await client.submit_answer(3, 1, time_spent=12)
        result = await client.submit()
        await client.close()

        assert progress["answered_count"] == 1
        assert result["status"] == "completed"
        assert json.loads(requests[0].content) == {"question_id": 3, "selected_option": 1, "time_spent": 12}
        assert requests[1].url.path == "/api/v1/proctoring/submit/7"
        assert json.loads(requests[1].content) == {"reason": "manual"}

    @pytest.mark.asyncio
    async def test_countdown_submits_with_time_expiry(self):
        requests = []
        client = make_client([(200, {"success": True, "status": "auto-submitted"})], requests)

        countdown = client.start_countdown(0.05)
        await asyncio.sleep(0.2)
        await client.close()

        assert countdown.expired
        assert json.loads(requests[0].content) == {"reason": "time-expiry"}


class TestExamCountdown:

    @pytest.mark.asyncio
    async def test_calls_expire_once_at_zero(self):
        calls = []

        async def on_expire():
            calls.append(True)

        countdown = ExamCountdown(0.05, on_expire, tick_seconds=0.01)
        countdown.start()
        await asyncio.sleep(0.15)

        assert calls == [True]
        assert countdown.remaining == 0
        assert countdown.format_remaining() == "00:00"

        countdown.start()
        await asyncio.sleep(0.05)
        assert calls == [True]

    @pytest.mark.asyncio
    async def test_stop_prevents_submission(self):
        calls = []

        async def on_expire():
            calls.append(True)

        countdown = ExamCountdown(0.1, on_expire, tick_seconds=0.01)
        countdown.start()
        await countdown.stop()
        await countdown.stop()
        await asyncio.sleep(0.15)

        assert calls == []
        assert not countdown.running

    def test_formats_minutes_and_seconds(self):
        async def noop():
            pass

        assert ExamCountdown(3725, noop).format_remaining() == "62:05"
