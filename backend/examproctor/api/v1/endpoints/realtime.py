import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from typing import Any, Optional

from ....core.database import SessionLocal
from ....models.exam import Exam
from ....models.exam_session import ExamSession, STATUS_IN_PROGRESS
from ....services.auth_service import AuthService
from ....services.realtime_notifier import Connection, manager, monitor_room, session_room
from ....utils.timezone import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _authenticate(token: Optional[str]):
    if not token:
        return None
    with SessionLocal() as db:
        user = AuthService(db).get_current_user(token)
        if user is None or not user.is_active:
            return None
        db.expunge(user)
        return user


async def _join_session(connection: Connection, data: Any):
    session_id = _as_int(data.get("session_id") if isinstance(data, dict) else data)
    with SessionLocal() as db:
        session = db.query(ExamSession).filter(ExamSession.id == session_id).first()
        if session is None:
            await connection.send("error", {"message": "Session not found"})
            return
        if session.student_id != connection.user_id:
            await connection.send("error", {"message": "Unauthorized access to session"})
            return
        exam_id, status_value = session.exam_id, session.status

    manager.join(connection, session_room(session_id))
    await connection.send("session-joined", {"session_id": session_id, "status": status_value})
    await manager.publish(monitor_room(exam_id), "student-joined", {
        "session_id": session_id,
        "student_id": connection.user_id,
        "student_name": connection.full_name,
        "timestamp": utcnow(),
    }, exclude=connection)


async def _join_monitor(connection: Connection, data: Any):
    if connection.role not in ("faculty", "admin"):
        await connection.send("error", {"message": "Unauthorized: only faculty can monitor exams"})
        return

    exam_id = _as_int(data.get("exam_id") if isinstance(data, dict) else data)
    with SessionLocal() as db:
        exam = db.query(Exam).filter(Exam.id == exam_id).first()
        if exam is None:
            await connection.send("error", {"message": "Exam not found"})
            return
        if connection.role != "admin" and exam.created_by != connection.user_id:
            await connection.send("error", {"message": "Not authorized to monitor this exam"})
            return
        active = [
            {
                "session_id": s.id,
                "student_id": s.student_id,
                "student_name": s.student.full_name,
                "start_time": s.start_time,
                "warning_count": s.warning_count,
            }
            for s in db.query(ExamSession).filter(
                ExamSession.exam_id == exam_id,
                ExamSession.status == STATUS_IN_PROGRESS,
            ).all()
        ]

    manager.join(connection, monitor_room(exam_id))
    await connection.send("monitor-joined", {"exam_id": exam_id, "timestamp": utcnow()})
    await connection.send("active-sessions", {"exam_id": exam_id, "sessions": active})


async def _relay_from_student(connection: Connection, event: str, data: dict):
    """Forward a student's own session event to the exam's monitor room."""
    session_id = _as_int(data.get("session_id"))
    if session_room(session_id) not in connection.rooms:
        await connection.send("error", {"message": "Join the session before sending events"})
        return
    with SessionLocal() as db:
        session = db.query(ExamSession).filter(ExamSession.id == session_id).first()
        if session is None:
            return
        exam_id = session.exam_id

    payload = {**data, "session_id": session_id, "student_id": connection.user_id,
               "student_name": connection.full_name, "timestamp": utcnow()}
    if event == "violation-detected":
        await manager.publish(monitor_room(exam_id), "violation-alert", payload)
    elif event == "exam-submitted":
        await manager.publish(monitor_room(exam_id), "exam-submission", payload)
        manager.leave(connection, session_room(session_id))
    else:
        await manager.publish(monitor_room(exam_id), "student-activity-update", payload, exclude=connection)


def _directive_exam_owner(event: str, data: dict) -> Optional[int]:
    """Creator id of the exam a staff directive targets, or None when the target does not exist."""
    with SessionLocal() as db:
        if event == "force-submit":
            session = db.query(ExamSession).filter(ExamSession.id == _as_int(data.get("session_id"))).first()
            exam = session.exam if session is not None else None
        else:
            exam = db.query(Exam).filter(Exam.id == _as_int(data.get("exam_id"))).first()
        return exam.created_by if exam is not None else None


async def _staff_directive(connection: Connection, event: str, data: dict):
    if connection.role not in ("faculty", "admin"):
        await connection.send("error", {"message": "Unauthorized"})
        return
    if connection.role != "admin" and _directive_exam_owner(event, data) != connection.user_id:
        await connection.send("error", {"message": "Not authorized to manage this exam"})
        return
    if event == "force-submit":
        session_id = _as_int(data.get("session_id"))
        await manager.force_submit(session_id, data.get("reason"))
    else:
        exam_id = _as_int(data.get("exam_id"))
        await manager.announcement(exam_id, str(data.get("message", "")), connection.full_name)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    user = _authenticate(token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection = await manager.connect(websocket, user)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await connection.send("error", {"message": "Invalid message"})
                continue

            event = message.get("event") if isinstance(message, dict) else None
            data = (message.get("data") or {}) if isinstance(message, dict) else {}

            if event == "join-session":
                await _join_session(connection, data)
            elif event == "join-monitor":
                await _join_monitor(connection, data)
            elif event == "heartbeat":
                await connection.send("heartbeat-ack", {"timestamp": utcnow()})
            elif event in ("violation-detected", "exam-submitted", "student-activity") and isinstance(data, dict):
                await _relay_from_student(connection, event, data)
            elif event in ("force-submit", "broadcast-announcement") and isinstance(data, dict):
                await _staff_directive(connection, event, data)
            else:
                await connection.send("error", {"message": f"Unknown event '{event}'"})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(connection)
