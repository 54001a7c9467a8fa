"""
Realtime fan-out of proctoring events over WebSockets.

Rooms are ``session-{session_id}`` (the student taking the exam) and
``monitor-{exam_id}`` (faculty and admins watching an exam). The notifier
holds no state of record: publishing is best-effort and a lost message never
loses data, because every change it reports is already committed.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from ..core.cache import cache
from ..core.config import settings
from ..utils.timezone import utcnow

logger = logging.getLogger(__name__)


def session_room(session_id: int) -> str:
    return f"session-{session_id}"


def monitor_room(exam_id: int) -> str:
    return f"monitor-{exam_id}"


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    user_id: int
    role: str
    full_name: str = ""
    rooms: Set[str] = field(default_factory=set)

    async def send(self, event: str, data: Any):
        await self.websocket.send_text(json.dumps({"event": event, "data": data}, default=str))


class ConnectionManager:
    def __init__(self):
        self.rooms: Dict[str, Set[Connection]] = {}
        self.instance_id = uuid.uuid4().hex
        self._listener: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, user) -> Connection:
        await websocket.accept()
        connection = Connection(websocket=websocket, user_id=user.id, role=user.role, full_name=user.full_name)
        logger.info(f"WebSocket connected for user {user.id} ({user.role})")
        return connection

    def join(self, connection: Connection, room: str):
        self.rooms.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def leave(self, connection: Connection, room: str):
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.rooms[room]
        connection.rooms.discard(room)

    def disconnect(self, connection: Connection):
        for room in list(connection.rooms):
            self.leave(connection, room)
        logger.info(f"WebSocket disconnected for user {connection.user_id}")

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit_local(self, room: str, event: str, data: Any, exclude: Optional[Connection] = None) -> int:
        delivered = 0
        stale = set()
        for connection in list(self.rooms.get(room, ())):
            if connection is exclude:
                continue
            try:
                await connection.send(event, data)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping connection of user {connection.user_id} from {room}: {e}")
                stale.add(connection)

        for connection in stale:
            self.leave(connection, room)
        return delivered

    async def publish(self, room: str, event: str, data: Any, exclude: Optional[Connection] = None) -> int:
        """Deliver to local members of ``room`` and, when enabled, to other API processes."""
        try:
            delivered = await self.emit_local(room, event, data, exclude=exclude)
            if settings.realtime_redis_fanout:
                await cache.apublish(settings.realtime_channel, {
                    "origin": self.instance_id,
                    "room": room,
                    "event": event,
                    "data": data,
                })
            return delivered
        except Exception as e:
            logger.error(f"Realtime publish of '{event}' to {room} failed: {e}", exc_info=True)
            return 0

    async def _listen(self):
        client = await cache.get_async_client()
        pubsub = client.pubsub()
        await pubsub.subscribe(settings.realtime_channel)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                payload = json.loads(message["data"])
                if payload.get("origin") == self.instance_id:
                    continue
                await self.emit_local(payload["room"], payload["event"], payload["data"])
        finally:
            await pubsub.unsubscribe(settings.realtime_channel)
            await pubsub.aclose()

    def start_fanout_listener(self):
        if self._listener is None and settings.realtime_redis_fanout:
            self._listener = asyncio.create_task(self._listen())
            self._listener.add_done_callback(self._listener_done)
            logger.info("Realtime Redis fan-out listener started")

    def _listener_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Realtime Redis fan-out listener stopped: {error}", exc_info=error)
        else:
            logger.warning("Realtime Redis fan-out listener exited")
        # a dead listener can be started again
        if self._listener is task:
            self._listener = None

    async def stop_fanout_listener(self):
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    # events published by the API after a committed change

    async def violation_alert(self, outcome) -> int:
        session = outcome.session
        violation = outcome.violation
        return await self.publish(monitor_room(session.exam_id), "violation-alert", {
            "session_id": session.id,
            "student_id": session.student_id,
            "student_name": session.student.full_name,
            "violation": {
                "id": violation.id,
                "type": violation.violation_type,
                "severity": violation.severity,
                "timestamp": violation.timestamp,
            },
            "warning_count": outcome.warning_count,
            "threshold": outcome.threshold,
            "auto_submitted": outcome.auto_submitted,
        })

    async def exam_submission(self, session) -> int:
        return await self.publish(monitor_room(session.exam_id), "exam-submission", {
            "session_id": session.id,
            "student_id": session.student_id,
            "student_name": session.student.full_name,
            "status": session.status,
            "score": session.score,
            "result": session.result,
            "timestamp": utcnow(),
        })

    async def force_submit(self, session_id: int, reason: Optional[str] = None) -> int:
        return await self.publish(session_room(session_id), "force-submit", {
            "session_id": session_id,
            "reason": reason or "Your exam was submitted by the proctor",
            "timestamp": utcnow(),
        })

    async def announcement(self, exam_id: int, message: str, sender: str) -> int:
        return await self.publish(monitor_room(exam_id), "announcement", {
            "exam_id": exam_id,
            "message": message,
            "from": sender,
            "timestamp": utcnow(),
        })


manager = ConnectionManager()
