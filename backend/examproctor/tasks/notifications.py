import logging

from examproctor.core.cache import cache
from examproctor.core.celery_app import celery_app
from examproctor.core.database import SessionLocal
from examproctor.models.exam_session import ExamSession
from examproctor.models.user import User
from examproctor.utils.timezone import utcnow

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 10


def notification_key(user_id: int) -> str:
    return f"user_notifications:{user_id}"


@celery_app.task(bind=True, name="send_result_notification")
def send_result_notification(self, user_id: int, session_id: int):
    """Store an in-app notification telling a student their exam was graded."""
    with SessionLocal() as db:
        user = db.query(User).filter(User.id == user_id).first()
        session = db.query(ExamSession).filter(ExamSession.id == session_id).first()
        if user is None or session is None:
            raise ValueError(f"Unknown user {user_id} or session {session_id}")

        notification_data = {
            'session_id': session.id,
            'exam_title': session.exam.title,
            'status': session.status,
            'completion_time': (session.end_time or utcnow()).isoformat(),
        }
        # scores stay hidden until the exam allows students to see results
        if session.can_view_answers:
            notification_data.update({
                'score': session.score,
                'total_marks': session.exam.total_marks,
                'result': session.result,
            })

    if not (self.request.called_directly or self.request.is_eager):
        self.update_state(
            state='PROGRESS',
            meta={'current': 1, 'total': 2, 'status': 'Storing notification...'}
        )

    cache_key = notification_key(user_id)
    notifications = cache.get(cache_key) or []
    notifications.append({
        'type': 'exam_result',
        'data': notification_data,
        'timestamp': utcnow().isoformat(),
        'read': False
    })
    notifications = notifications[-MAX_NOTIFICATIONS:]
    stored = cache.set(cache_key, notifications, ttl=86400)

    logger.info(f"Result notification for user {user_id} session {session_id} stored={stored}")
    return {'user_id': user_id, 'session_id': session_id, 'stored': stored}
