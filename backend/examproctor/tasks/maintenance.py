import logging
import shutil

from sqlalchemy import text

from examproctor.core.cache import cache
from examproctor.core.celery_app import celery_app
from examproctor.core.config import settings
from examproctor.core.database import SessionLocal
from examproctor.services.session_service import SessionService
from examproctor.utils.timezone import utcnow

logger = logging.getLogger(__name__)


@celery_app.task(name="expire_overdue_sessions")
def expire_overdue_sessions():
    """Auto-submit in-progress sessions that outlived their exam duration.

    Exam expiry is normally driven by the client countdown; this sweep only
    runs when ``enable_expiry_sweep`` is set.
    """
    if not settings.enable_expiry_sweep:
        return {'expired': 0, 'enabled': False}

    db = SessionLocal()
    try:
        expired = SessionService(db).expire_overdue_sessions()
        if expired:
            logger.info(f"Expired {len(expired)} overdue exam session(s)")
        return {'expired': len(expired), 'session_ids': [s.id for s in expired], 'enabled': True}
    except Exception as exc:
        db.rollback()
        logger.error(f"Error in expire_overdue_sessions: {exc}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="health_check")
def health_check():
    """Task to perform system health checks"""
    health_status = {
        'timestamp': utcnow().isoformat(),
        'cache': cache.health_check(),
        'database': False,
        'disk_space': None,
        'memory_usage': None
    }

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status['database'] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    total, used, free = shutil.disk_usage('/')
    health_status['disk_space'] = {
        'total_gb': round(total / (1024**3), 2),
        'free_gb': round(free / (1024**3), 2),
        'usage_percent': round((used / total) * 100, 2)
    }

    import psutil
    memory = psutil.virtual_memory()
    health_status['memory_usage'] = {
        'total_gb': round(memory.total / (1024**3), 2),
        'available_gb': round(memory.available / (1024**3), 2),
        'usage_percent': memory.percent
    }

    cache.set('system_health', health_status, ttl=300)
    return health_status
