import logging

from celery import Celery

from examproctor.core.config import settings

logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

celery_app = Celery(
    "exam_proctoring_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        'examproctor.tasks.maintenance',
        'examproctor.tasks.notifications',
    ]
)

beat_schedule = {
    'health-check': {
        'task': 'health_check',
        'schedule': 600.0,
    },
}

if settings.enable_expiry_sweep:
    beat_schedule['expire-overdue-sessions'] = {
        'task': 'expire_overdue_sessions',
        'schedule': 60.0,
    }

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    task_routes={
        'health_check': {'queue': 'maintenance'},
        'expire_overdue_sessions': {'queue': 'maintenance'},
        'send_result_notification': {'queue': 'notifications'},
    },

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,

    task_soft_time_limit=120,
    task_time_limit=300,

    result_expires=3600,
    broker_connection_retry_on_startup=True,

    task_default_retry_delay=60,
    task_max_retries=3,

    task_always_eager=settings.celery_task_always_eager,
    task_eager_propagates=True,

    beat_schedule=beat_schedule,
)

if __name__ == '__main__':
    celery_app.start()
