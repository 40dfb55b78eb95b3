"""Celery application configuration"""

from celery import Celery
from kombu import Exchange, Queue
from camly.core.config import settings

# Create Celery app
celery_app = Celery(
    "camly",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "camly.tasks.settlement_tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    task_routes={
        "camly.tasks.settlement_tasks.*": {"queue": "settlement"},
    },

    # Retry configuration
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    result_expires=3600,  # 1 hour
)

celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("settlement", Exchange("settlement"), routing_key="settlement"),
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "reconcile-pending-claims": {
        "task": "camly.tasks.settlement_tasks.reconcile_pending_claims",
        "schedule": settings.RECONCILE_INTERVAL_SECONDS,
        "options": {"queue": "settlement"}
    },
}
