"""
Celery Application Configuration
"""
from celery import Celery

from notifier.core.config import settings

celery_app = Celery(
    "notifier",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["notifier.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-message-queue": {
        "task": "notifier.workers.tasks.process_message_queue",
        "schedule": settings.QUEUE_POLL_INTERVAL_SECONDS,
    },
    "archive-sent-messages": {
        "task": "notifier.workers.tasks.archive_sent_messages",
        "schedule": 86400.0,  # 24 hours
    },
    "cleanup-delivery-logs": {
        "task": "notifier.workers.tasks.cleanup_delivery_logs",
        "schedule": 86400.0,  # 24 hours
    },
}
