"""
Celery Application Configuration
"""
from celery import Celery

from engagement_hub.core.config import settings

celery_app = Celery(
    "engagement_hub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["engagement_hub.workers.tasks"]
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
    task_default_queue="social_media",
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "retry-failed-webhook-events-every-5-minutes": {
        "task": "engagement_hub.workers.tasks.retry_failed_webhook_events",
        "schedule": 300.0,
    },
    "cleanup-old-webhook-events-daily": {
        "task": "engagement_hub.workers.tasks.cleanup_old_webhook_events",
        "schedule": 86400.0,  # 24 hours
    },
    # long-lived tokens expire after 60 days; refresh the ones inside the window
    "refresh-instagram-tokens-daily": {
        "task": "engagement_hub.workers.tasks.refresh_instagram_tokens",
        "schedule": 86400.0,
    },
}
