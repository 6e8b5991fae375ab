"""Celery application and beat schedule."""
from celery import Celery

from app.config import settings

celery_app = Celery(
    "pls_planner",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.pam_sync"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.TIMEZONE,
    enable_utc=True,
    beat_schedule={
        "pam-scheduled-sync": {
            "task": "app.tasks.pam_sync.sync_all_organizations",
            "schedule": float(settings.PAM_SCHEDULED_SYNC_INTERVAL_SECONDS),
        },
    },
)
