from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "memorysphere",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.data_retention_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "run-data-deletion-daily": {
            "task": "run_data_deletion_process",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
