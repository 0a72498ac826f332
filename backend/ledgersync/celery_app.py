"""
Celery application
"""
from celery import Celery

from ledgersync.config import settings

celery_app = Celery(
    "ledgersync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["ledgersync.tasks.auto_send_reports"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        # Auto-send triggers are evaluated on a fixed 5 minute tick
        "process-auto-send-reports": {
            "task": "ledgersync.tasks.auto_send_reports.process_auto_send_reports",
            "schedule": float(settings.AUTO_SEND_INTERVAL_SECONDS),
        },
    },
)
