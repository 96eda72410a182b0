from celery import Celery
from celery.schedules import crontab

from miturn.core.config import settings

celery_app = Celery(
    "miturn",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["miturn.worker"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

# Periodic passes; each can be re-run for the same day.
celery_app.conf.beat_schedule = {
    "daily-allocation-pass": {
        "task": "miturn.worker.run_allocation_pass",
        "schedule": crontab(hour=5, minute=0),
    },
    "recurring-contribution-pass": {
        "task": "miturn.worker.run_recurring_contribution_pass",
        "schedule": crontab(hour=6, minute=0),
    },
    "payout-rotation-pass": {
        "task": "miturn.worker.run_payout_pass",
        "schedule": crontab(minute=30, hour="*/6"),
    },
}
