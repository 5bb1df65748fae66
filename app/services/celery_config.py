from celery import Celery
from celery.schedules import crontab

from app.config import config

celery_app = Celery("tasks")

celery_app.conf.update(
    broker_url=config.CELERY_BROKER_URL,
    result_backend=config.CELERY_RESULT_BACKEND,
    task_routes={"app.services.tasks.*": {"queue": "default"}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "cleanup-expired-password-resets": {
            "task": "app.services.tasks.cleanup_expired_password_resets",
            "schedule": crontab(minute=0),
        },
    },
)
celery_app.autodiscover_tasks(["app.services.tasks"])
