"""Celery application for background email delivery."""

from celery import Celery

from src.config import get_settings

settings = get_settings()

app = Celery(
    "device_sync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["src.tasks.mail"],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60,  # SMTP delivery should never take longer
    task_soft_time_limit=45,
    task_ignore_result=True,
    # Re-deliver mail to another worker if one dies mid-send
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
)
