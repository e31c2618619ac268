"""Celery application configuration for background SMS scans."""

import os
from celery import Celery

# Use Redis as broker and backend
redis_url = os.getenv("REDIS_URL", "redis://redis:6379/0")

# Beat cadence matches the background adapter's minimum interval
BACKGROUND_SCAN_INTERVAL_SECONDS = float(os.getenv("SMS_BACKGROUND_MIN_INTERVAL_SECONDS", "900"))

celery_app = Celery(
    "scale_sms",
    broker=redis_url,
    backend=redis_url,
    include=["apps.api.tasks.sms_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # a scan is bounded by the catch-up batch size
    worker_prefetch_multiplier=1,
    result_expires=3600 * 24,
)

celery_app.conf.task_routes = {
    "apps.api.tasks.sms_tasks.*": {"queue": "sms"},
}

celery_app.conf.beat_schedule = {
    "sms-background-scan": {
        "task": "apps.api.tasks.sms_tasks.schedule_background_scans",
        "schedule": BACKGROUND_SCAN_INTERVAL_SECONDS,
    },
}

if __name__ == "__main__":
    celery_app.start()
