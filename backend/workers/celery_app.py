"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "repricer",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.pricing.*": {"queue": "pricing"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Scheduled runs only simulate. Applying stays a reviewed, manual step.
    beat_schedule={
        "simulate-active-rulesets-nightly": {
            "task": "workers.pricing.simulate_active_rulesets",
            "schedule": crontab(hour=settings.pricing_schedule_hour, minute=0),
            "options": {"queue": "pricing"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="pricing")
