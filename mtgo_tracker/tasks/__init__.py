"""Celery tasks for mtgo-tracker.

This module configures Celery and registers the periodic decklist re-visit
and archetype back-fill.
"""

from celery import Celery
from celery.schedules import crontab

from mtgo_tracker.config import configure_logging, get_settings

settings = get_settings()
configure_logging(settings.log_level)

# Create Celery application
celery_app = Celery(
    "mtgo_tracker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "mtgo_tracker.tasks.archetypes",
        "mtgo_tracker.tasks.decks",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=1800,  # 30 minute hard limit
    task_soft_time_limit=1740,
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Decklist re-visit - every hour at :05
    "update-decks": {
        "task": "mtgo_tracker.tasks.decks.update_decks",
        "schedule": crontab(minute=5),
        "options": {"expires": 3540},
    },
    # Archetype back-fill - every hour at :15
    "update-archetypes": {
        "task": "mtgo_tracker.tasks.archetypes.update_archetypes",
        "schedule": crontab(minute=15),
        "options": {"expires": 3540},
    },
}
