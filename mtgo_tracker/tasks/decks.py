"""Decklist re-visit task.

Fetches decklists for recent events that were written before MTGO
published them. Runs hourly from Celery beat, ahead of the archetype
back-fill so newly stored decks are labeled in the same hour.
"""

from datetime import datetime, timezone

import redis.asyncio as redis
import structlog

from mtgo_tracker.config import get_settings
from mtgo_tracker.models.base import task_session_factory
from mtgo_tracker.models.domain import JobRun
from mtgo_tracker.services.ingestion import DecklistBackfill, EventRepository
from mtgo_tracker.services.scrapers import DecklistFetcher, PageFetcher
from mtgo_tracker.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, max_retries=2, soft_time_limit=840, time_limit=900)
def update_decks(self):
    """
    Scheduled: Every hour at :05
    Timeout: 15 minutes

    Process:
    1. Load non-Preliminary events from the lookback window with no decks
    2. Fetch each event's MTGO decklist publication
    3. Keep decklists from the event's players
    4. Upsert decks
    5. Log job run with stats
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_update_decks_async(self))
    finally:
        loop.close()


async def _update_decks_async(task):
    """Async implementation of the decklist re-visit."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats = {}

    async with task_session_factory() as session_factory:
        async with session_factory() as session:
            job_run = JobRun(
                job_name="update_decks",
                started_at=started_at,
                status="running",
            )
            session.add(job_run)
            await session.commit()

            redis_client = redis.from_url(settings.redis_url)
            try:
                async with PageFetcher(redis_client=redis_client) as pages:
                    backfill = DecklistBackfill(
                        repository=EventRepository(session_factory),
                        decklists=DecklistFetcher(pages, settings.decklist_date_offsets),
                    )
                    stats = await backfill.update_decks()

                job_status = "success"
                logger.info(
                    "decklist_task_complete",
                    stats=stats,
                    duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
                )

            except Exception as e:
                job_status = "failed"
                error_message = str(e)
                logger.error(
                    "decklist_task_failed",
                    error=str(e),
                    task_id=task.request.id,
                )

                if task.request.retries < task.max_retries:
                    raise task.retry(exc=e, countdown=300 * (task.request.retries + 1))

            finally:
                await redis_client.aclose()
                job_run.completed_at = datetime.now(timezone.utc)
                job_run.status = job_status
                job_run.error_message = error_message
                job_run.records_processed = stats.get("decks", 0)
                job_run.job_metadata = stats
                await session.commit()

    return stats
