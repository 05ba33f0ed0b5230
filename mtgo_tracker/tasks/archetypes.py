"""Archetype back-fill task.

Labels recently ingested decks with MTGGoldfish archetypes. Runs hourly
from Celery beat and is also enqueued by the ingestion worker shortly
after it writes new events.
"""

from datetime import datetime, timezone

import redis.asyncio as redis
import structlog

from mtgo_tracker.config import get_settings
from mtgo_tracker.models.base import task_session_factory
from mtgo_tracker.models.domain import JobRun
from mtgo_tracker.services.archetypes import ArchetypeMatcher
from mtgo_tracker.services.ingestion import EventRepository
from mtgo_tracker.services.scrapers import GoldfishClient, PageFetcher
from mtgo_tracker.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, max_retries=2, soft_time_limit=1500, time_limit=1560)
def update_archetypes(self):
    """
    Scheduled: Every hour at :15, and after new events are written
    Timeout: 25 minutes

    Process:
    1. Load events from the lookback window with unlabeled decks
    2. Skip events below the unlabeled deck threshold
    3. Search MTGGoldfish and confirm the match by its MTGO source URL
    4. Resolve each player's archetype from the standings table
    5. Upsert archetype entries
    6. Log job run with stats
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_update_archetypes_async(self))
    finally:
        loop.close()


async def _update_archetypes_async(task):
    """Async implementation of the archetype back-fill."""
    settings = get_settings()
    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    stats = {}

    async with task_session_factory() as session_factory:
        async with session_factory() as session:
            job_run = JobRun(
                job_name="update_archetypes",
                started_at=started_at,
                status="running",
            )
            session.add(job_run)
            await session.commit()

            redis_client = redis.from_url(settings.redis_url)
            try:
                async with PageFetcher(redis_client=redis_client) as pages:
                    matcher = ArchetypeMatcher(
                        repository=EventRepository(session_factory),
                        goldfish=GoldfishClient(pages),
                    )
                    stats = await matcher.update_archetypes()

                job_status = "success"
                logger.info(
                    "archetype_task_complete",
                    stats=stats,
                    duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
                )

            except Exception as e:
                job_status = "failed"
                error_message = str(e)
                logger.error(
                    "archetype_task_failed",
                    error=str(e),
                    task_id=task.request.id,
                )

                # Retry on transient errors
                if task.request.retries < task.max_retries:
                    raise task.retry(exc=e, countdown=300 * (task.request.retries + 1))

            finally:
                await redis_client.aclose()
                job_run.completed_at = datetime.now(timezone.utc)
                job_run.status = job_status
                job_run.error_message = error_message
                job_run.records_processed = stats.get("archetypes", 0)
                job_run.job_metadata = stats
                await session.commit()

    return stats
