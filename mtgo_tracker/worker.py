"""Ingestion worker loop.

One worker owns one live client session and one event queue. It runs until
the next maintenance reset, then asks its supervisor for a restart.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from enum import IntEnum

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mtgo_tracker.config import Settings, get_settings
from mtgo_tracker.models.domain import JobRun
from mtgo_tracker.services.ingestion.queue import EventQueue
from mtgo_tracker.services.mtgo_client.api import (
    CacheClearingEventSource,
    EventSource,
    EventSourceError,
    SubscribableEventSource,
)
from mtgo_tracker.services.mtgo_client.session import ClientSession

logger = structlog.get_logger(__name__)


class ExitCode(IntEnum):
    """Process exit status reported to the supervisor."""

    CLEAN_SHUTDOWN = 0
    RESTART_REQUESTED = 75


def schedule_archetype_backfill(countdown: int) -> None:
    """Enqueue the archetype back-fill task."""
    from mtgo_tracker.tasks.archetypes import update_archetypes

    update_archetypes.apply_async(countdown=countdown)


class IngestionWorker:
    """
    The single long-lived ingestion loop.

    Each pass promotes finished events, drains the queue and then sleeps
    until the next poll or the reset boundary, whichever comes first.
    """

    def __init__(
        self,
        session: ClientSession,
        queue: EventQueue,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
        on_written: Callable[[int], None] | None = None,
    ):
        """
        Initialize the worker.

        Args:
            session: Owner of the live client
            queue: Event queue fed from the client
            session_factory: Database sessions for job run records
            settings: Optional settings override
            on_written: Called with a countdown after a pass writes events
        """
        self.session = session
        self.queue = queue
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.on_written = on_written or schedule_archetype_backfill
        self._stop = asyncio.Event()
        self._discovered_source: EventSource | None = None

    def request_stop(self) -> None:
        """Ask the loop to exit after the current step."""
        logger.info("worker_stop_requested")
        self._stop.set()

    async def run(self) -> ExitCode:
        """
        Run until stopped or until the next maintenance reset.

        Returns:
            CLEAN_SHUTDOWN when stopped, RESTART_REQUESTED at the reset
            boundary or when the live client cannot be recovered
        """
        self.queue.attach(asyncio.get_running_loop())
        deadline = self.queue.next_reset()
        logger.info("worker_started", reset_at=deadline.isoformat())

        try:
            await self.session.start()
            while not self._stop.is_set():
                if self.queue.clock() >= deadline:
                    logger.info("worker_reset_boundary", reset_at=deadline.isoformat())
                    return ExitCode.RESTART_REQUESTED

                await self._discover()
                await self.queue.promote_upcoming()
                if await self._drain():
                    self._schedule_backfill()
                await self._clear_caches()

                remaining = (deadline - self.queue.clock()).total_seconds()
                interval = max(0.0, min(self.queue.sleep_interval(), remaining))
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=interval)
                except TimeoutError:
                    pass

            return ExitCode.CLEAN_SHUTDOWN

        except EventSourceError as e:
            logger.error("worker_session_failed", error=str(e), exc_info=True)
            return ExitCode.RESTART_REQUESTED

        finally:
            await self.session.close()
            logger.info("worker_stopped")

    async def _discover(self) -> None:
        """
        Enumerate the source's events.

        A source that pushes new events is enumerated and subscribed once;
        other sources are enumerated on every pass. A restarted session is
        a new source and starts over.
        """
        source = self.session.source
        if source is self._discovered_source:
            return

        events = list(await self.session.call(source.list_events))
        queued = await self.queue.observe_all(events)
        logger.info("events_enumerated", events=len(events), queued=queued)

        if isinstance(source, SubscribableEventSource):
            await self.session.call(source.subscribe, self.queue.observe_threadsafe)
            self._discovered_source = source

    async def _drain(self) -> bool:
        pending = len(self.queue)
        if pending == 0:
            return False

        started_at = datetime.now(timezone.utc)
        job_status = "failed"
        error_message = None
        written = False
        try:
            written = await self.queue.drain()
            job_status = "success"
            return written
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            await self._record_job(
                started_at, job_status, error_message, pending, written
            )

    async def _record_job(
        self,
        started_at: datetime,
        status: str,
        error_message: str | None,
        pending: int,
        written: bool,
    ) -> None:
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as session:
                session.add(
                    JobRun(
                        job_name="drain_events",
                        started_at=started_at,
                        completed_at=datetime.now(timezone.utc),
                        status=status,
                        records_processed=pending,
                        error_message=error_message,
                        job_metadata={"pending": pending, "written": written},
                    )
                )
                await session.commit()
        except Exception as e:
            logger.warning("job_run_record_failed", error=str(e))

    def _schedule_backfill(self) -> None:
        countdown = self.settings.archetype_backfill_delay_seconds
        try:
            self.on_written(countdown)
            logger.info("archetype_backfill_scheduled", countdown=countdown)
        except Exception as e:
            logger.warning("archetype_backfill_schedule_failed", error=str(e))

    async def _clear_caches(self) -> None:
        source = self.session.source
        if isinstance(source, CacheClearingEventSource):
            try:
                await self.session.call(source.clear_caches)
            except Exception as e:
                logger.warning("client_cache_clear_failed", error=str(e))
