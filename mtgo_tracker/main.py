"""mtgo-tracker ingestion process.

Runs one ingestion worker and exits with a status its supervisor can act
on: 0 after a requested shutdown, 75 when it wants to be restarted.
"""

import asyncio
import signal
import sys

import redis.asyncio as redis
import structlog

from mtgo_tracker import __version__
from mtgo_tracker.config import Settings, configure_logging, get_settings
from mtgo_tracker.models.base import get_engine, get_session_factory
from mtgo_tracker.services.ingestion import EventQueue, EventRepository
from mtgo_tracker.services.mtgo_client import ClientSession, load_event_source_factory
from mtgo_tracker.services.scrapers import DecklistFetcher, PageFetcher
from mtgo_tracker.worker import ExitCode, IngestionWorker

logger = structlog.get_logger(__name__)


async def run_worker(settings: Settings) -> ExitCode:
    """Wire the worker's collaborators and run it to completion."""
    engine = get_engine()
    session_factory = get_session_factory(engine)
    redis_client = redis.from_url(settings.redis_url)

    try:
        async with PageFetcher(redis_client=redis_client) as pages:
            client_session = ClientSession(load_event_source_factory(settings.event_source))
            queue = EventQueue(
                client_session,
                EventRepository(session_factory),
                decklists=DecklistFetcher(pages, settings.decklist_date_offsets),
                settings=settings,
            )
            worker = IngestionWorker(
                client_session,
                queue,
                session_factory=session_factory,
                settings=settings,
            )

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, worker.request_stop)

            return await worker.run()
    finally:
        await redis_client.aclose()
        await engine.dispose()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("starting_mtgo_tracker", version=__version__)

    try:
        exit_code = asyncio.run(run_worker(settings))
    except Exception as e:
        logger.error("worker_crashed", error=str(e), exc_info=True)
        exit_code = ExitCode.RESTART_REQUESTED

    logger.info("shutting_down_mtgo_tracker", exit_code=int(exit_code))
    sys.exit(int(exit_code))


if __name__ == "__main__":
    main()
