"""Event queue.

Discovers finished tournaments and feeds each one, exactly once per
process, through the composite builder into the repository.

Flow:
1. observe() classifies an event from the live client: rejected, upcoming
   (still running) or ready (finished)
2. promote_upcoming() moves upcoming events to ready once they finish
3. drain() builds and writes every ready event, one at a time, in FIFO
   order

Producers may call observe_threadsafe() from the live client's callback
thread; drain() runs on the worker's event loop.
"""

import asyncio
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, time as dt_time, timedelta, timezone
from typing import Any

import structlog

from mtgo_tracker.config import Settings, get_settings
from mtgo_tracker.services.ingestion.composite import (
    CompositeBuildError,
    CompositeBuilder,
    DecklistProvider,
)
from mtgo_tracker.services.ingestion.entries import (
    EventEntry,
    MalformedEventError,
    is_excluded_event,
)
from mtgo_tracker.services.ingestion.repository import EventRepository
from mtgo_tracker.services.ingestion.validation import StandingsValidationError
from mtgo_tracker.services.mtgo_client.api import EventSourceError, TournamentHandle
from mtgo_tracker.services.mtgo_client.session import ClientSession

logger = structlog.get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps from the live client as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_next_reset(
    now: datetime, reset_time: dt_time, resets_per_day: int
) -> datetime:
    """
    The first maintenance reset strictly after now.

    Resets are evenly spaced through the day starting from reset_time (UTC).
    """
    now = as_utc(now)
    interval = timedelta(days=1) / resets_per_day
    anchor = datetime.combine(now.date(), reset_time, tzinfo=timezone.utc)
    if anchor > now:
        anchor -= timedelta(days=1)
    steps = (now - anchor) // interval + 1
    return anchor + steps * interval


def _read_summary(handle: TournamentHandle) -> tuple[int, str, datetime, bool]:
    return handle.id, handle.description, handle.start_time, bool(handle.is_completed)


def _probe(handle: TournamentHandle) -> bool:
    """Touch a handle's remote state. Raises if the proxy has gone stale."""
    _ = handle.id
    return bool(handle.is_completed)


@dataclass(eq=False)
class QueueItem:
    """A tournament waiting in the queue."""

    event_id: int
    name: str
    start_time: datetime
    handle: TournamentHandle | None = None
    builder: CompositeBuilder | None = field(default=None, repr=False)


class EventQueue:
    """
    Exactly-once delivery of finished events into the repository.

    Membership is tracked by event id in companion sets next to the two
    deques. Ids stay known for the life of the process once drained, so an
    abandoned event is only retried after a restart.
    """

    def __init__(
        self,
        session: ClientSession,
        repository: EventRepository,
        decklists: DecklistProvider | None = None,
        settings: Settings | None = None,
        config: dict[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """
        Initialize the queue.

        Args:
            session: Owner of the live client
            repository: Event store
            decklists: Decklist fetcher handed to each builder
            settings: Optional settings override
            config: Optional classification rules override
            clock: Current UTC time, for tests
            sleep: Async sleep, for tests
        """
        self.session = session
        self.repository = repository
        self.decklists = decklists
        self.settings = settings or get_settings()
        self.config = config if config is not None else self.settings.load_defaults_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep

        self.ready: deque[QueueItem] = deque()
        self.upcoming: deque[QueueItem] = deque()
        self._ready_ids: set[int] = set()
        self._upcoming_ids: set[int] = set()
        self._processed_ids: set[int] = set()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self.ready)

    def __contains__(self, event_id: object) -> bool:
        with self._lock:
            return event_id in self._ready_ids or event_id in self._upcoming_ids

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the loop that observe_threadsafe() schedules onto."""
        self._loop = loop

    def next_reset(self) -> datetime:
        return get_next_reset(
            self.clock(), self.settings.reset_time, self.settings.resets_per_day
        )

    async def observe(self, event: object) -> bool:
        """
        Classify an event reported by the live client.

        Returns:
            True if the event was queued, False if it was rejected
        """
        if not isinstance(event, TournamentHandle):
            return False

        try:
            event_id, name, start_time, is_completed = await self.session.call(
                _read_summary, event
            )
        except Exception as e:
            logger.warning("event_unreadable", error=str(e))
            return False

        if is_excluded_event(name, self.config):
            return False

        now = self.clock()
        start_time = as_utc(start_time)
        if start_time > now + timedelta(days=self.settings.event_lookahead_days):
            logger.debug("event_too_far_ahead", event_id=event_id, name=name)
            return False

        guard = timedelta(minutes=self.settings.reset_guard_minutes)
        if start_time + guard >= self.next_reset():
            logger.debug("event_near_reset", event_id=event_id, name=name)
            return False

        try:
            await self.session.call(EventEntry.from_handle, event, self.config)
        except MalformedEventError as e:
            logger.debug("event_malformed", event_id=event_id, error=str(e))
            return False
        except Exception as e:
            logger.warning("event_unreadable", event_id=event_id, error=str(e))
            return False

        if event_id in self or event_id in self._processed_ids:
            return False
        if await self.repository.event_exists(event_id):
            return False

        logger.info(
            "event_found",
            event_id=event_id,
            name=name,
            start_time=start_time.isoformat(),
            completed=is_completed,
        )
        item = QueueItem(event_id=event_id, name=name, start_time=start_time, handle=event)
        return self._enqueue(item, ready=is_completed)

    def observe_threadsafe(self, event: object) -> Future:
        """
        Schedule observe() from a thread other than the worker's.

        Raises:
            RuntimeError: If no loop has been attached
        """
        if self._loop is None:
            raise RuntimeError("EventQueue is not attached to an event loop")
        return asyncio.run_coroutine_threadsafe(self.observe(event), self._loop)

    async def observe_all(self, events: list[object]) -> int:
        """Observe a batch of events. Returns how many were queued."""
        queued = 0
        for event in events:
            if await self.observe(event):
                queued += 1
        return queued

    def _enqueue(self, item: QueueItem, ready: bool) -> bool:
        with self._lock:
            if (
                item.event_id in self._ready_ids
                or item.event_id in self._upcoming_ids
                or item.event_id in self._processed_ids
            ):
                return False
            if ready:
                self.ready.append(item)
                self._ready_ids.add(item.event_id)
            else:
                self.upcoming.append(item)
                self._upcoming_ids.add(item.event_id)

        logger.info(
            "event_queued",
            event_id=item.event_id,
            name=item.name,
            queue="ready" if ready else "upcoming",
        )
        return True

    def _pop_ready(self) -> QueueItem | None:
        with self._lock:
            if not self.ready:
                return None
            item = self.ready.popleft()
            self._ready_ids.discard(item.event_id)
            self._processed_ids.add(item.event_id)
            return item

    async def promote_upcoming(self) -> int:
        """
        Move upcoming events that have finished to the ready queue.

        Returns:
            Number of events promoted
        """
        with self._lock:
            pending = list(self.upcoming)

        finished = []
        for item in pending:
            try:
                completed = await self.session.call(_probe, item.handle)
            except Exception:
                try:
                    item.handle = await self.session.call(
                        self.session.source.get_event, item.event_id
                    )
                    completed = await self.session.call(_probe, item.handle)
                except Exception as e:
                    logger.debug(
                        "upcoming_probe_failed", event_id=item.event_id, error=str(e)
                    )
                    continue
            if completed:
                finished.append(item)

        with self._lock:
            for item in finished:
                self.upcoming.remove(item)
                self._upcoming_ids.discard(item.event_id)
                self.ready.append(item)
                self._ready_ids.add(item.event_id)

        for item in finished:
            logger.info("event_finished", event_id=item.event_id, name=item.name)
        return len(finished)

    def sleep_interval(self) -> float:
        """Seconds the caller may idle before the next pass."""
        with self._lock:
            if self.ready:
                return 0.0
        until_reset = (self.next_reset() - self.clock()).total_seconds()
        return max(0.0, min(float(self.settings.poll_interval_seconds), until_reset))

    async def drain(self) -> bool:
        """
        Build and write every ready event.

        Failures are logged and the event is dropped for this process.

        Returns:
            True if at least one event was written

        Raises:
            EventSourceError: If the live client cannot be restarted any more
        """
        written = False
        while (item := self._pop_ready()) is not None:
            if await self._process(item):
                written = True
        return written

    async def _process(self, item: QueueItem) -> bool:
        start = time.monotonic()
        attempts = self.settings.build_attempts

        composite = None
        for attempt in range(1, attempts + 1):
            try:
                handle = await self._resolve_handle(item, force=attempt > 1)
            except EventSourceError as e:
                if not e.retryable:
                    raise
                self._abandon(item, "handle_unresolved", start, error=str(e))
                return False

            if item.builder is None:
                item.builder = CompositeBuilder(
                    handle,
                    decklists=self.decklists,
                    settings=self.settings,
                    config=self.config,
                )
            else:
                item.builder.rebind(handle)

            try:
                composite = await item.builder.build()
                break
            except MalformedEventError as e:
                self._abandon(item, "malformed", start, error=str(e))
                return False
            except StandingsValidationError as e:
                self._abandon(item, "validation_failed", start, error=str(e))
                await self.session.restart()
                return False
            except CompositeBuildError as e:
                logger.warning(
                    "composite_build_failed",
                    event_id=item.event_id,
                    attempt=attempt,
                    missing=item.builder.missing,
                    error=str(e),
                )

        if composite is None:
            self._abandon(item, "build_failed", start, attempts=attempts)
            return False

        logger.info(
            "event_writing",
            event_id=item.event_id,
            name=item.name,
            elapsed_seconds=round(time.monotonic() - start, 2),
        )
        try:
            await self.repository.add_event(composite)
        except Exception as e:
            logger.error(
                "event_write_failed",
                event_id=item.event_id,
                error=str(e),
                exc_info=True,
            )
            self._abandon(item, "write_failed", start)
            return False

        logger.info(
            "event_written",
            event_id=item.event_id,
            name=item.name,
            summary=str(composite),
            elapsed_seconds=round(time.monotonic() - start, 2),
        )
        return True

    async def _resolve_handle(self, item: QueueItem, force: bool) -> TournamentHandle:
        """
        Return a live handle for the item.

        The cached handle is reused while it answers a probe. Otherwise the
        event is looked up again, with backoff, and the client session is
        restarted once if the lookups keep failing.

        Raises:
            EventSourceError: If the handle cannot be resolved
        """
        if not force and item.handle is not None and await self._is_alive(item.handle):
            return item.handle

        attempts = self.settings.handle_attempts
        delay = self.settings.handle_retry_delay_seconds
        for restarted in (False, True):
            for attempt in range(1, attempts + 1):
                try:
                    handle = await self.session.call(
                        self.session.source.get_event, item.event_id
                    )
                    if not isinstance(handle, TournamentHandle):
                        raise EventSourceError(f"Event {item.event_id} is not a tournament")
                    await self.session.call(_probe, handle)
                    item.handle = handle
                    return handle
                except Exception as e:
                    logger.warning(
                        "handle_resolution_failed",
                        event_id=item.event_id,
                        attempt=attempt,
                        restarted=restarted,
                        error=str(e),
                    )
                    if attempt < attempts:
                        await self.sleep(delay * attempt)
            if not restarted:
                await self.session.restart()

        raise EventSourceError(
            f"Event {item.event_id}: handle unresolved after session restart"
        )

    async def _is_alive(self, handle: TournamentHandle) -> bool:
        try:
            await self.session.call(_probe, handle)
        except Exception:
            return False
        return True

    def _abandon(self, item: QueueItem, reason: str, start: float, **context: Any) -> None:
        logger.warning(
            "event_abandoned",
            event_id=item.event_id,
            name=item.name,
            reason=reason,
            elapsed_seconds=round(time.monotonic() - start, 2),
            **context,
        )
