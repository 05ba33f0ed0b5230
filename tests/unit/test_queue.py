"""Unit tests for the event queue.

Covers:
- Reset schedule arithmetic
- Observation filters and deduplication
- Upcoming promotion
- Draining, including failure paths and stale handles
"""

import asyncio
from datetime import datetime, time, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from conftest import FakeEventSource, FakeTournament

from mtgo_tracker.services.ingestion.queue import EventQueue, get_next_reset
from mtgo_tracker.services.mtgo_client import ClientSession

NOW = datetime(2024, 5, 4, 12, 0, tzinfo=timezone.utc)


def copy_tournament(tournament, **overrides):
    values = {
        "id": tournament.id,
        "description": tournament.description,
        "start_time": tournament.start_time,
        "players": tournament.players,
        "standings": tournament.standings,
        "total_rounds": tournament.total_rounds,
        "completed": tournament.completed,
    }
    values.update(overrides)
    return FakeTournament(**values)


@pytest.fixture
def repository():
    repository = AsyncMock()
    repository.event_exists.return_value = False
    return repository


@pytest.fixture
def source(tournament):
    return FakeEventSource([tournament])


@pytest_asyncio.fixture
async def session(source):
    session = ClientSession(lambda: source)
    await session.start()
    return session


@pytest.fixture
def make_queue(session, repository, test_settings, classification_config):
    def _make(clock=NOW):
        return EventQueue(
            session,
            repository,
            settings=test_settings,
            config=classification_config,
            clock=lambda: clock,
            sleep=AsyncMock(),
        )

    return _make


class TestNextReset:
    """Test the maintenance reset schedule."""

    @pytest.mark.parametrize(
        "now,expected",
        [
            (datetime(2024, 5, 4, 12, 0), datetime(2024, 5, 4, 13, 30)),
            (datetime(2024, 5, 4, 0, 45), datetime(2024, 5, 4, 1, 30)),
            (datetime(2024, 5, 4, 1, 30), datetime(2024, 5, 4, 3, 30)),
            (datetime(2024, 5, 4, 23, 45), datetime(2024, 5, 5, 1, 30)),
        ],
    )
    def test_two_hour_schedule(self, now, expected):
        result = get_next_reset(now.replace(tzinfo=timezone.utc), time(1, 30), 12)
        assert result == expected.replace(tzinfo=timezone.utc)

    def test_single_daily_reset(self):
        now = datetime(2024, 5, 4, 12, 0, tzinfo=timezone.utc)
        assert get_next_reset(now, time(1, 30), 1) == datetime(
            2024, 5, 5, 1, 30, tzinfo=timezone.utc
        )

    def test_naive_time_is_utc(self):
        naive = get_next_reset(datetime(2024, 5, 4, 12, 0), time(1, 30), 12)
        assert naive.tzinfo is not None


class TestObserve:
    """Test event classification."""

    @pytest.mark.asyncio
    async def test_finished_event_is_ready(self, make_queue, tournament):
        queue = make_queue()

        assert await queue.observe(tournament)
        assert len(queue) == 1
        assert tournament.id in queue

    @pytest.mark.asyncio
    async def test_running_event_is_upcoming(self, make_queue, tournament):
        tournament.completed = False
        queue = make_queue()

        assert await queue.observe(tournament)
        assert len(queue) == 0
        assert tournament.id in queue

    @pytest.mark.asyncio
    async def test_non_tournament_rejected(self, make_queue):
        queue = make_queue()
        assert not await queue.observe(object())

    @pytest.mark.asyncio
    async def test_excluded_event_rejected(self, make_queue, tournament):
        tournament.description = "Modern League Queue"
        assert not await make_queue().observe(tournament)

    @pytest.mark.asyncio
    async def test_malformed_event_rejected(self, make_queue, tournament):
        tournament.description = "Commander Party"
        assert not await make_queue().observe(tournament)

    @pytest.mark.asyncio
    async def test_far_future_event_rejected(self, make_queue, tournament):
        tournament.start_time = datetime(2024, 5, 9, tzinfo=timezone.utc)
        assert not await make_queue().observe(tournament)

    @pytest.mark.asyncio
    async def test_event_near_reset_rejected(self, make_queue, tournament):
        """Next reset is 13:30 and the guard is five minutes."""
        tournament.start_time = datetime(2024, 5, 4, 13, 26, tzinfo=timezone.utc)
        tournament.completed = False
        assert not await make_queue().observe(tournament)

    @pytest.mark.asyncio
    async def test_event_before_guard_accepted(self, make_queue, tournament):
        tournament.start_time = datetime(2024, 5, 4, 13, 20, tzinfo=timezone.utc)
        tournament.completed = False
        assert await make_queue().observe(tournament)

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, make_queue, tournament):
        queue = make_queue()

        assert await queue.observe(tournament)
        assert not await queue.observe(tournament)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_stored_event_rejected(self, make_queue, tournament, repository):
        repository.event_exists.return_value = True

        assert not await make_queue().observe(tournament)
        repository.event_exists.assert_awaited_once_with(tournament.id)

    @pytest.mark.asyncio
    async def test_observe_all_counts_queued(self, make_queue, tournament):
        other = copy_tournament(tournament, id=333444, description="Legacy Challenge")
        excluded = copy_tournament(tournament, id=555666, description="Cube Draft")

        assert await make_queue().observe_all([tournament, other, excluded, tournament]) == 2

    @pytest.mark.asyncio
    async def test_observe_threadsafe(self, make_queue, tournament):
        queue = make_queue()
        queue.attach(asyncio.get_running_loop())

        future = await asyncio.to_thread(queue.observe_threadsafe, tournament)

        assert await asyncio.wrap_future(future)
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_observe_threadsafe_requires_loop(self, make_queue, tournament):
        with pytest.raises(RuntimeError):
            make_queue().observe_threadsafe(tournament)


class TestPromoteUpcoming:
    """Test promotion of finished events."""

    @pytest.mark.asyncio
    async def test_promotes_finished(self, make_queue, tournament):
        tournament.completed = False
        queue = make_queue()
        await queue.observe(tournament)

        assert await queue.promote_upcoming() == 0

        tournament.completed = True
        assert await queue.promote_upcoming() == 1
        assert len(queue) == 1
        assert list(queue.upcoming) == []

    @pytest.mark.asyncio
    async def test_stale_upcoming_handle_is_refreshed(self, make_queue, tournament, source):
        tournament.completed = False
        queue = make_queue()
        await queue.observe(tournament)

        tournament.stale = True
        source.events[tournament.id] = copy_tournament(tournament, completed=True)

        assert await queue.promote_upcoming() == 1
        assert queue.ready[0].handle is source.events[tournament.id]


class TestSleepInterval:
    """Test the idle interval."""

    @pytest.mark.asyncio
    async def test_poll_interval_when_idle(self, make_queue):
        assert make_queue().sleep_interval() == 300.0

    @pytest.mark.asyncio
    async def test_capped_by_next_reset(self, make_queue):
        queue = make_queue(clock=datetime(2024, 5, 4, 13, 28, tzinfo=timezone.utc))
        assert queue.sleep_interval() == 120.0

    @pytest.mark.asyncio
    async def test_zero_when_ready(self, make_queue, tournament):
        queue = make_queue()
        await queue.observe(tournament)
        assert queue.sleep_interval() == 0.0


class TestDrain:
    """Test building and writing ready events."""

    @pytest.mark.asyncio
    async def test_writes_in_fifo_order(self, make_queue, tournament, repository):
        other = copy_tournament(tournament, id=333444, description="Legacy Challenge")
        queue = make_queue()
        await queue.observe(tournament)
        await queue.observe(other)

        assert await queue.drain()

        written = [call.args[0].event.id for call in repository.add_event.await_args_list]
        assert written == [111222, 333444]
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_drained_event_not_requeued(self, make_queue, tournament):
        queue = make_queue()
        await queue.observe(tournament)
        await queue.drain()

        assert not await queue.observe(tournament)

    @pytest.mark.asyncio
    async def test_write_failure_abandons_event(self, make_queue, tournament, repository):
        repository.add_event.side_effect = RuntimeError("database unavailable")
        queue = make_queue()
        await queue.observe(tournament)

        assert not await queue.drain()
        assert repository.add_event.await_count == 1
        assert not await queue.observe(tournament)

    @pytest.mark.asyncio
    async def test_validation_failure_restarts_session(
        self, make_queue, tournament, repository, session
    ):
        tournament.standings[0].points = 5
        queue = make_queue()
        await queue.observe(tournament)

        assert not await queue.drain()
        repository.add_event.assert_not_awaited()
        assert session.restarts == 1

    @pytest.mark.asyncio
    async def test_malformed_event_abandoned(self, make_queue, tournament, repository):
        queue = make_queue()
        await queue.observe(tournament)
        tournament.description = "Commander Party"

        assert not await queue.drain()
        repository.add_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_handle_is_resolved_again(
        self, make_queue, tournament, repository, source
    ):
        queue = make_queue()
        await queue.observe(tournament)

        tournament.stale = True
        source.events[tournament.id] = copy_tournament(tournament)

        assert await queue.drain()
        assert source.lookups == [tournament.id]
        repository.add_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unresolvable_handle_abandoned(
        self, make_queue, tournament, repository, source, session
    ):
        queue = make_queue()
        await queue.observe(tournament)

        tournament.stale = True
        del source.events[tournament.id]

        assert not await queue.drain()
        repository.add_event.assert_not_awaited()
        assert session.restarts == 1
