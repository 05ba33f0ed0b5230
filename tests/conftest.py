"""Pytest configuration and fixtures for mtgo-tracker tests."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mtgo_tracker.config import Settings
from mtgo_tracker.models import Base
from mtgo_tracker.services.mtgo_client import (
    SENTINEL_ID,
    EventSourceError,
    GameRecord,
    MatchRecord,
    PlayerRecord,
    StandingRecord,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeTournament:
    """Tournament handle with the shape the live client hands out."""

    def __init__(
        self,
        id: int,
        description: str,
        start_time: datetime,
        players: list[PlayerRecord],
        standings: list[StandingRecord],
        total_rounds: int = 2,
        completed: bool = True,
    ):
        self.id = id
        self.description = description
        self.start_time = start_time
        self.total_rounds = total_rounds
        self.total_players = len(players)
        self.players = players
        self.standings = standings
        self.completed = completed
        self.stale = False

    @property
    def is_completed(self) -> bool:
        if self.stale:
            raise EventSourceError("remote object is no longer valid")
        return self.completed

    def __str__(self) -> str:
        return self.description


class FakeEventSource:
    """In-memory live client."""

    def __init__(self, events: list[object] | None = None):
        self.events = {getattr(e, "id", index): e for index, e in enumerate(events or [])}
        self.closed = False
        self.lookups: list[int] = []

    def list_events(self) -> list[object]:
        return list(self.events.values())

    def get_event(self, event_id: int) -> object:
        self.lookups.append(event_id)
        if event_id not in self.events:
            raise EventSourceError(f"Event {event_id} not found")
        return self.events[event_id]

    def close(self) -> None:
        self.closed = True


def make_match(
    match_id: int,
    round: int,
    first: PlayerRecord,
    second: PlayerRecord,
    game_winners: list[PlayerRecord | None],
) -> MatchRecord:
    """A two-player match; the winner is whoever took more games."""
    first_wins = sum(1 for w in game_winners if w is first)
    second_wins = sum(1 for w in game_winners if w is second)
    if first_wins > second_wins:
        winner_ids, loser_ids = [first.id], [second.id]
    elif second_wins > first_wins:
        winner_ids, loser_ids = [second.id], [first.id]
    else:
        winner_ids, loser_ids = [], []

    games = [
        GameRecord(id=match_id * 10 + index, winner_ids=[w.id] if w else [])
        for index, w in enumerate(game_winners, start=1)
    ]
    return MatchRecord(
        id=match_id,
        round=round,
        players=[first, second],
        winner_ids=winner_ids,
        loser_ids=loser_ids,
        games=games,
    )


def make_bye(round: int, player: PlayerRecord) -> MatchRecord:
    return MatchRecord(
        id=SENTINEL_ID,
        round=round,
        players=[player],
        winner_ids=[player.id],
        has_bye=True,
    )


@pytest.fixture
def players():
    """Four players, one of them anonymous."""
    return {
        "alice": PlayerRecord(id=1001, name="Alice"),
        "bob": PlayerRecord(id=1002, name="Bob"),
        "carol": PlayerRecord(id=1003, name="Carol"),
        "dave": PlayerRecord(id=SENTINEL_ID, name="Dave"),
    }


@pytest.fixture
def standings(players):
    """
    Two rounds, four players.

    Round 1: Alice beats Bob 2-1, Carol and Dave draw 1-1-1.
    Round 2: Alice beats Carol 2-0, Bob beats Dave 2-0.
    """
    alice, bob, carol, dave = (
        players["alice"],
        players["bob"],
        players["carol"],
        players["dave"],
    )
    m1 = make_match(101, 1, alice, bob, [alice, bob, alice])
    m2 = make_match(102, 1, carol, dave, [carol, dave, None])
    m3 = make_match(103, 2, alice, carol, [alice, alice])
    m4 = make_match(104, 2, bob, dave, [bob, bob])
    return [
        StandingRecord(1, alice, 6, "50.00%", "80.00%", "45.00%", [m1, m3]),
        StandingRecord(2, bob, 3, "66.67%", "60.00%", "50.00%", [m1, m4]),
        StandingRecord(3, carol, 1, "50.00%", "33.33%", "55.00%", [m2, m3]),
        StandingRecord(4, dave, 1, "40.00%", "20.00%", "60.00%", [m2, m4]),
    ]


@pytest.fixture
def tournament(players, standings):
    """A finished Modern Challenge."""
    return FakeTournament(
        id=111222,
        description="Modern Challenge 32",
        start_time=datetime(2024, 5, 4, 8, 0, tzinfo=timezone.utc),
        players=list(players.values()),
        standings=standings,
    )


@pytest.fixture
def classification_config():
    """Classification rules as shipped in defaults.yaml."""
    return Settings().load_defaults_config()


@pytest.fixture
def test_settings():
    """Settings with retry delays removed."""
    return Settings(
        handle_retry_delay_seconds=0.0,
        standing_timeout_seconds=5.0,
        redis_url="redis://localhost:6379/15",
    )


@pytest_asyncio.fixture
async def test_engine():
    """In-memory database with the full schema."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
