"""Event composite assembly.

A composite is everything written for one finished event: its metadata,
players, standings with their matches, and published decklists. The
builder keeps every sub-collection it has already read so a retry after a
transient failure only re-reads what is still missing.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol, TypeVar

import structlog

from mtgo_tracker.config import Settings, get_settings
from mtgo_tracker.models.types import EventType
from mtgo_tracker.services.ingestion.entries import (
    DeckEntry,
    EventEntry,
    MalformedEventError,
    MatchEntry,
    PlayerEntry,
    StandingEntry,
)
from mtgo_tracker.services.ingestion.validation import (
    StandingsValidationError,
    validate_standings,
)
from mtgo_tracker.services.mtgo_client.api import (
    MatchRecord,
    PlayerRecord,
    StandingRecord,
    TournamentHandle,
)
from mtgo_tracker.services.scrapers.decklists import DecklistRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CompositeBuildError(Exception):
    """Raised when a build attempt fails and may be retried."""

    pass


class DecklistProvider(Protocol):
    async def get_decklists(
        self, event_id: int, name: str, event_date: date
    ) -> list[DecklistRecord] | None: ...


@dataclass
class EventComposite:
    """One event and all of its child records, written atomically."""

    event: EventEntry
    players: list[PlayerEntry] = field(default_factory=list)
    standings: list[StandingEntry] = field(default_factory=list)
    decks: list[DeckEntry] = field(default_factory=list)

    @property
    def matches(self) -> list[MatchEntry]:
        return [match for standing in self.standings for match in standing.matches]

    def __str__(self) -> str:
        return "\n".join(
            [
                f"{self.event.name} #{self.event.id} ({self.event.date})",
                f"  Players:   {len(self.players)}",
                f"  Standings: {len(self.standings)}",
                f"  Matches:   {len(self.matches)}",
                f"  Decklists: {len(self.decks)}",
            ]
        )


def call_with_retries(
    func: Callable[[], T],
    attempts: int,
    delay: float = 0.5,
    description: str = "call",
) -> T:
    """
    Run a blocking call, retrying on any error.

    Runs inside a worker thread, so it sleeps with time.sleep.

    Raises:
        CompositeBuildError: After the last attempt fails
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except MalformedEventError:
            raise
        except Exception as e:
            last_error = e
            logger.debug(
                "live_read_retrying",
                description=description,
                attempt=attempt,
                error=str(e),
            )
            if attempt < attempts:
                time.sleep(delay * attempt)
    raise CompositeBuildError(
        f"{description} failed after {attempts} attempts: {last_error}"
    ) from last_error


def collect_players(
    roster: Sequence[PlayerRecord], standings: Sequence[StandingRecord]
) -> list[PlayerEntry]:
    """Union roster and standings players, deduplicated by (id, name)."""
    players: list[PlayerEntry] = []
    seen: set[tuple[int, str]] = set()
    for record in [*roster, *(standing.player for standing in standings)]:
        entry = PlayerEntry.from_record(record)
        key = (entry.id, entry.name)
        if key in seen:
            continue
        seen.add(key)
        players.append(entry)
    return players


def filter_decklists(
    event_id: int,
    decklists: Sequence[DecklistRecord],
    player_ids: set[int],
) -> list[DeckEntry]:
    """Keep decklists from players who took part in the event."""
    decks = []
    for deck in decklists:
        if deck.player_id not in player_ids:
            logger.debug(
                "decklist_player_unknown",
                event_id=event_id,
                deck_id=deck.deck_id,
                player=deck.player_name,
            )
            continue
        decks.append(
            DeckEntry(
                id=deck.deck_id,
                event_id=event_id,
                player=deck.player_name,
                mainboard=tuple(deck.mainboard),
                sideboard=tuple(deck.sideboard),
            )
        )
    return decks


class CompositeBuilder:
    """
    Assembles an EventComposite from a live tournament handle.

    Sub-collections are kept between calls to build(), so after a failure
    the caller can rebind a fresh handle and call build() again.
    """

    def __init__(
        self,
        handle: TournamentHandle,
        decklists: DecklistProvider | None = None,
        settings: Settings | None = None,
        config: dict[str, Any] | None = None,
    ):
        """
        Initialize the builder.

        Args:
            handle: Live tournament handle
            decklists: Decklist fetcher; decks are skipped when None
            settings: Optional settings override
            config: Optional classification rules override
        """
        self.handle = handle
        self.decklists = decklists
        self.settings = settings or get_settings()
        self.config = config

        self.event: EventEntry | None = None
        self.players: list[PlayerEntry] | None = None
        self.player_ids: set[int] | None = None
        self.standings: list[StandingEntry] | None = None
        self.decks: list[DeckEntry] | None = None

    def rebind(self, handle: TournamentHandle) -> None:
        """Point the builder at a freshly resolved handle."""
        self.handle = handle

    @property
    def missing(self) -> list[str]:
        """Sub-collections not read yet."""
        parts = {
            "event": self.event,
            "players": self.players,
            "standings": self.standings,
            "decks": self.decks,
        }
        return [name for name, value in parts.items() if value is None]

    async def build(self) -> EventComposite:
        """
        Build, or finish building, the composite.

        Raises:
            MalformedEventError: If event metadata cannot be parsed
            StandingsValidationError: If the standings are inconsistent
            CompositeBuildError: If a live read failed or timed out
        """
        start = time.monotonic()

        if self.event is None:
            try:
                self.event = await asyncio.to_thread(
                    EventEntry.from_handle, self.handle, self.config
                )
            except MalformedEventError:
                raise
            except Exception as e:
                raise CompositeBuildError(f"Event metadata read failed: {e}") from e
        event = self.event

        logger.info(
            "composite_building",
            event_id=event.id,
            name=event.name,
            missing=self.missing,
        )

        try:
            if self.players is None:
                self.players, self.player_ids = await asyncio.to_thread(self._read_players)
            if self.standings is None:
                self.standings = await self._build_standings(event)
            if self.decks is None:
                self.decks = await self._build_decks(event)
        except (MalformedEventError, StandingsValidationError, CompositeBuildError):
            raise
        except Exception as e:
            raise CompositeBuildError(
                f"Event {event.id}: live read failed: {e}"
            ) from e

        composite = EventComposite(
            event=event,
            players=self.players,
            standings=self.standings,
            decks=self.decks,
        )
        logger.info(
            "composite_built",
            event_id=event.id,
            players=len(composite.players),
            standings=len(composite.standings),
            matches=len(composite.matches),
            decks=len(composite.decks),
            elapsed_seconds=round(time.monotonic() - start, 2),
        )
        return composite

    def _read_players(self) -> tuple[list[PlayerEntry], set[int]]:
        roster = list(self.handle.players)
        standings = list(self.handle.standings)
        players = collect_players(roster, standings)
        return players, {player.id for player in players}

    async def _build_standings(self, event: EventEntry) -> list[StandingEntry]:
        records = await asyncio.to_thread(lambda: list(self.handle.standings))
        timeout = self.settings.standing_timeout_seconds

        standings = []
        for position, record in enumerate(records, start=1):
            try:
                standing = await asyncio.wait_for(
                    asyncio.to_thread(self._build_standing, event.id, record),
                    timeout=timeout,
                )
            except TimeoutError as e:
                raise CompositeBuildError(
                    f"Event {event.id}: standing {position} of {len(records)} exceeded {timeout}s"
                ) from e
            standings.append(standing)

        validate_standings(event.id, standings)
        logger.info("standings_validated", event_id=event.id, standings=len(standings))
        return standings

    def _build_standing(self, event_id: int, record: StandingRecord) -> StandingEntry:
        attempts = self.settings.match_retries
        player = record.player
        history: list[MatchRecord] = call_with_retries(
            lambda: list(record.previous_matches),
            attempts,
            description=f"match history for '{player.name}'",
        )
        matches = [
            call_with_retries(
                lambda match=match: MatchEntry.from_record(event_id, match, player),
                attempts,
                description=f"round {match.round} for '{player.name}'",
            )
            for match in history
        ]
        return StandingEntry.from_record(event_id, record, matches)

    async def _build_decks(self, event: EventEntry) -> list[DeckEntry]:
        if event.kind is EventType.PRELIMINARY or self.decklists is None:
            return []

        decklists = await self.decklists.get_decklists(event.id, event.name, event.date)
        if decklists is None:
            logger.info("decklists_not_available", event_id=event.id)
            return []

        return filter_decklists(event.id, decklists, self.player_ids or set())
