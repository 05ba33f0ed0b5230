"""MTGO live client boundary.

The live client is an external process. This module defines the records
and capabilities the ingestion pipeline relies on:
- Plain record types for players, games, matches and standings
- Runtime-checkable protocols for tournament handles and event sources
- Error classification for live-client failures

Records handed out by a live source may be remote proxies. Reading their
attributes can block on the client and can raise EventSourceError when the
underlying object has gone stale, so callers read them off the event loop.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

# MTGO reports this id for anonymous accounts and for bye matches.
SENTINEL_ID = -1


class EventSourceError(Exception):
    """Live client error with classification."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class PlayerRecord:
    """An MTGO account as reported by the client."""

    id: int
    name: str


@dataclass
class GameRecord:
    """A single game within a match."""

    id: int
    winner_ids: list[int] = field(default_factory=list)


@dataclass
class MatchRecord:
    """A match from a standing's match history."""

    id: int
    round: int
    players: list[PlayerRecord] = field(default_factory=list)
    winner_ids: list[int] = field(default_factory=list)
    loser_ids: list[int] = field(default_factory=list)
    has_bye: bool = False
    games: list[GameRecord] = field(default_factory=list)


@dataclass
class StandingRecord:
    """A row of the final standings table."""

    rank: int
    player: PlayerRecord
    points: int
    omwp: str
    gwp: str
    ogwp: str
    previous_matches: list[MatchRecord] = field(default_factory=list)


@runtime_checkable
class TournamentHandle(Protocol):
    """A tournament-shaped event known to the live client."""

    id: int
    description: str
    start_time: datetime
    total_rounds: int
    total_players: int

    @property
    def is_completed(self) -> bool: ...

    @property
    def players(self) -> Sequence[PlayerRecord]: ...

    @property
    def standings(self) -> Sequence[StandingRecord]: ...


@runtime_checkable
class EventSource(Protocol):
    """The live client's event feed."""

    def list_events(self) -> Sequence[object]: ...

    def get_event(self, event_id: int) -> object: ...

    def close(self) -> None: ...


@runtime_checkable
class SubscribableEventSource(EventSource, Protocol):
    """An event source that pushes newly created events to a callback."""

    def subscribe(self, callback: Callable[[object], None]) -> None: ...


@runtime_checkable
class CacheClearingEventSource(EventSource, Protocol):
    """An event source whose client accumulates object caches."""

    def clear_caches(self) -> None: ...
