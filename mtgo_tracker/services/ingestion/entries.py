"""Normalized records derived from live tournament data.

Every entry here is a plain snapshot: it is built fresh from the live
client on each processing attempt and never mutated afterwards.
"""

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from typing import Any

import structlog

from mtgo_tracker.config import get_settings
from mtgo_tracker.models.types import (
    CardQuantityPair,
    EventType,
    FormatType,
    GameResult,
    ResultType,
)
from mtgo_tracker.services.mtgo_client.api import (
    SENTINEL_ID,
    GameRecord,
    MatchRecord,
    PlayerRecord,
    StandingRecord,
    TournamentHandle,
)

logger = structlog.get_logger(__name__)

BYE_RECORD = "2-0-0"


class MalformedEventError(ValueError):
    """Raised when event metadata cannot be normalized."""

    pass


@lru_cache
def _load_default_config() -> dict[str, Any]:
    """Load classification rules from defaults.yaml."""
    return get_settings().load_defaults_config()


def get_format_type(description: str, config: dict[str, Any] | None = None) -> FormatType:
    """
    Derive an event's format from its description.

    Special rules from the config are checked first, then every format name
    is tried as a substring in declaration order.

    Raises:
        MalformedEventError: If no format matches
    """
    if config is None:
        config = _load_default_config()

    for rule in config.get("formats", {}).get("special", []):
        if all(token in description for token in rule.get("tokens", [])):
            return FormatType(rule["format"])

    for format_type in FormatType:
        if format_type.value in description:
            return format_type

    raise MalformedEventError(f"Event '{description}' has an invalid format.")


def get_event_type(description: str, config: dict[str, Any] | None = None) -> EventType:
    """
    Derive an event's kind from its description.

    Raises:
        MalformedEventError: If no kind matches
    """
    if config is None:
        config = _load_default_config()

    for pattern, kind in config.get("kinds", {}).get("aliases", {}).items():
        if pattern in description:
            return EventType(kind)

    for event_type in EventType:
        if event_type.value in description:
            return event_type

    raise MalformedEventError(f"Event '{description}' has an invalid event type.")


def is_excluded_event(name: str, config: dict[str, Any] | None = None) -> bool:
    """Check whether an event name marks a non-tournament event (queues, drafts)."""
    if config is None:
        config = _load_default_config()
    patterns = config.get("events", {}).get("excluded_patterns", [])
    return any(pattern in name for pattern in patterns)


def parse_percentage(value: str) -> float:
    """Parse an 'NN.NN%' string to a float."""
    return float(value.strip().rstrip("%"))


def synthetic_player_id(name: str) -> int:
    """
    Derive a stable negative id from a player name.

    Pure function of the name, so it is identical across calls and
    processes. Never returns the sentinel id.
    """
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    value = int.from_bytes(digest[:4], "big") % (2**31 - 2)
    return -(value + 2)


def resolve_player_id(player: PlayerRecord) -> int:
    """Use the MTGO id, or a synthetic id for anonymous accounts."""
    if player.id == SENTINEL_ID:
        return synthetic_player_id(player.name)
    return player.id


def get_game_result(game: GameRecord, player_id: int) -> ResultType:
    if player_id in game.winner_ids:
        return ResultType.WIN
    if game.winner_ids:
        return ResultType.LOSS
    return ResultType.DRAW


def format_record(results: Sequence[ResultType]) -> str:
    """Format results as a 'wins-losses-draws' string."""
    return "{}-{}-{}".format(
        sum(1 for r in results if r is ResultType.WIN),
        sum(1 for r in results if r is ResultType.LOSS),
        sum(1 for r in results if r is ResultType.DRAW),
    )


@dataclass(frozen=True)
class EventEntry:
    id: int
    name: str
    date: date
    format: FormatType
    kind: EventType
    rounds: int
    players: int

    @classmethod
    def from_handle(
        cls, handle: TournamentHandle, config: dict[str, Any] | None = None
    ) -> "EventEntry":
        """
        Build event metadata from a tournament handle.

        Raises:
            MalformedEventError: If the id, format or kind is invalid
        """
        if handle.id is None or handle.id <= 0:
            raise MalformedEventError(f"Event '{handle.description}' has an invalid id.")
        description = handle.description
        return cls(
            id=handle.id,
            name=description,
            date=handle.start_time.date(),
            format=get_format_type(description, config),
            kind=get_event_type(description, config),
            rounds=handle.total_rounds,
            players=handle.total_players,
        )


@dataclass(frozen=True)
class PlayerEntry:
    id: int
    name: str

    @classmethod
    def from_record(cls, player: PlayerRecord) -> "PlayerEntry":
        if not player.name:
            raise MalformedEventError(f"Player {player.id} has no name.")
        return cls(id=resolve_player_id(player), name=player.name)

    @property
    def is_synthetic(self) -> bool:
        return self.id < 0


@dataclass(frozen=True)
class MatchEntry:
    """One match from one participant's side."""

    id: int | None
    event_id: int
    round: int
    player: str
    opponent: str | None
    record: str
    result: ResultType
    is_bye: bool
    games: tuple[GameResult, ...] = ()

    @classmethod
    def from_record(
        cls, event_id: int, match: MatchRecord, player: PlayerRecord
    ) -> "MatchEntry":
        if match.has_bye:
            return cls(
                id=None if match.id == SENTINEL_ID else match.id,
                event_id=event_id,
                round=match.round,
                player=player.name,
                opponent=None,
                record=BYE_RECORD,
                result=ResultType.WIN,
                is_bye=True,
            )

        opponent = next(
            (
                p.name
                for p in match.players
                if (p.id, p.name) != (player.id, player.name)
            ),
            None,
        )
        if player.id in match.winner_ids:
            result = ResultType.WIN
        elif player.id in match.loser_ids:
            result = ResultType.LOSS
        else:
            result = ResultType.DRAW

        games = tuple(
            GameResult(id=game.id, result=get_game_result(game, player.id))
            for game in match.games
        )
        return cls(
            id=match.id,
            event_id=event_id,
            round=match.round,
            player=player.name,
            opponent=opponent,
            record=format_record([g.result for g in games]),
            result=result,
            is_bye=False,
            games=games,
        )


@dataclass(frozen=True)
class StandingEntry:
    event_id: int
    rank: int
    player: str
    record: str
    points: int
    omwp: float
    gwp: float
    ogwp: float
    matches: tuple[MatchEntry, ...] = field(default=(), compare=False)

    @classmethod
    def from_record(
        cls,
        event_id: int,
        standing: StandingRecord,
        matches: Sequence[MatchEntry],
    ) -> "StandingEntry":
        return cls(
            event_id=event_id,
            rank=standing.rank,
            player=standing.player.name,
            record=format_record([m.result for m in matches]),
            points=standing.points,
            omwp=parse_percentage(standing.omwp),
            gwp=parse_percentage(standing.gwp),
            ogwp=parse_percentage(standing.ogwp),
            matches=tuple(matches),
        )

    @property
    def wins(self) -> int:
        return sum(1 for m in self.matches if m.result is ResultType.WIN)

    @property
    def losses(self) -> int:
        return sum(1 for m in self.matches if m.result is ResultType.LOSS)

    @property
    def draws(self) -> int:
        return sum(1 for m in self.matches if m.result is ResultType.DRAW)


@dataclass(frozen=True)
class DeckEntry:
    id: int
    event_id: int
    player: str
    mainboard: tuple[CardQuantityPair, ...]
    sideboard: tuple[CardQuantityPair, ...]


@dataclass(frozen=True)
class ArchetypeEntry:
    id: int
    deck_id: int
    name: str
    archetype: str
    archetype_id: int | None
