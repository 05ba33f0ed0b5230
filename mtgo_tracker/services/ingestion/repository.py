"""Persistence of event composites and archetype labels.

Every public method opens its own session from the pool, so one failed
write never leaves a half-used session behind for the next caller.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mtgo_tracker.models.domain import (
    Archetype,
    Deck,
    Event,
    Match,
    Player,
    Standing,
)
from mtgo_tracker.models.types import CardQuantityPair, EventType, FormatType
from mtgo_tracker.services.ingestion.composite import EventComposite
from mtgo_tracker.services.ingestion.entries import (
    ArchetypeEntry,
    DeckEntry,
    PlayerEntry,
    synthetic_player_id,
)

logger = structlog.get_logger(__name__)


@dataclass
class UnlabeledEvent:
    """An event with decks still missing an archetype label."""

    id: int
    name: str
    date: date
    format: FormatType
    unlabeled_decks: int


@dataclass
class DecklessEvent:
    """A written event whose decklists were not published yet."""

    id: int
    name: str
    date: date


def _dialect_insert(session: AsyncSession):
    """The insert construct with on_conflict support for the bound dialect."""
    if session.bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


class EventRepository:
    """Reads and writes events, players, decks and archetype labels."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def event_exists(self, event_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Event.id).where(Event.id == event_id)
            )
            return result.scalar_one_or_none() is not None

    async def add_event(self, composite: EventComposite) -> None:
        """
        Write a composite in a single transaction.

        Events are write-once: a second call for the same event id fails on
        the primary key and rolls back without touching the first write.

        Raises:
            sqlalchemy.exc.IntegrityError: If the event already exists
        """
        event = composite.event
        async with self.session_factory() as session:
            async with session.begin():
                session.add(
                    Event(
                        id=event.id,
                        name=event.name,
                        date=event.date,
                        format=event.format,
                        kind=event.kind,
                        rounds=event.rounds,
                        players=event.players,
                    )
                )
                await session.flush()

                await self._reconcile_players(session, composite.players)

                for standing in composite.standings:
                    session.add(
                        Standing(
                            event_id=event.id,
                            rank=standing.rank,
                            player=standing.player,
                            record=standing.record,
                            points=standing.points,
                            omwp=standing.omwp,
                            gwp=standing.gwp,
                            ogwp=standing.ogwp,
                        )
                    )

                for match in composite.matches:
                    session.add(
                        Match(
                            id=match.id,
                            event_id=event.id,
                            round=match.round,
                            player=match.player,
                            opponent=match.opponent,
                            record=match.record,
                            result=match.result,
                            is_bye=match.is_bye,
                            games=[game.to_dict() for game in match.games],
                        )
                    )

                for deck in composite.decks:
                    session.add(
                        Deck(
                            id=deck.id,
                            event_id=event.id,
                            player=deck.player,
                            mainboard=[card.to_dict() for card in deck.mainboard],
                            sideboard=[card.to_dict() for card in deck.sideboard],
                        )
                    )

        logger.debug(
            "event_rows_written",
            event_id=event.id,
            standings=len(composite.standings),
            matches=len(composite.matches),
            decks=len(composite.decks),
        )

    async def _reconcile_players(
        self, session: AsyncSession, players: list[PlayerEntry]
    ) -> None:
        """
        Insert or update players.

        Every id carries the latest name it was seen with. When a real MTGO
        id is renamed, its previous name is kept as an alias row under the
        previous name's synthetic id, unless that name is still stored under
        some other id.
        """
        for player in players:
            existing = await session.get(Player, player.id)
            if existing is None:
                session.add(Player(id=player.id, name=player.name))
                await session.flush()
                continue

            if existing.name == player.name:
                continue

            previous_name = existing.name
            existing.name = player.name
            await session.flush()
            if player.is_synthetic:
                continue

            alias_owner = await session.scalar(
                select(Player.id).where(Player.name == previous_name).limit(1)
            )
            if alias_owner is not None:
                continue

            alias_id = synthetic_player_id(previous_name)
            alias = await session.get(Player, alias_id)
            if alias is None:
                session.add(Player(id=alias_id, name=previous_name))
            else:
                alias.name = previous_name
            await session.flush()
            logger.info(
                "player_alias_added",
                player_id=player.id,
                name=player.name,
                previous_name=previous_name,
                alias_id=alias_id,
            )

    async def add_decks(self, event_id: int, decks: list[DeckEntry]) -> int:
        """
        Upsert decklists for an event that is already written.

        Decklists are published some time after an event ends, so they are
        filled in by later passes. Card lists are refreshed on conflict.

        Returns:
            Number of decks written
        """
        if not decks:
            return 0

        async with self.session_factory() as session:
            async with session.begin():
                insert = _dialect_insert(session)
                for deck in decks:
                    values: dict[str, Any] = {
                        "event_id": event_id,
                        "player": deck.player,
                        "mainboard": [card.to_dict() for card in deck.mainboard],
                        "sideboard": [card.to_dict() for card in deck.sideboard],
                    }
                    stmt = insert(Deck).values(id=deck.id, **values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["id"],
                        set_=values,
                    )
                    await session.execute(stmt)

        logger.debug("deck_rows_written", event_id=event_id, decks=len(decks))
        return len(decks)

    async def get_events_without_decks(
        self, days: int, today: date | None = None
    ) -> list[DecklessEvent]:
        """
        Recent events that publish decklists but have none stored.

        Preliminaries never publish decklists and are left out.
        """
        cutoff = (today or date.today()) - timedelta(days=days)
        has_decks = select(Deck.id).where(Deck.event_id == Event.id).exists()
        stmt = (
            select(Event.id, Event.name, Event.date)
            .where(
                Event.date >= cutoff,
                Event.kind != EventType.PRELIMINARY,
                ~has_decks,
            )
            .order_by(Event.date.desc(), Event.id)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                DecklessEvent(id=row.id, name=row.name, date=row.date)
                for row in result
            ]

    async def get_event_player_ids(self, event_id: int) -> set[int]:
        """Ids of the players listed in an event's standings."""
        stmt = (
            select(Player.id)
            .join(Standing, Standing.player == Player.name)
            .where(Standing.event_id == event_id)
        )
        async with self.session_factory() as session:
            return set((await session.scalars(stmt)).all())

    async def add_archetype_entries(self, entries: list[ArchetypeEntry]) -> int:
        """
        Upsert archetype labels keyed by id.

        Every field is refreshed on conflict. A stale label held by the same
        deck under another id is replaced.

        Returns:
            Number of entries written
        """
        if not entries:
            return 0

        async with self.session_factory() as session:
            async with session.begin():
                insert = _dialect_insert(session)
                for entry in entries:
                    await session.execute(
                        delete(Archetype).where(
                            Archetype.deck_id == entry.deck_id,
                            Archetype.id != entry.id,
                        )
                    )
                    values: dict[str, Any] = {
                        "deck_id": entry.deck_id,
                        "name": entry.name,
                        "archetype": entry.archetype,
                        "archetype_id": entry.archetype_id,
                    }
                    stmt = insert(Archetype).values(id=entry.id, **values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["id"],
                        set_=values,
                    )
                    await session.execute(stmt)

        return len(entries)

    async def get_unlabeled_events(
        self, days: int, today: date | None = None
    ) -> list[UnlabeledEvent]:
        """
        Recent events with at least one deck lacking an archetype label.

        Args:
            days: Size of the trailing window, in days
            today: Reference date, defaults to the current date
        """
        cutoff = (today or date.today()) - timedelta(days=days)
        unlabeled = func.count(Deck.id).label("unlabeled_decks")
        stmt = (
            select(Event.id, Event.name, Event.date, Event.format, unlabeled)
            .join(Deck, Deck.event_id == Event.id)
            .outerjoin(Archetype, Archetype.deck_id == Deck.id)
            .where(Archetype.id.is_(None), Event.date >= cutoff)
            .group_by(Event.id, Event.name, Event.date, Event.format)
            .order_by(Event.date.desc(), Event.id)
        )

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                UnlabeledEvent(
                    id=row.id,
                    name=row.name,
                    date=row.date,
                    format=row.format,
                    unlabeled_decks=row.unlabeled_decks,
                )
                for row in result
            ]

    async def get_decks_by_event(self, event_id: int) -> list[DeckEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Deck).where(Deck.event_id == event_id).order_by(Deck.id)
            )
            return [
                DeckEntry(
                    id=deck.id,
                    event_id=deck.event_id,
                    player=deck.player,
                    mainboard=tuple(CardQuantityPair.from_dict(c) for c in deck.mainboard),
                    sideboard=tuple(CardQuantityPair.from_dict(c) for c in deck.sideboard),
                )
                for deck in result.scalars()
            ]
