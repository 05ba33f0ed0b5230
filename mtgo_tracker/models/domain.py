"""Domain models for mtgo-tracker.

Events, standings, matches and decks are write-once snapshots of a finished
tournament. Players and archetypes are reference data that later passes
refresh in place.
"""

import datetime as dt
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mtgo_tracker.models.base import Base, JSONArray
from mtgo_tracker.models.types import EventType, FormatType, ResultType, enum_values

FORMAT_ENUM = Enum(FormatType, name="formattype", values_callable=enum_values)
EVENT_TYPE_ENUM = Enum(EventType, name="eventtype", values_callable=enum_values)
RESULT_ENUM = Enum(ResultType, name="resulttype", values_callable=enum_values)


class Event(Base):
    """
    A finished tournament.

    The id is assigned by MTGO. Rows are inserted exactly once; a second
    insert for the same id is a primary key violation.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    format: Mapped[FormatType] = mapped_column(FORMAT_ENUM, nullable=False)
    kind: Mapped[EventType] = mapped_column(EVENT_TYPE_ENUM, nullable=False)
    rounds: Mapped[int] = mapped_column(Integer, nullable=False)
    players: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    decks: Mapped[list["Deck"]] = relationship("Deck", back_populates="event")

    __table_args__ = (Index("idx_events_date", "date"),)

    def __repr__(self) -> str:
        return f"<Event {self.name} #{self.id} ({self.date})>"


class Player(Base):
    """
    MTGO account.

    Anonymous accounts and renamed accounts are stored under a negative
    synthetic id derived from the player name.
    """

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (Index("idx_players_name", "name"),)

    def __repr__(self) -> str:
        return f"<Player {self.name} ({self.id})>"


class Standing(Base):
    """Final standing of one player in an event."""

    __tablename__ = "standings"

    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id"), primary_key=True
    )
    rank: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    player: Mapped[str] = mapped_column(String(100), nullable=False)
    record: Mapped[str] = mapped_column(String(20), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    omwp: Mapped[float] = mapped_column(Float, nullable=False)
    gwp: Mapped[float] = mapped_column(Float, nullable=False)
    ogwp: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("event_id", "player", name="uq_standings_event_player"),
    )

    def __repr__(self) -> str:
        return f"<Standing {self.event_id} #{self.rank} {self.player} {self.record}>"


class Match(Base):
    """
    One round of an event from a single player's side.

    Every non-bye match appears twice, once per participant. Byes carry no
    match id, no opponent and no games.
    """

    __tablename__ = "matches"

    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id"), primary_key=True
    )
    round: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    player: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    opponent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    record: Mapped[str] = mapped_column(String(20), nullable=False)
    result: Mapped[ResultType] = mapped_column(RESULT_ENUM, nullable=False)
    is_bye: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    games: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONArray, nullable=False, doc="GameResult[] as [{id, result}]"
    )

    __table_args__ = (Index("idx_matches_id", "id"),)

    def __repr__(self) -> str:
        return f"<Match {self.event_id} R{self.round} {self.player} {self.result}>"


class Deck(Base):
    """
    A decklist published for an event.

    The id is MTGO's tournament-scoped deck id, not a collection id.
    """

    __tablename__ = "decks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id"), nullable=False
    )
    player: Mapped[str] = mapped_column(String(100), nullable=False)
    mainboard: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONArray, nullable=False, doc="CardQuantityPair[] as [{id, name, quantity}]"
    )
    sideboard: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONArray, nullable=False, doc="CardQuantityPair[] as [{id, name, quantity}]"
    )

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="decks")

    __table_args__ = (Index("idx_decks_event", "event_id"),)

    def __repr__(self) -> str:
        return f"<Deck {self.id} {self.player} (event {self.event_id})>"


class Archetype(Base):
    """
    Archetype label for a deck, scraped from MTGGoldfish.

    The id is MTGGoldfish's deck id. Rows are refreshed by every
    classification pass.
    """

    __tablename__ = "archetypes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    deck_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("decks.id"), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    archetype: Mapped[str] = mapped_column(String(200), nullable=False)
    archetype_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Archetype {self.archetype} (deck {self.deck_id})>"


class JobRun(Base):
    """
    Task execution audit log.

    Every drain pass and archetype back-fill pass is logged here.
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'success', 'failed'"
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONArray, nullable=True
    )

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"
