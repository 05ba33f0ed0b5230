"""Event ingestion pipeline.

Finished tournaments flow from the live client through the event queue,
are assembled into composites and written by the repository.
"""

from mtgo_tracker.services.ingestion.composite import (
    CompositeBuildError,
    CompositeBuilder,
    EventComposite,
)
from mtgo_tracker.services.ingestion.decks import DecklistBackfill
from mtgo_tracker.services.ingestion.entries import (
    ArchetypeEntry,
    DeckEntry,
    EventEntry,
    MalformedEventError,
    MatchEntry,
    PlayerEntry,
    StandingEntry,
    synthetic_player_id,
)
from mtgo_tracker.services.ingestion.queue import EventQueue, get_next_reset
from mtgo_tracker.services.ingestion.repository import (
    DecklessEvent,
    EventRepository,
    UnlabeledEvent,
)
from mtgo_tracker.services.ingestion.validation import (
    StandingsValidationError,
    validate_standings,
)

__all__ = [
    "ArchetypeEntry",
    "CompositeBuildError",
    "CompositeBuilder",
    "DeckEntry",
    "DecklessEvent",
    "DecklistBackfill",
    "EventComposite",
    "EventEntry",
    "EventQueue",
    "EventRepository",
    "MalformedEventError",
    "MatchEntry",
    "PlayerEntry",
    "StandingEntry",
    "StandingsValidationError",
    "UnlabeledEvent",
    "get_next_reset",
    "synthetic_player_id",
    "validate_standings",
]
