"""Database models for mtgo-tracker."""

from mtgo_tracker.models.base import (
    Base,
    get_engine,
    get_session_factory,
    task_session_factory,
)
from mtgo_tracker.models.domain import (
    Archetype,
    Deck,
    Event,
    JobRun,
    Match,
    Player,
    Standing,
)
from mtgo_tracker.models.types import (
    CardQuantityPair,
    EventType,
    FormatType,
    GameResult,
    ResultType,
)

__all__ = [
    # Base
    "Base",
    "get_engine",
    "get_session_factory",
    "task_session_factory",
    # Domain models
    "Event",
    "Player",
    "Standing",
    "Match",
    "Deck",
    "Archetype",
    "JobRun",
    # Value types
    "FormatType",
    "EventType",
    "ResultType",
    "GameResult",
    "CardQuantityPair",
]
