"""MTGO live client boundary."""

from mtgo_tracker.services.mtgo_client.api import (
    SENTINEL_ID,
    CacheClearingEventSource,
    EventSource,
    EventSourceError,
    GameRecord,
    MatchRecord,
    PlayerRecord,
    StandingRecord,
    SubscribableEventSource,
    TournamentHandle,
)
from mtgo_tracker.services.mtgo_client.session import (
    ClientSession,
    load_event_source_factory,
)

__all__ = [
    "SENTINEL_ID",
    "CacheClearingEventSource",
    "ClientSession",
    "EventSource",
    "EventSourceError",
    "GameRecord",
    "MatchRecord",
    "PlayerRecord",
    "StandingRecord",
    "SubscribableEventSource",
    "TournamentHandle",
    "load_event_source_factory",
]
