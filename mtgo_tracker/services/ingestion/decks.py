"""Decklist re-visits.

MTGO publishes decklists some time after an event ends. An event drained
before its publication is written without decks; this pass fetches them
once they appear.
"""

import time
from datetime import date
from typing import Any

import structlog

from mtgo_tracker.config import Settings, get_settings
from mtgo_tracker.services.ingestion.composite import DecklistProvider, filter_decklists
from mtgo_tracker.services.ingestion.repository import DecklessEvent, EventRepository

logger = structlog.get_logger(__name__)


class DecklistBackfill:
    """Fills in decks for recent events written before publication."""

    def __init__(
        self,
        repository: EventRepository,
        decklists: DecklistProvider,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.decklists = decklists
        self.settings = settings or get_settings()

    async def update_decks(self, today: date | None = None) -> dict[str, Any]:
        """
        Run one pass over recent events with no stored decks.

        Returns:
            Pass statistics
        """
        stats = {
            "events": 0,
            "events_published": 0,
            "events_failed": 0,
            "decks": 0,
        }
        events = await self.repository.get_events_without_decks(
            self.settings.decklist_lookback_days, today=today
        )

        for event in events:
            stats["events"] += 1
            start = time.monotonic()
            try:
                written = await self.update_event(event)
            except Exception as e:
                stats["events_failed"] += 1
                logger.error(
                    "decklist_update_failed",
                    event_id=event.id,
                    name=event.name,
                    error=str(e),
                )
                continue

            if written is not None:
                stats["events_published"] += 1
                stats["decks"] += written
            logger.info(
                "decklist_event_done",
                event_id=event.id,
                published=written is not None,
                decks=written or 0,
                elapsed_seconds=round(time.monotonic() - start, 2),
            )

        logger.info("decklist_update_complete", **stats)
        return stats

    async def update_event(self, event: DecklessEvent) -> int | None:
        """
        Fetch and store one event's decklists.

        Returns:
            Number of decks written, or None if still unpublished
        """
        decklists = await self.decklists.get_decklists(event.id, event.name, event.date)
        if decklists is None:
            logger.debug("decklists_not_available", event_id=event.id)
            return None

        player_ids = await self.repository.get_event_player_ids(event.id)
        decks = filter_decklists(event.id, decklists, player_ids)
        return await self.repository.add_decks(event.id, decks)
