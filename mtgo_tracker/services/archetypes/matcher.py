"""Archetype back-fill from MTGGoldfish.

MTGGoldfish and MTGO share no event id, so an event is located by name and
date, then confirmed through the MTGO decklist URL the MTGGoldfish page
cites as its source. Each deck is then labeled from the confirmed page's
standings table.
"""

import re
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import structlog

from mtgo_tracker.config import Settings, get_settings
from mtgo_tracker.services.ingestion.entries import ArchetypeEntry
from mtgo_tracker.services.ingestion.repository import EventRepository, UnlabeledEvent
from mtgo_tracker.services.scrapers.decklists import get_mtgo_urls
from mtgo_tracker.services.scrapers.goldfish import (
    GoldfishClient,
    StandingRow,
    TournamentCandidate,
)

logger = structlog.get_logger(__name__)

MAX_STANDINGS_PAGES = 50

TITLE_ID_PATTERN = re.compile(r"#(\d+)")


@dataclass
class PlayerArchetype:
    """A player's deck as labeled by MTGGoldfish."""

    deck_id: int
    raw_name: str
    label: str | None
    archetype_id: int | None

    @property
    def archetype(self) -> str:
        return self.label or self.raw_name


def get_name_prefix(name: str) -> str:
    """The part of an event name before the ' - ' separator."""
    return name.split(" - ", 1)[0].strip()


def is_candidate(candidate: TournamentCandidate, event_id: int, name_prefix: str) -> bool:
    """
    Cheap title check before a candidate page is fetched.

    MTGGoldfish titles often end in '#<id>'; a title carrying some other id
    is a different event.
    """
    title = candidate.title
    match = TITLE_ID_PATTERN.search(title)
    if match and int(match.group(1)) != event_id:
        return False
    return name_prefix.lower() in title.lower()


def is_backlink_match(
    backlink: str | None, source_urls: list[str], event_id: int
) -> bool:
    if not backlink:
        return False
    backlink = backlink.rstrip("/")
    return backlink in source_urls or backlink.endswith(str(event_id))


def resolve_archetype(
    raw_name: str, groups: dict[str, int]
) -> tuple[str | None, int | None]:
    """
    Resolve a deck's raw name against the event's archetype groups.

    Tries the raw name, then the raw name without its first word, so that
    'Boros Burn' still resolves to 'Burn'.

    Returns:
        (label, archetype id), both None when unresolved
    """
    if raw_name in groups:
        return raw_name, groups[raw_name]

    words = raw_name.split(" ")
    if len(words) > 1:
        fallback = " ".join(words[1:])
        if fallback in groups:
            return fallback, groups[fallback]

    return None, None


class ArchetypeMatcher:
    """Labels recently ingested decks with MTGGoldfish archetypes."""

    def __init__(
        self,
        repository: EventRepository,
        goldfish: GoldfishClient,
        settings: Settings | None = None,
    ):
        self.repository = repository
        self.goldfish = goldfish
        self.settings = settings or get_settings()

    async def update_archetypes(self, today: date | None = None) -> dict[str, Any]:
        """
        Run one back-fill pass over recent unlabeled events.

        A failure on one event is logged and the pass moves on; the next
        scheduled pass retries it.

        Returns:
            Pass statistics
        """
        stats = {
            "events": 0,
            "events_skipped": 0,
            "events_matched": 0,
            "events_failed": 0,
            "archetypes": 0,
        }
        events = await self.repository.get_unlabeled_events(
            self.settings.archetype_lookback_days, today=today
        )

        for event in events:
            stats["events"] += 1
            if event.unlabeled_decks < self.settings.archetype_min_unlabeled_decks:
                stats["events_skipped"] += 1
                continue

            start = time.monotonic()
            try:
                written = await self.update_event(event)
            except Exception as e:
                stats["events_failed"] += 1
                logger.error(
                    "archetype_update_failed",
                    event_id=event.id,
                    name=event.name,
                    error=str(e),
                )
                continue

            if written is not None:
                stats["events_matched"] += 1
                stats["archetypes"] += written
            logger.info(
                "archetype_event_done",
                event_id=event.id,
                matched=written is not None,
                archetypes=written or 0,
                elapsed_seconds=round(time.monotonic() - start, 2),
            )

        logger.info("archetype_update_complete", **stats)
        return stats

    async def update_event(self, event: UnlabeledEvent) -> int | None:
        """
        Label one event's decks.

        Returns:
            Number of labels written, or None if no MTGGoldfish event matched
        """
        url = await self.find_event_url(event)
        if url is None:
            logger.info("archetype_event_unmatched", event_id=event.id, name=event.name)
            return None

        archetypes = await self.get_player_archetypes(url)
        decks = await self.repository.get_decks_by_event(event.id)

        entries = []
        for deck in decks:
            match = archetypes.get(deck.player)
            if match is None:
                continue
            entries.append(
                ArchetypeEntry(
                    id=match.deck_id,
                    deck_id=deck.id,
                    name=match.raw_name,
                    archetype=match.archetype,
                    archetype_id=match.archetype_id,
                )
            )

        return await self.repository.add_archetype_entries(entries)

    async def find_event_url(self, event: UnlabeledEvent) -> str | None:
        """Search MTGGoldfish for the event and confirm it by its source URL."""
        name_prefix = get_name_prefix(event.name)
        before, after = self.settings.archetype_search_window
        candidates = await self.goldfish.search_events(
            name_prefix,
            event.format.value,
            event.date + timedelta(days=before),
            event.date + timedelta(days=after),
        )

        source_urls = get_mtgo_urls(
            event.id, event.name, event.date, self.settings.decklist_date_offsets
        )
        for candidate in candidates:
            if not is_candidate(candidate, event.id, name_prefix):
                continue
            backlink = await self.goldfish.get_backlink(candidate.id)
            if is_backlink_match(backlink, source_urls, event.id):
                logger.info(
                    "archetype_event_matched",
                    event_id=event.id,
                    url=candidate.url,
                    title=candidate.title,
                )
                return candidate.url
        return None

    async def get_player_archetypes(self, url: str) -> dict[str, PlayerArchetype]:
        """
        Map each player on a MTGGoldfish tournament page to a label.

        Rows whose raw name does not resolve fall back to the archetype
        linked from the deck's own page. Rows without a deck link carry no
        deck id and are skipped.
        """
        groups = await self.goldfish.get_event_archetype_groups(url)

        players: dict[str, PlayerArchetype] = {}
        seen_decks: set[int] = set()
        for page in range(1, MAX_STANDINGS_PAGES + 1):
            rows = await self.goldfish.get_standings_page(url, page)
            new_rows = [row for row in rows if row.deck_id not in seen_decks]
            if not new_rows:
                break
            for row in new_rows:
                seen_decks.add(row.deck_id)
                if row.deck_id <= 0:
                    logger.debug("standing_row_without_deck", player=row.player)
                    continue
                players[row.player] = self._from_row(row, groups)

        for player, entry in players.items():
            if entry.archetype_id is not None:
                continue
            label = await self.goldfish.get_deck_archetype_label(entry.deck_id)
            if label is None:
                continue
            players[player] = PlayerArchetype(
                deck_id=entry.deck_id,
                raw_name=entry.raw_name,
                label=label,
                archetype_id=groups.get(label),
            )

        return players

    @staticmethod
    def _from_row(row: StandingRow, groups: dict[str, int]) -> PlayerArchetype:
        label, archetype_id = resolve_archetype(row.raw_name, groups)
        return PlayerArchetype(
            deck_id=row.deck_id,
            raw_name=row.raw_name,
            label=label,
            archetype_id=archetype_id,
        )
