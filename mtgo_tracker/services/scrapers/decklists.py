"""MTGO decklist publication fetcher.

Decklists are published on mtgo.com some time after an event finishes,
under a slug built from the event name, its date and its id. The date in
the slug follows the server's timezone, so neighbouring dates are tried too.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

import structlog

from mtgo_tracker.models.types import CardQuantityPair
from mtgo_tracker.services.scrapers.pages import PageFetcher, ScraperError

logger = structlog.get_logger(__name__)

DECKLIST_BASE_URL = "https://www.mtgo.com/decklist"
DEFAULT_DATE_OFFSETS = (0, -1, 1, 2)

DECKLIST_DATA_PATTERN = re.compile(
    r"window\.MTGO\.decklists\.data\s*=\s*(\{.*?\});", re.DOTALL
)


@dataclass
class DecklistRecord:
    """A published decklist."""

    deck_id: int
    player_id: int
    player_name: str
    mainboard: list[CardQuantityPair] = field(default_factory=list)
    sideboard: list[CardQuantityPair] = field(default_factory=list)


def get_mtgo_url(event_id: int, name: str, event_date: date) -> str:
    """Build the decklist page URL for an event on a given date."""
    name_slug = name.lower().replace(" ", "-").replace("'", "").replace(".", "")
    return f"{DECKLIST_BASE_URL}/{name_slug}-{event_date.isoformat()}{event_id}"


def get_mtgo_urls(
    event_id: int,
    name: str,
    event_date: date,
    offsets: tuple[int, ...] | list[int] = DEFAULT_DATE_OFFSETS,
) -> list[str]:
    """Candidate decklist URLs in the order they are tried."""
    return [
        get_mtgo_url(event_id, name, event_date + timedelta(days=offset))
        for offset in offsets
    ]


def _parse_board(cards: list[dict[str, Any]]) -> list[CardQuantityPair]:
    return [
        CardQuantityPair(
            id=int(card["docid"]),
            name=card["card_attributes"]["card_name"],
            quantity=int(card["qty"]),
        )
        for card in cards
    ]


def parse_decklists(html: str) -> list[DecklistRecord] | None:
    """
    Extract decklists from a decklist page.

    Returns:
        The decklists, or None if the page carries no decklist data
    """
    match = DECKLIST_DATA_PATTERN.search(html)
    if match is None:
        return None

    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.debug("decklist_data_invalid", error=str(e))
        return None

    decklists = data.get("decklists")
    if not isinstance(decklists, list):
        return None

    return [
        DecklistRecord(
            deck_id=int(deck["decktournamentid"]),
            player_id=int(deck["loginid"]),
            player_name=deck["player"],
            mainboard=_parse_board(deck.get("main_deck", [])),
            sideboard=_parse_board(deck.get("sideboard_deck", [])),
        )
        for deck in decklists
    ]


class DecklistFetcher:
    """Looks up an event's published decklists."""

    def __init__(self, pages: PageFetcher, date_offsets: list[int] | None = None):
        self.pages = pages
        self.date_offsets = date_offsets or list(DEFAULT_DATE_OFFSETS)

    async def get_decklists(
        self, event_id: int, name: str, event_date: date
    ) -> list[DecklistRecord] | None:
        """
        Fetch an event's decklists.

        Returns:
            The decklists, or None if no publication exists yet
        """
        for url in get_mtgo_urls(event_id, name, event_date, self.date_offsets):
            try:
                response = await self.pages.get(url, follow_redirects=False)
            except ScraperError as e:
                logger.debug("decklist_fetch_failed", url=url, error=str(e))
                continue

            # Missing publications redirect back to the decklist index.
            if response.is_redirect:
                logger.debug(
                    "decklist_redirected",
                    url=url,
                    location=response.headers.get("location"),
                )
                continue

            decklists = parse_decklists(response.text)
            if decklists is not None:
                logger.debug("decklists_found", url=url, count=len(decklists))
                return decklists

        logger.info("decklists_not_found", event_id=event_id, name=name)
        return None
