"""MTGGoldfish tournament and archetype fetcher.

MTGGoldfish republishes MTGO events with its own ids and labels each deck
with an archetype. Pages are parsed with selectolax; the parse functions
are pure so they can be tested against saved HTML.
"""

import re
from dataclasses import dataclass
from datetime import date

import structlog
from selectolax.parser import HTMLParser

from mtgo_tracker.services.scrapers.pages import PageFetcher, ScraperError

logger = structlog.get_logger(__name__)

GOLDFISH_BASE_URL = "https://www.mtggoldfish.com"
SEARCH_URL = f"{GOLDFISH_BASE_URL}/tournament_searches/create"
MAX_SEARCH_PAGES = 20

DECK_ID_PATTERN = re.compile(r"\((\d+)\)")
TRAILING_ID_PATTERN = re.compile(r"(\d+)$")


@dataclass
class TournamentCandidate:
    """A search result."""

    id: int
    title: str

    @property
    def url(self) -> str:
        return tournament_url(self.id)


@dataclass
class StandingRow:
    """A row of a tournament's standings table."""

    raw_name: str
    player: str
    deck_id: int


def tournament_url(tournament_id: int) -> str:
    return f"{GOLDFISH_BASE_URL}/tournament/{tournament_id}"


def deck_url(deck_id: int) -> str:
    return f"{GOLDFISH_BASE_URL}/deck/{deck_id}"


def _trailing_id(href: str | None) -> int | None:
    """The id at the end of a link's last path segment.

    Handles '/tournament/48001', '/archetype/modern-burn-1234' and
    '/archetype/19289#paper'.
    """
    if not href:
        return None
    path = href.split("#", 1)[0].split("?", 1)[0]
    tail = path.rstrip("/").rsplit("/", 1)[-1]
    match = TRAILING_ID_PATTERN.search(tail)
    return int(match.group(1)) if match else None


def parse_search_results(tree: HTMLParser) -> list[TournamentCandidate]:
    """Extract (id, title) pairs from a tournament search results page."""
    table = tree.css_first("table.table.table-striped")
    if table is None:
        return []

    candidates = []
    for link in table.css("tr > td:nth-child(2) > a"):
        tournament_id = _trailing_id(link.attributes.get("href"))
        if tournament_id is None:
            continue
        candidates.append(TournamentCandidate(id=tournament_id, title=link.text(strip=True)))
    return candidates


def parse_backlink(tree: HTMLParser) -> str | None:
    """The MTGO decklist URL a tournament page was sourced from."""
    for link in tree.css("div > p > a"):
        href = link.attributes.get("href") or ""
        if "mtgo.com/decklist/" in href:
            return href
    return None


def parse_archetype_groups(tree: HTMLParser) -> dict[str, int]:
    """Map archetype label to archetype id from a tournament's metagame table."""
    table = tree.css_first("table.table.table-striped.table-sm")
    if table is None:
        return {}

    groups = {}
    for link in table.css("tr > td:first-child > a"):
        archetype_id = _trailing_id(link.attributes.get("href"))
        if archetype_id is None:
            continue
        groups[link.text(strip=True)] = archetype_id
    return groups


def parse_standings_rows(tree: HTMLParser) -> list[StandingRow]:
    """Extract (raw name, player, deck id) rows from a standings page."""
    table = tree.css_first("table.table-tournament")
    if table is None:
        return []

    rows = []
    for row in table.css("tr"):
        if (row.attributes.get("style") or "").strip() == "display: none;":
            continue

        links = row.css("td > a")
        if len(links) < 3:
            continue

        raw_name = links[0].text(strip=True)
        player = links[1].text(strip=True)
        if not raw_name or not player:
            continue

        # href="javascript:expand_deck(7626769)"
        match = DECK_ID_PATTERN.search(links[2].attributes.get("href") or "")
        deck_id = int(match.group(1)) if match else 0
        rows.append(StandingRow(raw_name=raw_name, player=player, deck_id=deck_id))
    return rows


def parse_deck_archetype_label(tree: HTMLParser) -> str | None:
    """The archetype a deck page links to, if any."""
    info = tree.css_first("p.deck-container-information")
    if info is None:
        return None

    for link in info.css("a"):
        if "/archetype/" in (link.attributes.get("href") or ""):
            label = link.text(strip=True)
            return label or None
    return None


class GoldfishClient:
    """Fetches MTGGoldfish tournament data."""

    def __init__(self, pages: PageFetcher):
        self.pages = pages

    async def search_events(
        self,
        name: str | None,
        format_name: str | None,
        start_date: date,
        end_date: date,
    ) -> list[TournamentCandidate]:
        """
        Run a tournament search and collect every result page.

        MTGGoldfish answers 400 once the page number is out of range.
        """
        params = {
            "commit": "Search",
            "tournament_search[date_range]": (
                f"{start_date:%m/%d/%Y} - {end_date:%m/%d/%Y}"
            ),
        }
        if name:
            params["tournament_search[name]"] = name
        if format_name:
            params["tournament_search[format]"] = format_name.lower()

        candidates: list[TournamentCandidate] = []
        for page in range(1, MAX_SEARCH_PAGES + 1):
            try:
                tree = await self.pages.get_html(SEARCH_URL, params={**params, "page": page})
            except ScraperError as e:
                if e.status_code == 400:
                    break
                raise

            results = parse_search_results(tree)
            if not results:
                break
            candidates.extend(results)

        logger.debug("goldfish_search_complete", name=name, candidates=len(candidates))
        return candidates

    async def get_backlink(self, tournament_id: int) -> str | None:
        tree = await self.pages.get_html(tournament_url(tournament_id))
        return parse_backlink(tree)

    async def get_event_archetype_groups(self, url: str) -> dict[str, int]:
        tree = await self.pages.get_html(url)
        return parse_archetype_groups(tree)

    async def get_standings_page(self, url: str, page: int) -> list[StandingRow]:
        params = {"page": page} if page > 1 else None
        tree = await self.pages.get_html(url, params=params)
        return parse_standings_rows(tree)

    async def get_deck_archetype_label(self, deck_id: int) -> str | None:
        tree = await self.pages.get_html(deck_url(deck_id))
        return parse_deck_archetype_label(tree)
