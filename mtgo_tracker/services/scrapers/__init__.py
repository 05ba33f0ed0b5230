"""Scrapers for MTGO decklist publications and MTGGoldfish."""

from mtgo_tracker.services.scrapers.decklists import (
    DecklistFetcher,
    DecklistRecord,
    get_mtgo_url,
    get_mtgo_urls,
)
from mtgo_tracker.services.scrapers.goldfish import (
    GoldfishClient,
    StandingRow,
    TournamentCandidate,
)
from mtgo_tracker.services.scrapers.pages import PageFetcher, ScraperError
from mtgo_tracker.services.scrapers.rate_limiter import HostRateLimiter

__all__ = [
    "DecklistFetcher",
    "DecklistRecord",
    "GoldfishClient",
    "HostRateLimiter",
    "PageFetcher",
    "ScraperError",
    "StandingRow",
    "TournamentCandidate",
    "get_mtgo_url",
    "get_mtgo_urls",
]
