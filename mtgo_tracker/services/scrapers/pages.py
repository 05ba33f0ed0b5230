"""Page fetcher for scraped sites.

Provides async page access with:
- Per-host rate limiting
- Retry with exponential backoff on timeouts, 429 and 5xx
- Error classification
- HTML parsing with selectolax
"""

import asyncio
from typing import Any

import httpx
import redis.asyncio as redis
import structlog
from selectolax.parser import HTMLParser

from mtgo_tracker.config import get_settings
from mtgo_tracker.services.scrapers.rate_limiter import HostRateLimiter

logger = structlog.get_logger(__name__)


class ScraperError(Exception):
    """Page fetch or parse error with classification."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class PageFetcher:
    """
    HTTP client for scraped pages.

    Use as an async context manager so the connection pool is closed.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        rate_limiter: HostRateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            redis_client: Redis client for shared rate limiting
            rate_limiter: Optional custom rate limiter
            http_client: Optional preconfigured HTTP client
        """
        self.settings = get_settings()
        self.rate_limiter = rate_limiter or HostRateLimiter(
            redis_client,
            rate=self.settings.scraper_rate,
            burst=self.settings.scraper_burst,
        )
        self._http_client = http_client

    async def __aenter__(self) -> "PageFetcher":
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds,
                headers={"User-Agent": self.settings.user_agent},
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        follow_redirects: bool = True,
        max_retries: int = 3,
    ) -> httpx.Response:
        """
        Fetch a URL with rate limiting and retry.

        Redirect responses are returned as-is when follow_redirects is False.

        Raises:
            ScraperError: If the request fails after retries or returns a
                client error
        """
        for attempt in range(max_retries + 1):
            try:
                await self.rate_limiter.wait_if_needed(url)
                client = await self._get_client()
                response = await client.get(
                    url, params=params, follow_redirects=follow_redirects
                )
                if response.is_redirect and not follow_redirects:
                    return response
                response.raise_for_status()
                return response

            except httpx.TimeoutException:
                if attempt < max_retries:
                    wait_time = 2**attempt
                    logger.warning(
                        "timeout_retrying", url=url, attempt=attempt, wait_time=wait_time
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise ScraperError(f"Request timeout: {url}", retryable=True)

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                if status_code == 429 or status_code >= 500:
                    if attempt < max_retries:
                        wait_time = 2**attempt
                        logger.warning(
                            "http_error_retrying",
                            url=url,
                            status_code=status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue
                    raise ScraperError(
                        f"Server error {status_code}: {url}",
                        status_code=status_code,
                        retryable=True,
                    ) from e
                raise ScraperError(
                    f"Client error {status_code}: {url}",
                    status_code=status_code,
                    retryable=False,
                ) from e

            except httpx.HTTPError as e:
                if attempt < max_retries:
                    await asyncio.sleep(2**attempt)
                    continue
                raise ScraperError(f"Request failed: {url}: {e}", retryable=True) from e

        raise ScraperError(f"Request failed after {max_retries} retries: {url}")

    async def get_html(
        self, url: str, params: dict[str, Any] | None = None
    ) -> HTMLParser:
        """Fetch a URL and parse the body as HTML."""
        response = await self.get(url, params=params)
        return HTMLParser(response.text)
