"""Unit tests for the page fetcher and host rate limiter."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from mtgo_tracker.services.scrapers.pages import PageFetcher, ScraperError
from mtgo_tracker.services.scrapers.rate_limiter import HostRateLimiter, host_of


def fetcher_for(handler) -> PageFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PageFetcher(http_client=client)


class TestPageFetcher:
    """Test retry and error classification."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        responses = iter([httpx.Response(503), httpx.Response(200, text="ok")])

        async with fetcher_for(lambda request: next(responses)) as pages:
            with patch("asyncio.sleep", new=AsyncMock()) as sleep:
                response = await pages.get("https://example.com/a")

        assert response.text == "ok"
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        async with fetcher_for(handler) as pages:
            with pytest.raises(ScraperError) as exc_info:
                await pages.get("https://example.com/missing")

        assert exc_info.value.status_code == 404
        assert not exc_info.value.retryable
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self):
        async with fetcher_for(lambda request: httpx.Response(500)) as pages:
            with patch("asyncio.sleep", new=AsyncMock()):
                with pytest.raises(ScraperError) as exc_info:
                    await pages.get("https://example.com/down", max_retries=2)

        assert exc_info.value.status_code == 500
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_redirect_returned_when_not_followed(self):
        def handler(request):
            return httpx.Response(302, headers={"location": "https://example.com/index"})

        async with fetcher_for(handler) as pages:
            response = await pages.get("https://example.com/moved", follow_redirects=False)

        assert response.is_redirect

    @pytest.mark.asyncio
    async def test_get_html(self):
        html = "<html><body><p class='x'>Hello</p></body></html>"

        async with fetcher_for(lambda request: httpx.Response(200, text=html)) as pages:
            tree = await pages.get_html("https://example.com/page")

        assert tree.css_first("p.x").text() == "Hello"


class TestHostRateLimiter:
    """Test the token bucket wrapper."""

    def test_host_of(self):
        assert host_of("https://www.mtggoldfish.com/deck/1") == "www.mtggoldfish.com"
        assert host_of("not a url") == "default"

    @pytest.mark.asyncio
    async def test_allows_without_redis(self):
        assert await HostRateLimiter(None).acquire("example.com")

    @pytest.mark.asyncio
    async def test_fails_open_on_redis_error(self):
        redis_client = AsyncMock()
        redis_client.eval.side_effect = ConnectionError("redis down")

        assert await HostRateLimiter(redis_client).acquire("example.com")

    @pytest.mark.asyncio
    async def test_waits_until_token_available(self):
        redis_client = AsyncMock()
        redis_client.eval.side_effect = [[0, "0.5"], [1, 0]]
        limiter = HostRateLimiter(redis_client, rate=2.0)

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            await limiter.wait_if_needed("https://example.com/a")

        sleep.assert_awaited_once_with(0.5)
        key = redis_client.eval.await_args.args[2]
        assert key == "ratelimit:scraper:example.com"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_wait(self):
        redis_client = AsyncMock()
        redis_client.eval.return_value = [0, "0.5"]
        limiter = HostRateLimiter(redis_client, rate=2.0, max_wait=1.0)

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            await limiter.wait_if_needed("https://example.com/a")

        assert sleep.await_count == 2
