"""Per-host rate limiter for scraped sites.

Implements a token bucket algorithm using Redis so every worker process and
Celery task shares one budget per host.
"""

import asyncio
import time
from urllib.parse import urlsplit

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)

# Atomic token bucket. Returns {acquired, wait_time}.
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local rate = tonumber(ARGV[1])
local burst = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local refill_interval = tonumber(ARGV[4])

local state = redis.call('HMGET', key, 'tokens', 'last_update')
local tokens = tonumber(state[1]) or burst
local last_update = tonumber(state[2]) or now

local elapsed = now - last_update
tokens = math.min(burst, tokens + elapsed * rate)

if tokens >= 1 then
    tokens = tokens - 1
    redis.call('HMSET', key, 'tokens', tokens, 'last_update', now)
    redis.call('EXPIRE', key, 60)
    return {1, 0}
else
    local wait_time = refill_interval - (elapsed % refill_interval)
    return {0, tostring(wait_time)}
end
"""


def host_of(url: str) -> str:
    """Rate limit bucket for a URL."""
    return urlsplit(url).netloc or "default"


class HostRateLimiter:
    """
    Token bucket rate limiter keyed by host.

    Without a Redis client every request is allowed.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None,
        rate: float = 2.0,
        burst: int = 4,
        key_prefix: str = "ratelimit:scraper",
        max_wait: float = 30.0,
    ):
        """
        Initialize the rate limiter.

        Args:
            redis_client: Redis client for distributed state
            rate: Requests per second allowed per host
            burst: Maximum burst size per host
            key_prefix: Redis key prefix
            max_wait: Longest a caller blocks before proceeding anyway
        """
        self.redis = redis_client
        self.rate = rate
        self.burst = burst
        self.key_prefix = key_prefix
        self.max_wait = max_wait
        self.refill_interval = 1.0 / rate

    def _get_key(self, host: str) -> str:
        return f"{self.key_prefix}:{host}"

    async def acquire(self, host: str) -> bool:
        """
        Try to take a token for the given host.

        Returns:
            True if token acquired, False if rate limited
        """
        if self.redis is None:
            return True

        try:
            result = await self.redis.eval(
                TOKEN_BUCKET_SCRIPT,
                1,
                self._get_key(host),
                str(self.rate),
                str(self.burst),
                str(time.time()),
                str(self.refill_interval),
            )
        except Exception as e:
            # Fail open - allow request if Redis fails
            logger.error("rate_limiter_error", error=str(e), host=host)
            return True

        if int(result[0]) == 1:
            return True
        logger.debug("rate_limited", host=host, wait_time=result[1])
        return False

    async def wait_if_needed(self, url: str) -> None:
        """Block until a token for the URL's host is available."""
        host = host_of(url)
        total_wait = 0.0

        while not await self.acquire(host):
            if total_wait >= self.max_wait:
                logger.warning(
                    "rate_limiter_max_wait_exceeded",
                    host=host,
                    total_wait=total_wait,
                )
                break
            wait_time = min(self.refill_interval, self.max_wait - total_wait)
            await asyncio.sleep(wait_time)
            total_wait += wait_time
