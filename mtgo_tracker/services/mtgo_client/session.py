"""Ownership of the live client handle.

The worker owns exactly one EventSource at a time. Restarting disposes the
current source and builds a new one from the configured factory.
"""

import asyncio
import importlib
from collections.abc import Callable
from typing import Any, TypeVar

import structlog

from mtgo_tracker.services.mtgo_client.api import EventSource, EventSourceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def load_event_source_factory(path: str) -> Callable[[], EventSource]:
    """
    Resolve a 'module:callable' import path to an EventSource factory.

    Raises:
        ValueError: If the path is empty or malformed
    """
    if not path or ":" not in path:
        raise ValueError(f"Invalid event source path {path!r}, expected 'module:callable'")
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


class ClientSession:
    """
    Owns the live client and recreates it on demand.

    All calls into the client run in a worker thread so a blocking client
    never stalls the event loop.
    """

    def __init__(self, factory: Callable[[], EventSource], max_restarts: int = 3):
        """
        Initialize the session.

        Args:
            factory: Builds a connected EventSource
            max_restarts: Restarts allowed before the session gives up
        """
        self.factory = factory
        self.max_restarts = max_restarts
        self.restarts = 0
        self._source: EventSource | None = None

    @property
    def source(self) -> EventSource:
        if self._source is None:
            raise EventSourceError("Client session is not started", retryable=True)
        return self._source

    @property
    def exhausted(self) -> bool:
        """Whether the restart budget for this process is spent."""
        return self.restarts >= self.max_restarts

    async def start(self) -> EventSource:
        """Create the client if it is not running yet."""
        if self._source is None:
            source = await asyncio.to_thread(self.factory)
            if not isinstance(source, EventSource):
                raise TypeError(f"{type(source).__name__} is not an EventSource")
            self._source = source
            logger.info("client_session_started", source=type(source).__name__)
        return self._source

    async def restart(self) -> EventSource:
        """
        Dispose the current client and start a fresh one.

        Raises:
            EventSourceError: If the restart budget is exhausted
        """
        if self.exhausted:
            raise EventSourceError(
                f"Client session restarted {self.restarts} times, giving up",
                retryable=False,
            )
        self.restarts += 1
        logger.warning("client_session_restarting", restarts=self.restarts)
        await self.close()
        return await self.start()

    async def close(self) -> None:
        """Dispose the current client, if any."""
        source, self._source = self._source, None
        if source is None:
            return
        try:
            await asyncio.to_thread(source.close)
        except Exception as e:
            logger.warning("client_session_close_error", error=str(e))

    async def call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking client call in a worker thread."""
        return await asyncio.to_thread(func, *args)
