"""Unit tests for live client session ownership."""

import pytest
from conftest import FakeEventSource

from mtgo_tracker.services.mtgo_client import (
    ClientSession,
    EventSourceError,
    load_event_source_factory,
)


class TestLoadFactory:
    """Test factory import paths."""

    def test_resolves_callable(self):
        assert load_event_source_factory("conftest:FakeEventSource") is FakeEventSource

    @pytest.mark.parametrize("path", ["", "conftest", "conftest.FakeEventSource"])
    def test_invalid_path(self, path):
        with pytest.raises(ValueError):
            load_event_source_factory(path)


class TestClientSession:
    """Test start, restart and close."""

    @pytest.mark.asyncio
    async def test_source_requires_start(self):
        session = ClientSession(FakeEventSource)

        with pytest.raises(EventSourceError):
            session.source

        source = await session.start()
        assert session.source is source
        assert await session.start() is source

    @pytest.mark.asyncio
    async def test_restart_replaces_source(self):
        session = ClientSession(FakeEventSource)
        first = await session.start()

        second = await session.restart()

        assert second is not first
        assert first.closed
        assert session.restarts == 1

    @pytest.mark.asyncio
    async def test_restart_budget(self):
        session = ClientSession(FakeEventSource, max_restarts=1)
        await session.start()
        await session.restart()

        with pytest.raises(EventSourceError) as exc_info:
            await session.restart()
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_rejects_non_source(self):
        session = ClientSession(lambda: object())

        with pytest.raises(TypeError):
            await session.start()

    @pytest.mark.asyncio
    async def test_call_runs_in_thread(self):
        session = ClientSession(FakeEventSource)
        await session.start()

        assert await session.call(session.source.list_events) == []
