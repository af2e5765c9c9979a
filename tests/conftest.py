"""
Shared test fixtures for the ufo-mcp test suite.

The device is never contacted: handler tests run against FakeUfoClient,
which records every query and can be told to fail.
"""

import asyncio
import json

import pytest
import pytest_asyncio

from ufo_mcp import server
from ufo_mcp.config import UfoConfig
from ufo_mcp.effects import EffectStore
from ufo_mcp.events import Broadcaster
from ufo_mcp.state import StateManager


class FakeUfoClient:
    """Stands in for UfoClient; records queries instead of sending them."""

    def __init__(self):
        self.queries = []
        self.error = None
        self.closed = False

    async def send_raw_query(self, query: str) -> str:
        if self.error is not None:
            raise self.error
        self.queries.append(query)
        return "OK"

    async def play_effect(self, effect_query: str) -> str:
        return await self.send_raw_query(effect_query)

    async def set_brightness(self, level: int) -> str:
        return await self.send_raw_query(f"dim={level}")

    async def get_status(self):
        response = await self.send_raw_query("")
        return {"response": response, "timestamp": 1700000000}

    async def close(self):
        self.closed = True


def parse_result(result):
    """Extract JSON from a handler's TextContent list."""
    assert isinstance(result, list)
    assert len(result) == 1
    return json.loads(result[0].text)


async def drain_timers():
    """Wait for every scheduled effect timer to finish."""
    tasks = list(server._get_timers()._tasks)
    if tasks:
        await asyncio.gather(*tasks)


def drain_events(subscriber):
    """All events queued for a subscriber, without blocking."""
    events = []
    while True:
        event = subscriber.get(timeout=0)
        if event is None:
            return events
        events.append(event)


# ---------------------------------------------------------------------------
# Core objects
# ---------------------------------------------------------------------------

@pytest.fixture
def broadcaster():
    return Broadcaster(queue_size=100)


@pytest.fixture
def state(broadcaster):
    """Fresh StateManager wired to its own broadcaster."""
    return StateManager(broadcaster)


@pytest.fixture
def subscriber(broadcaster):
    return broadcaster.subscribe("test")


@pytest.fixture
def effects_path(tmp_path):
    return tmp_path / "data" / "effects.json"


@pytest.fixture
def store(effects_path):
    """Effect store seeded into a temp directory."""
    effect_store = EffectStore(effects_path)
    effect_store.load()
    return effect_store


# ---------------------------------------------------------------------------
# Running server (handlers)
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_client():
    return FakeUfoClient()


@pytest.fixture
def ufo_config(effects_path):
    config = UfoConfig()
    config.server.effects_file = str(effects_path)
    return config


@pytest_asyncio.fixture
async def running_server(ufo_config, fake_client):
    """server.wake() with a fake device; torn down with server.sleep()."""
    server.wake(ufo_config, client=fake_client)
    yield server
    await server.sleep()
    server._config = None
