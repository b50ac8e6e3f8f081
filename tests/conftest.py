"""Shared test fixtures for fetchcache.

Provides a counting fake server built on :class:`httpx.MockTransport`, an
:class:`~fetchcache.transport.HttpxTransport` wired to it, fresh stores, and
environment isolation for configuration tests.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx
import pytest

from fetchcache.lock import SingleFlightLock
from fetchcache.stores import MemoryStore, PersistentStore
from fetchcache.transport import HttpxTransport


# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------


class CountingServer:
    """Answers every request with the same response and counts the calls.

    Args:
        body: Response body.
        status: Response status code.
        headers: Response headers.
        delay: Seconds to sleep before answering, to hold requests in flight.
    """

    def __init__(
        self,
        body: bytes = b"hello world",
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
        delay: float = 0.0,
    ) -> None:
        self.body = body
        self.status = status
        self.headers = headers if headers is not None else {"content-type": "text/plain"}
        self.delay = delay
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await request.aread()
        if self.delay:
            await asyncio.sleep(self.delay)
        return httpx.Response(self.status, headers=self.headers, content=self.body)


@pytest.fixture
def server() -> CountingServer:
    return CountingServer()


@pytest.fixture
async def transport(server: CountingServer):
    """An HttpxTransport whose client talks to *server*."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    yield HttpxTransport(client)
    await client.aclose()


@pytest.fixture
async def make_transport():
    """Factory for transports over arbitrary MockTransport handlers.

    Clients created through the factory are closed after the test.
    """
    clients: list[httpx.AsyncClient] = []

    def _make(handler) -> HttpxTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return HttpxTransport(client)

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
def locks() -> SingleFlightLock:
    """A private lock registry so tests never share lock state."""
    return SingleFlightLock()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
async def memory_store():
    store = MemoryStore()
    yield store
    await store.close()


@pytest.fixture
async def persistent_store(tmp_path: Path):
    store = PersistentStore(tmp_path / "cache")
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CACHE_HOME into tmp_path and clears all FETCHCACHE_*
    environment variables so tests never touch the real user cache.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    for var in ["FETCHCACHE_TTL", "FETCHCACHE_DIR"]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path
