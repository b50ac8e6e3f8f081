"""End-to-end tests for the cache-aware fetch."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from fetchcache import CachedFetch, create_fetch_with_cache, fetch_builder
from fetchcache.exceptions import StorageError, TransportError
from fetchcache.lock import SingleFlightLock
from fetchcache.models import KeyFlags
from fetchcache.request import FetchRequest
from fetchcache.stores import MemoryStore, PersistentStore

URL = "https://api.example.com/users"


@pytest.fixture
def cached_fetch(memory_store, transport, locks) -> CachedFetch:
    return CachedFetch(memory_store, transport=transport, locks=locks)


class BrokenStore(MemoryStore):
    """A store whose writes always fail."""

    async def set(self, key, body_stream, meta_data):
        raise StorageError("disk full")


class ResetStream(httpx.AsyncByteStream):
    """A body that breaks off after the first chunk."""

    async def __aiter__(self):
        yield b"part"
        raise httpx.ReadError("connection reset")


def _reset_mid_body(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/plain"}, stream=ResetStream())


# ------------------------------------------------------------------ #
# Miss, hit, eviction
# ------------------------------------------------------------------ #


class TestMissThenHit:
    async def test_second_call_is_served_from_cache(self, cached_fetch: CachedFetch, server) -> None:
        first = await cached_fetch(URL)
        assert first.from_cache is False
        assert await first.text() == "hello world"

        second = await cached_fetch(URL)
        assert second.from_cache is True
        assert await second.text() == "hello world"
        assert second.status == 200
        assert second.headers["content-type"] == "text/plain"
        assert server.calls == 1

    async def test_different_urls_fetch_separately(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL)
        await cached_fetch(URL + "?page=2")
        assert server.calls == 2

    async def test_error_statuses_are_cached(self, memory_store, make_transport, locks) -> None:
        transport = make_transport(lambda request: httpx.Response(500, content=b"oops"))
        cached_fetch = CachedFetch(memory_store, transport=transport, locks=locks)
        await cached_fetch(URL)
        again = await cached_fetch(URL)
        assert again.from_cache
        assert again.status == 500
        assert not again.ok

    async def test_evict_forces_refetch(self, cached_fetch: CachedFetch, server) -> None:
        response = await cached_fetch(URL)
        await response.evict()
        refetched = await cached_fetch(URL)
        assert refetched.from_cache is False
        assert server.calls == 2

    async def test_evict_from_cached_response(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL)
        hit = await cached_fetch(URL)
        await hit.eject_from_cache()
        assert (await cached_fetch(URL)).from_cache is False
        assert server.calls == 2

    async def test_ttl_expiry_refetches(self, transport, locks, server) -> None:
        store = MemoryStore(ttl=0.2)
        cached_fetch = CachedFetch(store, transport=transport, locks=locks)

        assert (await cached_fetch(URL)).from_cache is False
        assert (await cached_fetch(URL)).from_cache is True
        await asyncio.sleep(0.35)
        assert (await cached_fetch(URL)).from_cache is False
        assert server.calls == 2
        await store.close()

    async def test_transport_only_options_share_a_key(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL, timeout=5)
        hit = await cached_fetch(URL, timeout=30)
        assert hit.from_cache
        assert server.calls == 1


# ------------------------------------------------------------------ #
# Single-flight
# ------------------------------------------------------------------ #


class TestSingleFlight:
    async def test_concurrent_misses_fetch_once(self, cached_fetch: CachedFetch, server, locks) -> None:
        server.delay = 0.05
        responses = await asyncio.gather(*(cached_fetch(URL) for _ in range(5)))

        assert server.calls == 1
        assert sorted(r.from_cache for r in responses) == [False, True, True, True, True]
        for response in responses:
            assert await response.text() == "hello world"
        assert len(locks) == 0

    async def test_different_keys_run_in_parallel(self, cached_fetch: CachedFetch, server) -> None:
        server.delay = 0.05
        await asyncio.gather(cached_fetch(URL + "/1"), cached_fetch(URL + "/2"))
        assert server.calls == 2

    async def test_lock_released_after_transport_error(self, memory_store, make_transport, locks) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        cached_fetch = CachedFetch(memory_store, transport=make_transport(refuse), locks=locks)
        with pytest.raises(TransportError):
            await cached_fetch(URL)

        assert len(locks) == 0
        assert len(memory_store) == 0

    async def test_mid_body_reset_raises_transport_error(
        self, memory_store, make_transport, locks
    ) -> None:
        cached_fetch = CachedFetch(memory_store, transport=make_transport(_reset_mid_body), locks=locks)
        with pytest.raises(TransportError) as exc_info:
            await cached_fetch(URL)

        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert len(locks) == 0
        assert len(memory_store) == 0

    async def test_mid_body_reset_leaves_disk_cache_empty(self, tmp_path, make_transport, locks) -> None:
        store = PersistentStore(tmp_path)
        cached_fetch = CachedFetch(store, transport=make_transport(_reset_mid_body), locks=locks)
        with pytest.raises(TransportError):
            await cached_fetch(URL)
        assert await store.get(cached_fetch.cache_key(URL)) is None
        await store.close()

    async def test_lock_released_after_store_error(self, transport, locks) -> None:
        cached_fetch = CachedFetch(BrokenStore(), transport=transport, locks=locks)
        with pytest.raises(StorageError):
            await cached_fetch(URL)
        assert len(locks) == 0


# ------------------------------------------------------------------ #
# only-if-cached
# ------------------------------------------------------------------ #


class TestOnlyIfCached:
    async def test_empty_cache_returns_none(self, cached_fetch: CachedFetch, server) -> None:
        result = await cached_fetch(URL, headers={"Cache-Control": "only-if-cached"})
        assert result is None
        assert server.calls == 0

    async def test_populated_cache_returns_hit(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL)
        hit = await cached_fetch(URL, headers={"Cache-Control": "only-if-cached"})
        assert hit is not None
        assert hit.from_cache
        assert server.calls == 1

    async def test_structured_request_header(self, cached_fetch: CachedFetch, server) -> None:
        request = FetchRequest(URL, headers={"cache-control": "only-if-cached"})
        assert await cached_fetch(request) is None
        assert server.calls == 0


# ------------------------------------------------------------------ #
# Key flags and instances
# ------------------------------------------------------------------ #


class TestKeyFlags:
    async def test_headers_excluded_from_key(self, memory_store, transport, locks, server) -> None:
        cached_fetch = CachedFetch(
            memory_store, transport=transport, locks=locks, key_flags={"headers": False}
        )
        await cached_fetch(URL, headers={"X-Request-Id": "1"})
        hit = await cached_fetch(URL, headers={"X-Request-Id": "2"})
        assert hit.from_cache
        assert server.calls == 1

    async def test_headers_included_by_default(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL, headers={"X-Request-Id": "1"})
        await cached_fetch(URL, headers={"X-Request-Id": "2"})
        assert server.calls == 2

    async def test_flags_are_per_instance(self, memory_store, transport, locks) -> None:
        loose = CachedFetch(memory_store, transport=transport, locks=locks, key_flags={"headers": False})
        strict = CachedFetch(memory_store, transport=transport, locks=locks)
        assert loose.key_flags == KeyFlags(headers=False)
        assert strict.key_flags == KeyFlags()
        assert loose.cache_key(URL, headers={"a": "1"}) != strict.cache_key(URL, headers={"a": "1"})

    async def test_with_cache_builds_sibling(self, cached_fetch: CachedFetch, transport) -> None:
        other_store = MemoryStore()
        sibling = cached_fetch.with_cache(other_store, transport=transport)
        assert sibling is not cached_fetch
        assert sibling.store is other_store
        assert sibling.locks is cached_fetch.locks
        await cached_fetch(URL)
        assert (await sibling(URL)).from_cache is False
        await other_store.close()

    def test_create_fetch_with_cache_defaults_to_memory(self) -> None:
        cached_fetch = create_fetch_with_cache()
        assert isinstance(cached_fetch.store, MemoryStore)
        assert cached_fetch.key_flags == KeyFlags()

    def test_module_level_builder(self) -> None:
        assert isinstance(fetch_builder, CachedFetch)
        assert isinstance(fetch_builder.with_cache(MemoryStore()), CachedFetch)


# ------------------------------------------------------------------ #
# Resources and stores
# ------------------------------------------------------------------ #


class TestResources:
    async def test_structured_request_repeats_hit(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(FetchRequest(URL))
        hit = await cached_fetch(FetchRequest(URL))
        assert hit.from_cache
        assert server.calls == 1

    async def test_httpx_request(self, cached_fetch: CachedFetch, server) -> None:
        request = httpx.Request("POST", URL, json={"name": "ada"})
        await cached_fetch(request)
        hit = await cached_fetch(httpx.Request("POST", URL, json={"name": "ada"}))
        assert hit.from_cache
        assert server.requests[0].method == "POST"
        assert server.calls == 1

    async def test_post_bodies_key_separately(self, cached_fetch: CachedFetch, server) -> None:
        await cached_fetch(URL, method="POST", body={"q": "a"})
        await cached_fetch(URL, method="POST", body={"q": "b"})
        assert server.calls == 2


class TestPersistentIntegration:
    async def test_hit_survives_new_instance(self, tmp_path, transport, locks, server) -> None:
        first = CachedFetch(PersistentStore(tmp_path), transport=transport, locks=locks)
        response = await first(URL)
        assert await response.text() == "hello world"
        await first.store.close()

        second = CachedFetch(PersistentStore(tmp_path), transport=transport, locks=locks)
        hit = await second(URL)
        assert hit.from_cache
        assert await hit.text() == "hello world"
        assert server.calls == 1
        await second.store.close()

    async def test_empty_body_round_trip(self, tmp_path, make_transport, locks) -> None:
        transport = make_transport(lambda request: httpx.Response(204))
        async with CachedFetch(PersistentStore(tmp_path), transport=transport, locks=locks) as cached_fetch:
            await cached_fetch(URL)
            hit = await cached_fetch(URL)
            assert hit.from_cache
            assert hit.status == 204
            assert await hit.aread() == b""
