"""The cache-aware fetch.

:class:`CachedFetch` is an async callable with the same shape as the
transport it wraps -- ``await cached_fetch(resource, **init)`` -- but returns
a :class:`~fetchcache.response.CachedResponse`:

1. The call is reduced to a cache key with the instance's own
   :class:`~fetchcache.models.KeyFlags`.
2. A store hit is returned straight away with ``from_cache=True``; the hit
   path never touches a lock.
3. On a miss, a call carrying ``Cache-Control: only-if-cached`` returns
   ``None`` without touching the network.
4. Otherwise the key's single-flight lock is taken and the store is checked
   again, since a concurrent call may have filled it while this one waited.
5. On a genuine miss the transport is called, the body is drained into the
   store, and the stored copy is returned with ``from_cache=False``.

The lock is released on every path.  Network failures, including ones that
happen while the body is streamed into the store, surface as
:class:`~fetchcache.exceptions.TransportError`.  Transport and store errors
propagate and leave nothing in the cache; there are no retries.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Optional, Union

from fetchcache.keys import Resource, derive_key, has_only_if_cached
from fetchcache.lock import DEFAULT_LOCKS, SingleFlightLock
from fetchcache.models import KeyFlags
from fetchcache.response import CachedResponse
from fetchcache.stores import MemoryStore, Store, StoredValue
from fetchcache.transport import HttpxTransport, Transport, iter_body, serialize_meta

logger = logging.getLogger(__name__)

KeyFlagsLike = Union[KeyFlags, Mapping[str, Any], None]


def _coerce_key_flags(key_flags: KeyFlagsLike) -> KeyFlags:
    if key_flags is None:
        return KeyFlags()
    if isinstance(key_flags, KeyFlags):
        return key_flags
    return KeyFlags.model_validate(key_flags)


class CachedFetch:
    """Fetch function backed by a cache store.

    Args:
        store: Where responses are kept.
        key_flags: Which request fields feed the cache key, as a
            :class:`~fetchcache.models.KeyFlags` or a mapping of overrides
            (``{"headers": False}``).  Unmentioned fields stay enabled.
        transport: The real fetch.  Defaults to an :class:`HttpxTransport`
            with its own client.
        locks: Single-flight registry.  Defaults to the process-wide one.

    Example::

        cached_fetch = CachedFetch(PersistentStore(ttl=600))
        response = await cached_fetch("https://api.example.com/users")
        if response.status >= 500:
            await response.evict()
    """

    def __init__(
        self,
        store: Store,
        *,
        key_flags: KeyFlagsLike = None,
        transport: Optional[Transport] = None,
        locks: Optional[SingleFlightLock] = None,
    ) -> None:
        self.store = store
        self.key_flags = _coerce_key_flags(key_flags)
        self._owns_transport = transport is None
        self.transport: Transport = transport if transport is not None else HttpxTransport()
        self.locks = locks if locks is not None else DEFAULT_LOCKS
        logger.debug(
            "Created cache-aware fetch over %s with key flags %s",
            type(store).__name__,
            self.key_flags.model_dump(by_alias=True),
        )

    def with_cache(self, store: Store, **options: Any) -> CachedFetch:
        """Build a sibling fetch over *store*.  Nothing is shared but the lock registry."""
        options.setdefault("locks", self.locks)
        return CachedFetch(store, **options)

    def cache_key(self, resource: Resource, **init: Any) -> str:
        """Return the key this instance uses for ``(resource, init)``."""
        return derive_key(resource, init, self.key_flags)

    async def __call__(self, resource: Resource, **init: Any) -> Optional[CachedResponse]:
        key = derive_key(resource, init, self.key_flags)

        async def evict() -> None:
            await self.store.remove(key)

        cached = await self.store.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return self._wrap(cached, evict, from_cache=True)

        if has_only_if_cached(resource, init):
            logger.debug("Cache miss for %s with only-if-cached, not fetching", key)
            return None

        async with self.locks.hold(key):
            cached = await self.store.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s after waiting on in-flight fetch", key)
                return self._wrap(cached, evict, from_cache=True)

            logger.debug("Cache miss for %s, fetching", key)
            response = await self.transport(resource, **init)
            try:
                stored = await self.store.set(
                    key, iter_body(response), serialize_meta(response, init)
                )
            finally:
                await response.aclose()
            return self._wrap(stored, evict, from_cache=False)

    @staticmethod
    def _wrap(
        value: StoredValue, evict: Callable[[], Awaitable[None]], from_cache: bool
    ) -> CachedResponse:
        return CachedResponse(value.body_stream, value.meta_data, evict, from_cache)

    async def aclose(self) -> None:
        """Close the store, and the transport when this instance created it."""
        if self._owns_transport and isinstance(self.transport, HttpxTransport):
            await self.transport.aclose()
        await self.store.close()

    async def __aenter__(self) -> CachedFetch:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


def create_fetch_with_cache(store: Optional[Store] = None, **options: Any) -> CachedFetch:
    """Build a :class:`CachedFetch`; *store* defaults to a fresh :class:`MemoryStore`."""
    return CachedFetch(store if store is not None else MemoryStore(), **options)


fetch_builder = create_fetch_with_cache()
"""Ready-made cache-aware fetch over an unbounded :class:`MemoryStore`.

``fetch_builder.with_cache(store, ...)`` derives configured instances.
"""
