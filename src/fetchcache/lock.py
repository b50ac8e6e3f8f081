"""Named mutexes for single-flight fetching.

:class:`SingleFlightLock` hands out one :class:`asyncio.Lock` per name.  The
cache-aware fetch holds the lock for a cache key while it re-checks the store,
calls the transport and writes the result, so concurrent misses for the same
key produce one outbound request.

Locks are created on first use and discarded as soon as no task holds or
waits for them, so the registry only ever contains names with work in
flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class SingleFlightLock:
    """Registry of named async mutexes.

    Example::

        locks = SingleFlightLock()
        async with locks.hold(cache_key):
            ...  # at most one task per cache_key runs this block
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, name: str) -> bool:
        """Return whether some task currently holds *name*."""
        lock = self._locks.get(name)
        return lock is not None and lock.locked()

    async def acquire(self, name: str) -> None:
        """Wait until *name* is free, then take it."""
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        self._users[name] = self._users.get(name, 0) + 1

        if lock.locked():
            logger.debug("Waiting for in-flight fetch %s", name)
        try:
            await lock.acquire()
        except asyncio.CancelledError:
            self._discard(name)
            raise

    def release(self, name: str) -> None:
        """Release *name*.  Releasing a name that is not held does nothing."""
        lock = self._locks.get(name)
        if lock is None or not lock.locked():
            logger.debug("Ignoring release of unheld lock %s", name)
            return
        lock.release()
        self._discard(name)

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Hold *name* for the duration of the ``async with`` block."""
        await self.acquire(name)
        try:
            yield
        finally:
            self.release(name)

    def _discard(self, name: str) -> None:
        remaining = self._users[name] - 1
        if remaining:
            self._users[name] = remaining
        else:
            del self._users[name]
            del self._locks[name]


DEFAULT_LOCKS = SingleFlightLock()
"""Process-wide registry shared by every cache-aware fetch that is not given its own."""
