"""In-process cache backend."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from fetchcache.exceptions import ConfigError
from fetchcache.models import CacheConfig, ResponseMeta
from fetchcache.stores.base import BodyStream, MetaLike, Store, StoredValue, coerce_meta, drain, iter_bytes

logger = logging.getLogger(__name__)


class MemoryStore(Store):
    """Keeps bodies as ``bytes`` in a dict.

    With a TTL, every :meth:`set` schedules a removal on the running event
    loop.  Each key has at most one pending removal: a new :meth:`set` (or a
    :meth:`remove`) cancels the previous timer before anything else happens,
    so a refreshed entry is never dropped by an older timer.  There is no
    other sweep.

    Args:
        ttl: Lifetime of an entry in seconds.  ``None`` keeps entries until
            they are removed.

    Raises:
        ConfigError: If *ttl* is not positive.
    """

    def __init__(self, ttl: Optional[float] = None) -> None:
        try:
            self.ttl = CacheConfig(ttl_seconds=ttl).ttl_seconds
        except ValidationError as exc:
            raise ConfigError(f"Invalid MemoryStore ttl {ttl!r}: {exc}") from exc
        self._entries: dict[str, tuple[bytes, ResponseMeta]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[StoredValue]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        body, meta = entry
        return StoredValue(iter_bytes(body), meta.model_copy(deep=True))

    async def set(self, key: str, body_stream: BodyStream, meta_data: MetaLike) -> StoredValue:
        body = await drain(body_stream)
        meta = coerce_meta(meta_data).model_copy(deep=True)
        self._entries[key] = (body, meta)
        if self.ttl is not None:
            self._schedule_expiry(key)
        return StoredValue(iter_bytes(body), meta.model_copy(deep=True))

    async def remove(self, key: str) -> None:
        self._cancel_expiry(key)
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._cancel_all()
        self._entries.clear()

    async def close(self) -> None:
        self._cancel_all()

    # ------------------------------------------------------------------ #
    # Expiry timers
    # ------------------------------------------------------------------ #

    def _schedule_expiry(self, key: str) -> None:
        self._cancel_expiry(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.ttl, self._expire, key)

    def _cancel_expiry(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _expire(self, key: str) -> None:
        self._timers.pop(key, None)
        if self._entries.pop(key, None) is not None:
            logger.debug("Expired cache entry %s", key)
