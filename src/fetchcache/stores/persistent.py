"""On-disk cache backend.

Every cache key owns two entries in a :class:`~fetchcache.stores.content.ContentStore`:

* ``<key>body`` -- the response body, content-addressed so identical bodies
  are stored once;
* ``<key>meta`` -- a JSON :class:`~fetchcache.models.StoredMeta` document
  holding the response metadata plus the body's integrity token (or the
  ``empty`` flag), and the absolute ``expiration`` when a TTL is configured.

Expiry is lazy: an expired entry reads as a miss but stays on disk until it
is overwritten or removed.

:meth:`PersistentStore.remove` only drops the two index entries.  Body and
metadata content is shared by digest and is not garbage-collected, so the
directory keeps growing until :meth:`PersistentStore.clear` is called.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, Union

from fetchcache.config import resolve_config
from fetchcache.exceptions import NoDataWritten, StorageError
from fetchcache.models import StoredMeta
from fetchcache.stores.base import BodyStream, MetaLike, Store, StoredValue, coerce_meta, iter_bytes
from fetchcache.stores.content import ContentStore

logger = logging.getLogger(__name__)


def _body_and_meta_keys(key: str) -> tuple[str, str]:
    return f"{key}body", f"{key}meta"


class PersistentStore(Store):
    """Disk-backed cache surviving process restarts.

    Args:
        cache_directory: Directory for the content store.  Defaults to
            ``FETCHCACHE_DIR`` or the XDG cache directory, see
            :func:`~fetchcache.config.resolve_config`.
        ttl: Lifetime of an entry in seconds.  Defaults to
            ``FETCHCACHE_TTL``; ``None`` keeps entries forever.

    Example::

        store = PersistentStore("/tmp/http-cache", ttl=3600)
        cached_fetch = create_fetch_with_cache(store)
    """

    def __init__(
        self,
        cache_directory: Union[str, Path, None] = None,
        ttl: Optional[float] = None,
    ) -> None:
        config = resolve_config(ttl=ttl, cache_dir=cache_directory)
        self.ttl = config.ttl_seconds
        self.cache_directory = config.cache_dir
        self._content = ContentStore(self.cache_directory)

    async def get(self, key: str) -> Optional[StoredValue]:
        _, meta_key = _body_and_meta_keys(key)

        meta_info = await self._content.info(meta_key)
        if meta_info is None:
            return None

        raw = await self._content.get_by_digest(meta_info.integrity)
        try:
            stored = StoredMeta.model_validate_json(raw)
        except ValueError as exc:
            raise StorageError(f"Corrupt metadata for cache key {key}: {exc}") from exc

        if stored.expiration is not None and stored.expiration < time.time():
            logger.debug("Cache entry %s expired at %s", key, stored.expiration)
            return None

        return StoredValue(self._body_stream(stored), stored.to_public())

    async def set(self, key: str, body_stream: BodyStream, meta_data: MetaLike) -> StoredValue:
        body_key, meta_key = _body_and_meta_keys(key)
        stored = StoredMeta.model_validate(coerce_meta(meta_data).model_dump())

        if self.ttl is not None:
            stored.expiration = time.time() + self.ttl

        try:
            stored.body_integrity = await self._content.put_stream(body_key, body_stream)
        except NoDataWritten:
            stored.empty = True

        await self._content.put(meta_key, stored.model_dump_json().encode("utf-8"))
        logger.debug("Stored cache entry %s in %s", key, self.cache_directory)
        return StoredValue(self._body_stream(stored), stored.to_public())

    async def remove(self, key: str) -> None:
        """Forget *key*; the stored content stays on disk until :meth:`clear`."""
        body_key, meta_key = _body_and_meta_keys(key)
        await self._content.rm_entry(body_key)
        await self._content.rm_entry(meta_key)

    async def clear(self) -> None:
        await self._content.clear()

    async def close(self) -> None:
        self._content.close()

    def _body_stream(self, stored: StoredMeta):
        if stored.empty or stored.body_integrity is None:
            return iter_bytes(b"")
        return self._content.stream_by_digest(stored.body_integrity)
