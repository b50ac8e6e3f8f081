"""The store interface shared by every cache backend.

A store maps a cache key to a body and a :class:`~fetchcache.models.ResponseMeta`.
Bodies move in and out as async byte iterators that can be consumed once:

* :meth:`Store.set` drains the caller's stream completely before it returns,
  then hands back a *new* stream over the stored bytes.
* :meth:`Store.get` returns a fresh stream on every call.

Backends never hand the input stream back to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any, NamedTuple, Optional, Union

from fetchcache.models import ResponseMeta

BodyStream = AsyncIterable[bytes]

MetaLike = Union[ResponseMeta, Mapping[str, Any]]


class StoredValue(NamedTuple):
    """A cache entry as returned by :meth:`Store.get` and :meth:`Store.set`."""

    body_stream: AsyncIterator[bytes]
    meta_data: ResponseMeta


async def iter_bytes(data: bytes) -> AsyncIterator[bytes]:
    """Yield *data* as a single chunk (nothing at all when it is empty)."""
    if data:
        yield data


async def drain(body_stream: BodyStream) -> bytes:
    """Read *body_stream* to the end and return its bytes."""
    chunks = [chunk async for chunk in body_stream]
    return b"".join(chunks)


def coerce_meta(meta: MetaLike) -> ResponseMeta:
    if isinstance(meta, ResponseMeta):
        return meta
    return ResponseMeta.model_validate(meta)


class Store(ABC):
    """Abstract cache backend.

    Subclasses implement :meth:`get`, :meth:`set`, :meth:`remove` and
    :meth:`clear`.  Stores can be used as async context managers, which
    calls :meth:`close` on exit.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredValue]:
        """Return the entry for *key*, or ``None`` when it is absent or expired."""

    @abstractmethod
    async def set(self, key: str, body_stream: BodyStream, meta_data: MetaLike) -> StoredValue:
        """Store *body_stream* and *meta_data* under *key*.

        The stream is fully drained before this returns.  The result holds a
        fresh stream over the stored bytes.
        """

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete the entry for *key*.  Removing an absent key is not an error."""

    @abstractmethod
    async def clear(self) -> None:
        """Delete every entry."""

    async def close(self) -> None:
        """Release resources held by the store."""

    async def __aenter__(self) -> Store:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
