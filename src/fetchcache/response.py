"""The response object returned by a cache-aware fetch.

:class:`CachedResponse` wraps a body stream and its
:class:`~fetchcache.models.ResponseMeta` instead of subclassing a client
response type.  On top of the usual response accessors it exposes
``from_cache`` and :meth:`~CachedResponse.evict`, and it converts to an
:class:`httpx.Response` with :meth:`~CachedResponse.to_httpx` for code that
expects one.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Optional

import httpx

from fetchcache.exceptions import BodyAlreadyConsumed
from fetchcache.models import ResponseMeta

# Bodies are stored decoded, so these headers no longer describe them.
_STALE_BODY_HEADERS = ("content-encoding", "content-length")


class CachedResponse:
    """A fetched or replayed response, with cache provenance.

    The body can be streamed once with :meth:`aiter_bytes`; :meth:`aread`
    buffers it so that :meth:`aread`, :meth:`text`, :meth:`json` and
    :meth:`to_httpx` can be called any number of times afterwards.

    The body is kept decoded, so :attr:`headers` leaves out
    ``content-encoding`` and ``content-length``; :attr:`meta` still holds the
    headers as received.

    Args:
        body_stream: Single-use async byte iterator.
        meta: Status, headers and other descriptors.
        evict: Coroutine function removing this response's cache entry.
        from_cache: Whether the response came from the store rather than the
            network.
    """

    def __init__(
        self,
        body_stream: AsyncIterator[bytes],
        meta: ResponseMeta,
        evict: Callable[[], Awaitable[None]],
        from_cache: bool,
    ) -> None:
        self._body_stream = body_stream
        self._evict = evict
        self._from_cache = from_cache
        self._content: Optional[bytes] = None
        self.meta = meta
        self.body_used = False
        self.headers = httpx.Headers(
            [
                (name, item)
                for name, value in meta.headers.items()
                if name.lower() not in _STALE_BODY_HEADERS
                for item in (value if isinstance(value, list) else [value])
            ]
        )

    @property
    def from_cache(self) -> bool:
        return self._from_cache

    @property
    def status(self) -> int:
        return self.meta.status

    @property
    def status_text(self) -> str:
        return self.meta.status_text

    @property
    def url(self) -> str:
        return self.meta.url

    @property
    def ok(self) -> bool:
        return 200 <= self.meta.status < 300

    @property
    def redirected(self) -> bool:
        return self.meta.counter > 0

    # ------------------------------------------------------------------ #
    # Body access
    # ------------------------------------------------------------------ #

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Stream the body.

        Raises:
            BodyAlreadyConsumed: If the stream was already consumed without
                :meth:`aread`.
        """
        if self._content is not None:
            if self._content:
                yield self._content
            return
        if self.body_used:
            raise BodyAlreadyConsumed(f"Body of {self.url or 'response'} has already been read")
        self.body_used = True
        async for chunk in self._body_stream:
            yield chunk

    async def aread(self) -> bytes:
        """Read and buffer the whole body."""
        if self._content is None:
            self._content = b"".join([chunk async for chunk in self.aiter_bytes()])
        return self._content

    async def to_httpx(self) -> httpx.Response:
        """Return an :class:`httpx.Response` with the buffered body.

        ``from_cache`` is available as ``response.extensions["from_cache"]``.
        """
        content = await self.aread()
        response = httpx.Response(
            status_code=self.status,
            headers=httpx.Headers(self.headers),
            content=content,
            request=httpx.Request("GET", self.url) if self.url else None,
            extensions={"from_cache": self.from_cache, "reason_phrase": self.status_text.encode()},
        )
        response.read()
        return response

    async def text(self) -> str:
        return (await self.to_httpx()).text

    async def json(self) -> Any:
        return (await self.to_httpx()).json()

    # ------------------------------------------------------------------ #
    # Cache control
    # ------------------------------------------------------------------ #

    async def evict(self) -> None:
        """Remove the cache entry this response was served from or stored as."""
        await self._evict()

    eject_from_cache = evict

    def __repr__(self) -> str:
        return f"<CachedResponse [{self.status}] {self.url} from_cache={self.from_cache}>"
