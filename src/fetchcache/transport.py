"""The HTTP transport behind the cache, built on :mod:`httpx`.

Any async callable ``transport(resource, **init) -> httpx.Response`` can sit
behind a :class:`~fetchcache.fetch.CachedFetch` (see :class:`Transport`).
The default, :class:`HttpxTransport`, translates the fetch-style call into an
:class:`httpx.Request` and sends it in streaming mode so the cache can drain
the body straight into its store.

Recognised call options:

==============  ==========================================================
``method``      HTTP method (default ``GET`` or the request's own)
``headers``     merged over the request's headers
``body``        any shape accepted by :func:`~fetchcache.request.classify_body`
``redirect``    ``follow`` (default), ``manual`` or ``error``
``referrer``    sent as ``Referer`` unless it is ``about:client`` or empty
``timeout``     seconds, forwarded to httpx
==============  ==========================================================
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Optional, Protocol, Union

import httpx

from fetchcache.exceptions import TransportError
from fetchcache.keys import Resource
from fetchcache.models import ResponseMeta
from fetchcache.request import FetchRequest, classify_body

logger = logging.getLogger(__name__)

_NO_REFERRER = frozenset({"", "about:client", "no-referrer"})


class Transport(Protocol):
    """Shape of the collaborator that performs the real request."""

    async def __call__(self, resource: Resource, **init: Any) -> httpx.Response: ...


def _as_fetch_request(resource: Resource) -> FetchRequest:
    if isinstance(resource, FetchRequest):
        return resource
    if isinstance(resource, httpx.Request):
        return FetchRequest.from_httpx(resource)
    return FetchRequest(url=str(resource))


class HttpxTransport:
    """Sends fetch-style calls through an :class:`httpx.AsyncClient`.

    Args:
        client: Client to send with.  When omitted, one is created on first
            use and closed by :meth:`aclose`.

    Example::

        async with httpx.AsyncClient(http2=True) as client:
            cached_fetch = create_fetch_with_cache(transport=HttpxTransport(client))
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def build_request(self, resource: Resource, init: Mapping[str, Any]) -> httpx.Request:
        """Resolve *resource* and *init* into an :class:`httpx.Request`."""
        base = _as_fetch_request(resource)

        method = str(init.get("method", base.method)).upper()
        headers = httpx.Headers(base.headers)
        headers.update(httpx.Headers(init.get("headers") or {}))
        body = classify_body(init["body"]) if "body" in init else base.body

        referrer = init.get("referrer", base.referrer)
        if referrer not in _NO_REFERRER and "referer" not in headers:
            headers["referer"] = referrer

        content, content_type = body.encode()
        if content_type and "content-type" not in headers:
            headers["content-type"] = content_type

        timeout = init.get("timeout")
        return self._get_client().build_request(
            method,
            base.url,
            headers=headers,
            content=content,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )

    async def __call__(self, resource: Resource, **init: Any) -> httpx.Response:
        """Send the request and return the response with its body still unread.

        Raises:
            TransportError: On network failures, or when a redirect is
                answered while ``redirect="error"``.
        """
        request = self.build_request(resource, init)
        redirect = init.get("redirect", getattr(resource, "redirect", "follow"))

        logger.debug("Fetching %s %s", request.method, request.url)
        try:
            response = await self._get_client().send(
                request, stream=True, follow_redirects=redirect == "follow"
            )
        except httpx.TransportError as exc:
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

        if redirect == "error" and response.is_redirect:
            await response.aclose()
            raise TransportError(f"{request.method} {request.url} redirected while redirect='error'")
        return response

    async def aclose(self) -> None:
        """Close the client if this transport created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


async def iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """Stream the decoded body of *response*.

    Raises:
        TransportError: If the connection fails while the body is read.
    """
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.TransportError as exc:
        raise TransportError(f"Reading the body of {response.url} failed: {exc}") from exc


def serialize_meta(response: httpx.Response, init: Optional[Mapping[str, Any]] = None) -> ResponseMeta:
    """Capture the descriptors needed to rebuild *response* later."""
    headers: dict[str, Union[str, list[str]]] = {}
    for name, value in response.headers.multi_items():
        existing = headers.get(name)
        if existing is None:
            headers[name] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            headers[name] = [existing, value]

    declared = response.headers.get("content-length", "")
    timeout = (init or {}).get("timeout")
    return ResponseMeta(
        url=str(response.url),
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=headers,
        size=int(declared) if declared.isdigit() else 0,
        timeout=timeout if isinstance(timeout, (int, float)) else None,
        counter=len(response.history),
    )
