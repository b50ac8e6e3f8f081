"""Structured requests and request-body variants.

A request body is classified once, up front, into one of six variants:

=================  ===============================  ==========================
Variant            Built from                       Key material
=================  ===============================  ==========================
:class:`NoBody`    ``None``                         ``None``
:class:`Text`      ``str``                          the string
:class:`FormParams` mapping, pair sequence,         canonical urlencoded string
                   :class:`httpx.QueryParams`
:class:`FileRef`   file object opened from a path   the source path
:class:`MultipartForm` itself                       encoded parts, boundary removed
:class:`Bytes`     ``bytes`` / ``bytearray``        lossless UTF-8 decode
=================  ===============================  ==========================

Anything else raises :class:`~fetchcache.exceptions.UnsupportedBodyType` from
:func:`classify_body`.  Each variant also knows how to :meth:`encode` itself
for the transport.

:class:`FetchRequest` is the structured request object: it carries the
fields of a browser ``Request`` (``cache``, ``credentials``, ``integrity``,
...) that participate in cache-key derivation on top of method, URL, headers
and body.
"""

from __future__ import annotations

import io
import os
import secrets
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from urllib.parse import urlencode

import httpx

from fetchcache.exceptions import UnsupportedBodyType

_FILE_CHUNK_SIZE = 64 * 1024

BodyContent = Union[None, str, bytes, AsyncIterator[bytes]]

# Only used to give httpx a URL while it encodes a multipart body.
_MULTIPART_PLACEHOLDER_URL = "http://multipart.invalid/"


def decode_lossless(data: bytes) -> str:
    """Decode *data* as UTF-8, mapping undecodable bytes to lone surrogates.

    Valid UTF-8 decodes to the same string as a strict decode; distinct
    invalid byte sequences stay distinct.
    """
    return data.decode("utf-8", errors="surrogateescape")


# --- Body variants ---


@dataclass(frozen=True)
class NoBody:
    def key_material(self) -> None:
        return None

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return None, None


@dataclass(frozen=True)
class Text:
    value: str

    def key_material(self) -> str:
        return self.value

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return self.value, "text/plain;charset=UTF-8"


@dataclass(frozen=True)
class FormParams:
    """URL-encoded form parameters, kept in their canonical string form."""

    encoded: str

    def key_material(self) -> str:
        return self.encoded

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return self.encoded, "application/x-www-form-urlencoded;charset=UTF-8"


@dataclass(frozen=True)
class FileRef:
    """A body streamed from a file on disk.

    The key identifies the file by path; its contents are only read when the
    request is actually sent.
    """

    path: str
    file: Any = field(default=None, compare=False, repr=False)

    def key_material(self) -> str:
        return self.path

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return self._chunks(), None

    async def _chunks(self) -> AsyncIterator[bytes]:
        if self.file is not None:
            handle = self.file
            while chunk := handle.read(_FILE_CHUNK_SIZE):
                yield chunk.encode() if isinstance(chunk, str) else chunk
            return
        with open(self.path, "rb") as handle:
            while chunk := handle.read(_FILE_CHUNK_SIZE):
                yield chunk


@dataclass(frozen=True)
class Bytes:
    value: bytes

    def key_material(self) -> str:
        return decode_lossless(self.value)

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return self.value, None


class MultipartForm:
    """A ``multipart/form-data`` body with a random per-instance boundary.

    The parts are encoded by :mod:`httpx` when the form is built, so field
    names and filenames are escaped exactly as they go out on the wire.

    Two forms with the same fields encode to different bytes because the
    boundary differs, so the key material is the encoded form with every
    occurrence of the boundary token removed.

    Args:
        data: Plain form fields, as a mapping or a sequence of pairs.
        files: File fields.  Each value is raw content (``bytes``/``str``/a
            binary file object) or a ``(filename, content[, content_type])``
            tuple.  Without an explicit type, httpx guesses one from the
            filename.
        boundary: Override the generated boundary.

    Example::

        form = MultipartForm(data={"name": "x"}, files={"upload": ("a.txt", b"hi")})
        await cached_fetch("https://api.example.com/upload", method="POST", body=form)
    """

    def __init__(
        self,
        data: Union[Mapping[str, Any], list[tuple[str, Any]], None] = None,
        files: Optional[Mapping[str, Any]] = None,
        boundary: Optional[str] = None,
    ) -> None:
        self.boundary = boundary or f"--------------------------{secrets.token_hex(12)}"
        parts: list[tuple[str, Any]] = []
        pairs = data.items() if isinstance(data, Mapping) else (data or [])
        # Plain fields go in as filename-less parts so httpx emits multipart
        # even when there are no files.
        for name, value in pairs:
            parts.append((name, (None, _to_bytes(value))))
        for name, value in (files or {}).items():
            if not isinstance(value, tuple) and not hasattr(value, "read"):
                value = (name, _to_bytes(value))
            parts.append((name, value))
        self.content = self._encode(parts) if parts else f"--{self.boundary}--\r\n".encode()

    def _encode(self, parts: list[tuple[str, Any]]) -> bytes:
        request = httpx.Request(
            "POST",
            _MULTIPART_PLACEHOLDER_URL,
            files=parts,
            headers={"content-type": self.content_type},
        )
        return request.read()

    @classmethod
    def from_encoded(cls, content: bytes, boundary: str) -> MultipartForm:
        """Wrap an already-encoded multipart body (e.g. one built by :mod:`httpx`)."""
        form = cls(boundary=boundary)
        form.content = content
        return form

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def key_material(self) -> str:
        return decode_lossless(self.content).replace(self.boundary, "")

    def encode(self) -> tuple[BodyContent, Optional[str]]:
        return self.content, self.content_type

    def __repr__(self) -> str:
        return f"MultipartForm(boundary={self.boundary!r}, size={len(self.content)})"


RequestBody = Union[NoBody, Text, FormParams, FileRef, MultipartForm, Bytes]

_VARIANTS = (NoBody, Text, FormParams, FileRef, MultipartForm, Bytes)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return str(value).encode()


def _is_pair_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(
        isinstance(item, tuple) and len(item) == 2 for item in value
    )


def classify_body(body: Any) -> RequestBody:
    """Tag *body* with its variant.

    Raises:
        UnsupportedBodyType: If *body* is none of the recognised shapes.
    """
    if isinstance(body, _VARIANTS):
        return body
    if body is None:
        return NoBody()
    if isinstance(body, str):
        return Text(body)
    if isinstance(body, (bytes, bytearray, memoryview)):
        return Bytes(bytes(body))
    if isinstance(body, httpx.QueryParams):
        return FormParams(str(body))
    if isinstance(body, Mapping) or _is_pair_sequence(body):
        return FormParams(urlencode(body, doseq=True))
    if isinstance(body, io.IOBase) and isinstance(getattr(body, "name", None), (str, os.PathLike)):
        return FileRef(path=os.fspath(body.name), file=body)
    raise UnsupportedBodyType(body)


def _body_from_httpx(request: httpx.Request) -> RequestBody:
    try:
        content = request.content
    except httpx.RequestNotRead:
        content = request.read()
    if not content:
        return NoBody()

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        boundary = _content_type_param(content_type, "boundary")
        if boundary:
            return MultipartForm.from_encoded(content, boundary)
    if content_type.startswith("application/x-www-form-urlencoded"):
        return FormParams(decode_lossless(content))
    return Bytes(content)


def _content_type_param(content_type: str, name: str) -> Optional[str]:
    for param in content_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key.lower() == name:
            return value.strip('"')
    return None


# --- Structured request ---


@dataclass
class FetchRequest:
    """A request carrying every field that can participate in the cache key.

    ``headers`` is normalised to :class:`httpx.Headers` and ``body`` is
    classified into a body variant at construction time, so an unsupported
    body fails here rather than during key derivation.

    Defaults follow the Fetch standard's ``Request`` defaults.
    """

    url: str
    method: str = "GET"
    headers: Any = None
    body: Any = None
    cache: str = "default"
    credentials: str = "same-origin"
    destination: str = ""
    integrity: str = ""
    redirect: str = "follow"
    referrer: str = "about:client"
    referrer_policy: str = ""

    def __post_init__(self) -> None:
        self.url = str(self.url)
        self.method = self.method.upper()
        self.headers = httpx.Headers(self.headers)
        self.body = classify_body(self.body)
        if isinstance(self.body, MultipartForm) and "content-type" not in self.headers:
            self.headers["content-type"] = self.body.content_type

    @classmethod
    def from_httpx(cls, request: httpx.Request) -> FetchRequest:
        """Build a :class:`FetchRequest` from an :class:`httpx.Request`.

        Fields httpx has no notion of (``cache``, ``credentials``, ...) take
        their defaults.  The request body is read into memory.
        """
        return cls(
            url=str(request.url),
            method=request.method,
            headers=request.headers,
            body=_body_from_httpx(request),
        )
