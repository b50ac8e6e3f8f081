"""Content-addressable byte store on top of :mod:`diskcache`.

Content is written once per digest under ``content:<integrity>`` and looked up
through named index entries, ``index:<sub_key>``, that record the integrity
token, size and write time.  Identical bodies written under different names
share one copy on disk.

Integrity tokens use the Subresource Integrity format, e.g.
``sha512-<base64 digest>``, and every read is checked against its token.

All :class:`diskcache.Cache` calls run in a worker thread via
:func:`asyncio.to_thread`; the cache object is thread-safe.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import logging
import sqlite3
import tempfile
import time
from collections.abc import AsyncIterable, AsyncIterator, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, NamedTuple, Optional, Union

import diskcache

from fetchcache.exceptions import IntegrityError, NoDataWritten, StorageError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha512"

_CHUNK_SIZE = 64 * 1024
_SPOOL_MAX_SIZE = 1024 * 1024


class IndexEntry(NamedTuple):
    key: str
    integrity: str
    size: int
    time: float


def _integrity_of(digest: Any) -> str:
    return f"{digest.name}-{base64.b64encode(digest.digest()).decode('ascii')}"


def _new_digest(integrity: str) -> Any:
    algorithm, _, _ = integrity.partition("-")
    try:
        return hashlib.new(algorithm)
    except ValueError as exc:
        raise IntegrityError(f"Unsupported integrity algorithm in {integrity!r}") from exc


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Re-raise disk and database failures as :class:`StorageError`."""
    try:
        yield
    except StorageError:
        raise
    except (OSError, sqlite3.Error, diskcache.Timeout) as exc:
        raise StorageError(f"Cache storage failed to {action}: {exc}") from exc


class ContentStore:
    """Named, integrity-checked blobs in a directory.

    Args:
        directory: Root directory of the underlying :class:`diskcache.Cache`.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        with _storage_errors(f"open {self.directory}"):
            self._cache = diskcache.Cache(str(self.directory))

    @staticmethod
    def _index_key(sub_key: str) -> str:
        return f"index:{sub_key}"

    @staticmethod
    def _content_key(integrity: str) -> str:
        return f"content:{integrity}"

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def put_stream(self, sub_key: str, chunks: AsyncIterable[bytes]) -> str:
        """Stream *chunks* into the store under *sub_key*.

        Returns:
            The integrity token of the written content.

        Raises:
            NoDataWritten: If *chunks* yielded no bytes; nothing is indexed.
            StorageError: If the disk write fails.
        """
        digest = hashlib.new(DEFAULT_ALGORITHM)
        size = 0
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE) as spool:
            async for chunk in chunks:
                digest.update(chunk)
                spool.write(chunk)
                size += len(chunk)
            if size == 0:
                raise NoDataWritten(f"No data written for {sub_key!r}")
            integrity = _integrity_of(digest)
            spool.seek(0)
            await asyncio.to_thread(self._write, sub_key, integrity, size, spool)
        return integrity

    async def put(self, sub_key: str, data: bytes) -> str:
        """Store *data* under *sub_key* and return its integrity token."""
        digest = hashlib.new(DEFAULT_ALGORITHM, data)
        integrity = _integrity_of(digest)
        with tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_SIZE) as spool:
            spool.write(data)
            spool.seek(0)
            await asyncio.to_thread(self._write, sub_key, integrity, len(data), spool)
        return integrity

    def _write(self, sub_key: str, integrity: str, size: int, reader: IO[bytes]) -> None:
        content_key = self._content_key(integrity)
        with _storage_errors(f"write {sub_key!r}"):
            if content_key not in self._cache:
                self._cache.set(content_key, reader, read=True)
            entry = {"key": sub_key, "integrity": integrity, "size": size, "time": time.time()}
            self._cache.set(self._index_key(sub_key), entry)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def info(self, sub_key: str) -> Optional[IndexEntry]:
        """Return the index entry for *sub_key*, or ``None``."""
        with _storage_errors(f"read index {sub_key!r}"):
            entry = await asyncio.to_thread(self._cache.get, self._index_key(sub_key))
        if entry is None:
            return None
        return IndexEntry(**entry)

    async def _open(self, integrity: str) -> IO[bytes]:
        with _storage_errors(f"open content {integrity}"):
            handle = await asyncio.to_thread(self._cache.get, self._content_key(integrity), None, True)
        if handle is None:
            raise StorageError(f"No content stored for {integrity}")
        # Small values written without read=True come back inline.
        if isinstance(handle, bytes):
            return io.BytesIO(handle)
        return handle

    async def get_by_digest(self, integrity: str) -> bytes:
        """Read and verify the whole content stored for *integrity*."""
        return b"".join([chunk async for chunk in self.stream_by_digest(integrity)])

    async def stream_by_digest(self, integrity: str) -> AsyncIterator[bytes]:
        """Yield the content stored for *integrity* in chunks.

        The digest is checked as the stream is read; a mismatch raises
        :class:`~fetchcache.exceptions.IntegrityError` once the last chunk
        has been read.
        """
        digest = _new_digest(integrity)
        handle = await self._open(integrity)
        try:
            while True:
                with _storage_errors(f"read content {integrity}"):
                    chunk = await asyncio.to_thread(handle.read, _CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
                yield chunk
        finally:
            handle.close()

        if _integrity_of(digest) != integrity:
            logger.warning("Integrity check failed for %s in %s", integrity, self.directory)
            raise IntegrityError(f"Stored content does not match {integrity}")

    # ------------------------------------------------------------------ #
    # Removal
    # ------------------------------------------------------------------ #

    async def rm_entry(self, sub_key: str) -> None:
        """Drop the index entry for *sub_key*; the content itself is left in place."""
        with _storage_errors(f"remove {sub_key!r}"):
            await asyncio.to_thread(self._cache.delete, self._index_key(sub_key))

    async def clear(self) -> None:
        with _storage_errors("clear"):
            await asyncio.to_thread(self._cache.clear)

    def close(self) -> None:
        self._cache.close()
