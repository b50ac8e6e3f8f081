"""Canonical Pydantic models shared across all fetchcache modules.

The models fall into three groups:

**Key configuration** -- :class:`KeyFlags`, the immutable set of switches that
decides which request fields feed the cache key.  Every
:class:`~fetchcache.fetch.CachedFetch` owns its own instance.

**Response metadata** -- :class:`ResponseMeta`, the descriptors needed to
rebuild a response (status, headers, URL, ...), and :class:`StoredMeta`, the
on-disk superset that also carries the internal bookkeeping fields written by
:class:`~fetchcache.stores.PersistentStore`.

**Store configuration** -- :class:`CacheConfig`, produced by
:func:`fetchcache.config.resolve_config`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Key flags ---


class KeyFlags(BaseModel):
    """Which request fields participate in cache-key derivation.

    Each field defaults to ``True``.  A field switched off is replaced by an
    empty placeholder before hashing, so its value can no longer influence
    the key.  ``headers`` may also be a per-header inclusion map: names mapped
    to ``False`` are left out, every other header is included.

    Example::

        KeyFlags(headers={"authorization": False}, referrerPolicy=False)
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    cache: bool = True
    credentials: bool = True
    destination: bool = True
    headers: Union[bool, dict[str, bool]] = True
    integrity: bool = True
    method: bool = True
    redirect: bool = True
    referrer: bool = True
    referrer_policy: bool = Field(default=True, alias="referrerPolicy")
    url: bool = True
    body: bool = True

    @field_validator("headers")
    @classmethod
    def _lowercase_header_names(cls, value: Union[bool, dict[str, bool]]) -> Union[bool, dict[str, bool]]:
        if isinstance(value, dict):
            return {name.lower(): include for name, include in value.items()}
        return value

    def enabled(self, field: str) -> bool:
        """Return whether *field* feeds the key (a header map counts as enabled)."""
        value = getattr(self, field)
        return bool(value) if isinstance(value, bool) else True

    def includes_header(self, name: str) -> bool:
        """Return whether the (lower-cased) header *name* feeds the key."""
        if isinstance(self.headers, bool):
            return self.headers
        return self.headers.get(name, True)


DEFAULT_KEY_FLAGS = KeyFlags()
"""Every field enabled."""


# --- Response metadata ---


class ResponseMeta(BaseModel):
    """Descriptors needed to reconstruct a response around a cached body.

    ``headers`` maps lower-case header names to a single value, or to a list
    when the header was repeated.  ``counter`` is the number of redirects the
    transport followed.
    """

    url: str = ""
    status: int = 200
    status_text: str = ""
    headers: dict[str, Union[str, list[str]]] = Field(default_factory=dict)
    size: int = 0
    timeout: Optional[float] = None
    counter: int = 0


INTERNAL_META_FIELDS = frozenset({"expiration", "body_integrity", "empty"})


class StoredMeta(ResponseMeta):
    """The metadata document persisted next to each body.

    Extends :class:`ResponseMeta` with fields that only the persistent store
    reads: an absolute ``expiration`` timestamp (epoch seconds), the body's
    SRI ``body_integrity`` digest, and the ``empty`` flag recorded instead of
    a digest when the body had no bytes.
    """

    expiration: Optional[float] = None
    body_integrity: Optional[str] = None
    empty: bool = False

    def to_public(self) -> ResponseMeta:
        """Strip the internal-only fields."""
        return ResponseMeta.model_validate(self.model_dump(exclude=set(INTERNAL_META_FIELDS)))


# --- Store config ---


class CacheConfig(BaseModel):
    """Store settings resolved from arguments, environment and defaults."""

    ttl_seconds: Optional[float] = Field(
        default=None, gt=0, description="Entry lifetime in seconds; None keeps entries forever"
    )
    cache_dir: Optional[Path] = Field(
        default=None, description="Directory used by the persistent store"
    )
