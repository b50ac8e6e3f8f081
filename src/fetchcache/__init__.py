"""fetchcache -- a response cache in front of an async HTTP client.

A cache-aware fetch derives a deterministic key from each request, answers
from a store when it can, and otherwise performs the request once (however
many callers ask for it concurrently) and stores the result.

Typical use::

    from fetchcache import PersistentStore, create_fetch_with_cache

    cached_fetch = create_fetch_with_cache(PersistentStore(ttl=3600))
    response = await cached_fetch("https://api.example.com/users")
    print(response.from_cache, await response.json())

Modules:
    fetch: The cache-aware fetch orchestrator.
    keys: Cache-key derivation.
    request: Structured requests and body variants.
    stores: Memory and persistent cache backends.
    lock: Single-flight named locks.
    transport: The httpx-based transport.
    response: The :class:`CachedResponse` wrapper.
    models: Pydantic models shared across the package.
    config: Environment and XDG-aware configuration.
    exceptions: Exception hierarchy.
"""

from fetchcache.exceptions import (
    BodyAlreadyConsumed,
    ConfigError,
    FetchCacheError,
    IntegrityError,
    StorageError,
    TransportError,
    UnsupportedBodyType,
)
from fetchcache.fetch import CachedFetch, create_fetch_with_cache, fetch_builder
from fetchcache.keys import CACHE_VERSION, derive_key, get_cache_key
from fetchcache.models import KeyFlags, ResponseMeta
from fetchcache.request import FetchRequest, MultipartForm
from fetchcache.response import CachedResponse
from fetchcache.stores import MemoryStore, PersistentStore, Store
from fetchcache.transport import HttpxTransport

__version__ = "0.4.0"

__all__ = [
    "CACHE_VERSION",
    "BodyAlreadyConsumed",
    "CachedFetch",
    "CachedResponse",
    "ConfigError",
    "FetchCacheError",
    "FetchRequest",
    "HttpxTransport",
    "IntegrityError",
    "KeyFlags",
    "MemoryStore",
    "MultipartForm",
    "PersistentStore",
    "ResponseMeta",
    "StorageError",
    "Store",
    "TransportError",
    "UnsupportedBodyType",
    "create_fetch_with_cache",
    "derive_key",
    "fetch_builder",
    "get_cache_key",
]
