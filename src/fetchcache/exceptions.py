"""Exception hierarchy for fetchcache.

All exceptions inherit from :class:`FetchCacheError`.  Errors raised by a
collaborator (the HTTP client, the on-disk store) are wrapped in the matching
subclass and chained with ``raise ... from`` so the original cause stays
available on ``__cause__``.  The cache-aware fetch never retries and never
swallows these errors; they surface unchanged to its caller.

Subclass hierarchy::

    FetchCacheError
    +-- ConfigError
    +-- UnsupportedBodyType
    +-- TransportError
    +-- StorageError
    |   +-- NoDataWritten
    |   +-- IntegrityError
    +-- BodyAlreadyConsumed
"""


class FetchCacheError(Exception):
    """Base exception for all fetchcache errors.

    Args:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(FetchCacheError):
    """Raised for invalid configuration values (e.g. a non-numeric ``FETCHCACHE_TTL``)."""


class UnsupportedBodyType(FetchCacheError):
    """Raised when a request body is not one of the shapes the key deriver understands.

    Supported shapes are: ``None``, ``str``, bytes-like objects, form
    parameters (mappings, pair sequences, :class:`httpx.QueryParams`),
    file objects opened from a path, and
    :class:`~fetchcache.request.MultipartForm`.
    """

    def __init__(self, body: object):
        super().__init__(
            f"Unsupported body type {type(body).__name__!r}. Supported body types are: "
            "None, str, bytes, form parameters, file objects and MultipartForm"
        )
        self.body_type = type(body)


class TransportError(FetchCacheError):
    """Raised when the underlying HTTP transport fails (DNS, refused connection, timeout)."""


class StorageError(FetchCacheError):
    """Raised when the persistent store cannot read or write an entry."""


class NoDataWritten(StorageError):
    """Raised by the content store when a streamed put received zero bytes.

    :class:`~fetchcache.stores.PersistentStore` handles this as the
    empty-body case and never lets it escape.
    """


class IntegrityError(StorageError):
    """Raised when stored content no longer matches its integrity digest."""


class BodyAlreadyConsumed(FetchCacheError):
    """Raised when a :class:`~fetchcache.response.CachedResponse` body is streamed twice."""
