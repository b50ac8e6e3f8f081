"""Deterministic cache-key derivation.

A cache key is the SHA-256 hex digest of a canonical JSON document::

    [resource_fields, init_fields, CACHE_VERSION]

*resource_fields* come from the request passed as the first argument to the
cache-aware fetch (a :class:`~fetchcache.request.FetchRequest`, an
:class:`httpx.Request`, or a bare URL); *init_fields* come from the keyword
options of the call.  Fields switched off in
:class:`~fetchcache.models.KeyFlags` are replaced with ``""`` so toggling a
flag changes which bytes are hashed without ever failing.

Two things never reach the digest:

* the ``Cache-Control: only-if-cached`` directive, which selects a read mode
  (see :func:`has_only_if_cached`) rather than a different response;
* the transport-only options in :data:`TRANSPORT_ONLY_OPTIONS`, which change
  how a response is delivered but not which response it is.

JSON is serialised with sorted keys, fixed separators and ASCII escapes
(undecodable body bytes survive as escaped surrogates) so the same request
hashes identically across processes and platforms.  Bumping
:data:`CACHE_VERSION` moves every request to a fresh key.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any, Optional, Union

import httpx

from fetchcache.models import DEFAULT_KEY_FLAGS, KeyFlags
from fetchcache.request import FetchRequest, classify_body, decode_lossless

logger = logging.getLogger(__name__)

CACHE_VERSION = 4
"""Cache format version mixed into every key."""

TRANSPORT_ONLY_OPTIONS = frozenset({"agent", "timeout", "signal", "extensions", "size"})
"""Call options that never participate in the key, whatever the entry point."""

KEY_FIELDS = (
    "cache",
    "credentials",
    "destination",
    "headers",
    "integrity",
    "method",
    "redirect",
    "referrer",
    "referrer_policy",
    "url",
    "body",
)

_OPTION_ALIASES = {"referrerPolicy": "referrer_policy"}

Resource = Union[str, httpx.URL, FetchRequest, httpx.Request]


# --- Field normalisation ---


def _is_only_if_cached(value: str) -> bool:
    return value.strip().lower() == "only-if-cached"


def _strip_boundary(content_type: str) -> str:
    params = [p.strip() for p in content_type.split(";")]
    kept = [p for p in params[1:] if not p.lower().startswith("boundary=")]
    return "; ".join([params[0], *kept])


def normalize_headers(headers: Any, key_flags: KeyFlags = DEFAULT_KEY_FLAGS) -> dict[str, str]:
    """Lower-case header names and drop everything that must not affect the key.

    Repeated headers are joined with ``", "``.  Headers excluded by a
    per-header inclusion map are dropped, as is ``cache-control:
    only-if-cached``.  A multipart ``content-type`` loses its random
    ``boundary`` parameter.
    """
    normalized: dict[str, str] = {}
    for name, value in httpx.Headers(headers).items():
        if name == "cache-control" and _is_only_if_cached(value):
            continue
        if not key_flags.includes_header(name):
            continue
        if name == "content-type" and value.lower().startswith("multipart/"):
            value = _strip_boundary(value)
        normalized[name] = value
    return normalized


def _request_fields(request: FetchRequest, key_flags: KeyFlags) -> dict[str, Any]:
    values = {
        "cache": request.cache,
        "credentials": request.credentials,
        "destination": request.destination,
        "headers": normalize_headers(request.headers, key_flags),
        "integrity": request.integrity,
        "method": request.method,
        "redirect": request.redirect,
        "referrer": request.referrer,
        "referrer_policy": request.referrer_policy,
        "url": request.url,
        "body": request.body.key_material(),
    }
    return {name: value if key_flags.enabled(name) else "" for name, value in values.items()}


def _url_fields(url: str, key_flags: KeyFlags) -> dict[str, Any]:
    fields: dict[str, Any] = {name: "" for name in KEY_FIELDS}
    if key_flags.url:
        fields["url"] = url
    if key_flags.enabled("headers"):
        fields["headers"] = {}
    if key_flags.body:
        fields["body"] = None
    return fields


def _resource_fields(resource: Resource, key_flags: KeyFlags) -> dict[str, Any]:
    if isinstance(resource, httpx.Request):
        resource = FetchRequest.from_httpx(resource)
    if isinstance(resource, FetchRequest):
        return _request_fields(resource, key_flags)
    if isinstance(resource, (str, httpx.URL)):
        return _url_fields(str(resource), key_flags)
    raise TypeError(
        f"Resource must be a URL, FetchRequest or httpx.Request, not {type(resource).__name__}"
    )


def _init_fields(init: Mapping[str, Any], key_flags: KeyFlags) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for name, value in init.items():
        name = _OPTION_ALIASES.get(name, name)
        if name in TRANSPORT_ONLY_OPTIONS:
            continue
        if name in KEY_FIELDS and not key_flags.enabled(name):
            fields[name] = ""
            continue
        if name == "headers":
            value = normalize_headers(value or {}, key_flags)
        elif name == "body":
            value = classify_body(value).key_material()
        elif name == "method" and isinstance(value, str):
            value = value.upper()
        fields[name] = value

    if "headers" not in fields:
        fields["headers"] = {} if key_flags.enabled("headers") else ""
    return fields


def _json_default(value: Any) -> Any:
    if isinstance(value, (httpx.URL, httpx.QueryParams)):
        return str(value)
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if isinstance(value, (bytes, bytearray)):
        return decode_lossless(bytes(value))
    raise TypeError(f"Option value of type {type(value).__name__} cannot be part of a cache key")


# --- Public API ---


def derive_key(
    resource: Resource,
    init: Optional[Mapping[str, Any]] = None,
    key_flags: KeyFlags = DEFAULT_KEY_FLAGS,
    format_version: int = CACHE_VERSION,
) -> str:
    """Compute the cache key for a fetch call.

    Args:
        resource: Bare URL, :class:`~fetchcache.request.FetchRequest` or
            :class:`httpx.Request`.
        init: The call's keyword options (``method``, ``headers``, ``body``,
            ...).
        key_flags: Which fields participate.
        format_version: Mixed into the digest; defaults to
            :data:`CACHE_VERSION`.

    Returns:
        A 64-character lowercase hex digest.

    Raises:
        UnsupportedBodyType: If a body is not one of the recognised shapes.
        TypeError: If *resource* or an option value cannot be represented.
    """
    document = [
        _resource_fields(resource, key_flags),
        _init_fields(init or {}, key_flags),
        format_version,
    ]
    serialized = json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=_json_default,
    )
    key = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    logger.debug("Derived cache key %s for %s", key, resource)
    return key


def get_cache_key(
    resource: Resource,
    init: Optional[Mapping[str, Any]] = None,
    key_flags: Optional[KeyFlags] = None,
) -> str:
    """Return the key a cache-aware fetch would use for ``(resource, init)``."""
    return derive_key(resource, init, key_flags or DEFAULT_KEY_FLAGS)


def has_only_if_cached(resource: Resource, init: Optional[Mapping[str, Any]] = None) -> bool:
    """Return whether the call asks to be answered from the cache only.

    Either the call's ``headers`` option or the structured request's headers
    may carry ``Cache-Control: only-if-cached``.
    """
    sources = []
    if init and init.get("headers"):
        sources.append(httpx.Headers(init["headers"]))
    if isinstance(resource, (FetchRequest, httpx.Request)):
        sources.append(resource.headers)
    return any(
        _is_only_if_cached(value)
        for headers in sources
        for value in headers.get_list("cache-control")
    )
