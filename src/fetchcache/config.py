"""Configuration resolution with XDG paths and environment overrides.

Persistent-store settings come from three places, highest precedence first:

1. Explicit constructor arguments
   (``PersistentStore(cache_directory=..., ttl=...)``).
2. Environment variables ``FETCHCACHE_TTL`` (seconds, float) and
   ``FETCHCACHE_DIR`` (directory for the persistent store).
3. Defaults: no TTL, and :func:`get_cache_dir` for the directory.

The directory layout follows the XDG Base Directory spec on Linux/BSD and
falls back to ``~/.fetchcache/`` on macOS and Windows.
"""

from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from fetchcache.exceptions import ConfigError
from fetchcache.models import CacheConfig

_APP_NAME = "fetchcache"

ENV_TTL = "FETCHCACHE_TTL"
ENV_DIR = "FETCHCACHE_DIR"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_cache_dir() -> Path:
    """Return the default persistent-store directory.

    On Linux/BSD: ``$XDG_CACHE_HOME/fetchcache/`` (default ``~/.cache/fetchcache/``).
    On macOS/Windows: ``~/.fetchcache/cache/``.

    The directory is not created here; :class:`diskcache.Cache` creates it on
    first open.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    return _fallback_base_dir() / "cache"


# --- Precedence resolution ---


def _env_ttl() -> Optional[float]:
    raw = os.environ.get(ENV_TTL, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid {ENV_TTL}={raw!r}: expected a number of seconds") from exc


def resolve_config(
    ttl: Optional[float] = None,
    cache_dir: Union[str, Path, None] = None,
) -> CacheConfig:
    """Resolve store settings with full precedence chain.

    Precedence (high to low):
        1. Arguments (``ttl``, ``cache_dir``)
        2. Environment variables (``FETCHCACHE_TTL``, ``FETCHCACHE_DIR``)
        3. Defaults (no TTL, :func:`get_cache_dir`)

    Returns:
        The validated :class:`~fetchcache.models.CacheConfig`.

    Raises:
        ConfigError: If the environment holds a malformed value or the TTL is
            not positive.
    """
    if ttl is None:
        ttl = _env_ttl()

    if cache_dir is None:
        env_dir = os.environ.get(ENV_DIR, "")
        cache_dir = Path(env_dir).expanduser() if env_dir else get_cache_dir()

    try:
        return CacheConfig(ttl_seconds=ttl, cache_dir=Path(cache_dir))
    except ValidationError as exc:
        raise ConfigError(f"Invalid cache configuration: {exc}") from exc
