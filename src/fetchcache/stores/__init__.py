"""Cache backends for fetchcache.

:class:`MemoryStore` keeps entries in process memory; :class:`PersistentStore`
keeps them on disk in a content-addressable :mod:`diskcache` directory.  Both
implement the :class:`Store` interface and can be passed to
:func:`~fetchcache.fetch.create_fetch_with_cache`.
"""

from fetchcache.stores.base import Store, StoredValue
from fetchcache.stores.content import ContentStore
from fetchcache.stores.memory import MemoryStore
from fetchcache.stores.persistent import PersistentStore

__all__ = ["Store", "StoredValue", "MemoryStore", "PersistentStore", "ContentStore"]
