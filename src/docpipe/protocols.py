"""Protocol interfaces for swappable components.

The document pipeline references these protocols, not the concrete
implementations. Any object with matching async methods can act as a raw or
transformed cache: the file cache, the SQLite cache, the pseudo cache or
a lightweight in-memory double in tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, TypeAlias

Retriever: TypeAlias = Callable[[str, Any], Any]
GetUri: TypeAlias = Callable[[Any, Any], Any]
GetCacheId: TypeAlias = Callable[[str], Any]

# Methods the document pipeline calls on both caches.
PIPELINE_CACHE_METHODS = ("exists", "is_outdated", "retrieve", "store")


class CacheProtocol(Protocol):
    """Interface for a TTL cache keyed by cache id.

    ``is_outdated`` and ``get_remaining_lifetime`` are only defined for keys
    that exist; callers check ``exists`` first.
    """

    def get_config(self) -> Any: ...

    async def exists(self, key: str) -> bool: ...

    async def is_outdated(self, key: str) -> bool: ...

    async def store(self, key: str, value: Any) -> None: ...

    async def retrieve(self, key: str) -> Any: ...

    async def remove(self, key: str) -> None: ...

    async def get_remaining_lifetime(self, key: str) -> float: ...
