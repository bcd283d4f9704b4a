from __future__ import annotations

from docpipe.models.cache import FileCacheConfig, SqliteCacheConfig

__all__ = [
    "FileCacheConfig",
    "SqliteCacheConfig",
]
