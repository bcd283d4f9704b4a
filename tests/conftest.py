"""Shared test fixtures for the docpipe test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from docpipe.cache import FileCache
from docpipe.errors import CacheEntryNotFoundError

if TYPE_CHECKING:
    from pathlib import Path


class RecordingCache:
    """In-memory cache double that records every call.

    ``fresh`` controls what ``is_outdated`` reports for stored entries.
    """

    def __init__(self, entries: dict[str, Any] | None = None, *, fresh: bool = True) -> None:
        self.entries: dict[str, Any] = dict(entries or {})
        self.fresh = fresh
        self.stored: list[tuple[str, Any]] = []
        self.retrieved: list[str] = []

    def get_config(self) -> dict:
        return {"lifetime": 100 if self.fresh else 0}

    async def exists(self, key: str) -> bool:
        return key in self.entries

    async def is_outdated(self, key: str) -> bool:
        if key not in self.entries:
            raise CacheEntryNotFoundError(key)
        return not self.fresh

    async def store(self, key: str, value: Any) -> None:
        self.stored.append((key, value))
        self.entries[key] = value

    async def retrieve(self, key: str) -> Any:
        self.retrieved.append(key)
        if key not in self.entries:
            raise CacheEntryNotFoundError(key)
        return self.entries[key]

    async def remove(self, key: str) -> None:
        if key not in self.entries:
            raise CacheEntryNotFoundError(key)
        del self.entries[key]

    async def get_remaining_lifetime(self, key: str) -> float:
        return 100 if self.fresh else 0


class CallCounter:
    """Wraps a function and counts invocations."""

    def __init__(self, fn: Any) -> None:
        self.fn = fn
        self.calls: list[tuple] = []

    def __call__(self, *args: Any) -> Any:
        self.calls.append(args)
        return self.fn(*args)

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture()
def file_cache(tmp_path: Path) -> FileCache:
    """File cache with a one-hour lifetime rooted in a temp directory."""
    return FileCache(lifetime=3600, directory=tmp_path / "cache")


@pytest.fixture()
def expired_file_cache(tmp_path: Path) -> FileCache:
    """File cache whose entries are outdated as soon as they are written."""
    return FileCache(lifetime=0, directory=tmp_path / "cache")


@pytest.fixture()
def make_cache() -> type[RecordingCache]:
    """Factory for in-memory recording caches."""
    return RecordingCache


@pytest.fixture()
def counted() -> type[CallCounter]:
    """Factory wrapping a function with a call counter."""
    return CallCounter
