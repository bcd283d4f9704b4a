"""File-backed TTL cache and the no-op pseudo cache.

Each entry of a ``FileCache`` lives in ``<directory>/<key>.<extension>``.
The file's modification time is the only timestamp: re-storing an entry
overwrites the file and so resets its age to zero. Blocking filesystem calls
run in a worker thread via ``asyncio.to_thread``.

Unlike a best-effort cache, every failure here propagates to the caller as a
``CacheError``. The document pipeline decides freshness through ``exists``
and ``is_outdated``; anything else going wrong aborts the fetch.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
import time
from contextlib import suppress
from pathlib import Path
from typing import Any

import structlog

from docpipe.errors import CacheEntryNotFoundError, CacheError, ErrorCode
from docpipe.models.cache import FileCacheConfig

log = structlog.get_logger()


class FileCache:
    """File-backed cache implementing CacheProtocol."""

    def __init__(
        self,
        lifetime: float = 0,
        directory: str | os.PathLike[str] = "cache",
        extension: str = "json",
        *,
        as_json: bool = True,
    ) -> None:
        self._config = FileCacheConfig(
            lifetime=lifetime,
            directory=str(directory),
            extension=extension,
            as_json=as_json,
        )
        log.debug(
            "file_cache_created",
            lifetime=self._config.lifetime,
            directory=self._config.directory,
            extension=self._config.extension,
        )

    @classmethod
    def from_config(cls, config: FileCacheConfig) -> FileCache:
        return cls(
            lifetime=config.lifetime,
            directory=config.directory,
            extension=config.extension,
            as_json=config.as_json,
        )

    def get_config(self) -> FileCacheConfig:
        return self._config

    def path_for(self, key: str) -> Path:
        """Return the absolute path of the file holding ``key``."""
        return Path(self._config.directory).resolve() / f"{key}.{self._config.extension}"

    # ------------------------------------------------------------------
    # Cache contract
    # ------------------------------------------------------------------

    async def exists(self, key: str) -> bool:
        """Probe whether the entry file is readable (not merely present)."""
        path = self.path_for(key)
        accessible = await asyncio.to_thread(os.access, path, os.R_OK)
        log.debug("cache_file_probe", path=str(path), accessible=accessible)
        return accessible

    async def store(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        payload = self._encode(path, value)
        try:
            await asyncio.to_thread(_write_atomic, path, payload)
        except OSError as exc:
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Could not write cache file {path}: {exc}",
                recoverable=True,
            ) from exc
        log.debug("cache_file_written", path=str(path))

    async def retrieve(self, key: str) -> Any:
        path = self.path_for(key)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as exc:
            raise CacheEntryNotFoundError(key, f"Cache file {path} does not exist") from exc
        except OSError as exc:
            raise CacheError(
                ErrorCode.CACHE_READ_FAILED,
                f"Could not read cache file {path}: {exc}",
                recoverable=True,
            ) from exc
        except UnicodeDecodeError as exc:
            raise CacheError(
                ErrorCode.CACHE_READ_FAILED,
                f"Cache file {path} is not valid UTF-8: {exc}",
            ) from exc

        log.debug("cache_file_read", path=str(path), decode_json=self._config.as_json)

        if not self._config.as_json:
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheError(
                ErrorCode.CACHE_READ_FAILED,
                f"Cache file {path} does not contain valid JSON: {exc}",
            ) from exc

    async def remove(self, key: str) -> None:
        """Delete the entry file. Raises ``CacheEntryNotFoundError`` if absent."""
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as exc:
            raise CacheEntryNotFoundError(key, f"Cache file {path} does not exist") from exc
        log.debug("cache_file_removed", path=str(path))

    async def get_remaining_lifetime(self, key: str) -> float:
        """Seconds until the entry goes stale, floored at 0.

        Age is derived from the file's mtime. The entry must exist.
        """
        path = self.path_for(key)
        try:
            stat = await asyncio.to_thread(path.stat)
        except FileNotFoundError as exc:
            raise CacheEntryNotFoundError(key, f"Cache file {path} does not exist") from exc

        lifetime = self._config.lifetime
        age = max(0.0, time.time() - stat.st_mtime)
        remaining = 0.0 if age >= lifetime else lifetime - age

        log.debug(
            "cache_file_lifetime",
            path=str(path),
            age=round(age, 3),
            lifetime=lifetime,
            remaining=round(remaining, 3),
        )
        return remaining

    async def is_outdated(self, key: str) -> bool:
        return await self.get_remaining_lifetime(key) == 0

    def _encode(self, path: Path, value: Any) -> bytes:
        """Serialise ``value`` for ``path`` before anything touches the disk."""
        if not self._config.as_json and not isinstance(value, str):
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Cache file {path} stores text, but got {type(value).__name__}",
            )
        try:
            text = json.dumps(value) if self._config.as_json else value
            return text.encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Could not serialise value for cache file {path}: {exc}",
            ) from exc


def _write_atomic(path: Path, payload: bytes) -> None:
    # Readers only ever see a complete old file or a complete new one.
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    finally:
        with suppress(OSError):
            os.unlink(tmp_name)


class PseudoCache:
    """Cache that never holds anything.

    Used wherever caching is disabled so the pipeline keeps a single code
    path: every lookup is a miss and every store is dropped.
    """

    def get_config(self) -> dict[str, float]:
        return {"lifetime": 0}

    async def exists(self, key: str) -> bool:
        return False

    async def is_outdated(self, key: str) -> bool:
        return True

    async def store(self, key: str, value: Any) -> None:
        return None

    async def retrieve(self, key: str) -> Any:
        raise CacheEntryNotFoundError(key, "The pseudo cache never holds entries")

    async def remove(self, key: str) -> None:
        return None

    async def get_remaining_lifetime(self, key: str) -> float:
        return 0
