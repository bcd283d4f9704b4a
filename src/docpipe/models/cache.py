from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class FileCacheConfig(BaseModel):
    """Settings of a file-backed cache. One file per entry."""

    model_config = ConfigDict(frozen=True)

    lifetime: float = Field(default=0, ge=0)  # Seconds; 0 = always outdated
    directory: str = "cache"
    extension: str = "json"
    as_json: bool = True  # False stores values as raw text


class SqliteCacheConfig(BaseModel):
    """Settings of an SQLite-backed cache. One row per entry."""

    model_config = ConfigDict(frozen=True)

    lifetime: float = Field(default=0, ge=0)
    table: str = Field(default="cache_entries", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
