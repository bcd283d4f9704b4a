"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables  (DOCPIPE__RAW_CACHE__LIFETIME=3600)
  3. docpipe.yaml           (searched in cwd, then platform config dir)
  4. Hardcoded defaults

The config file is optional. Library code never reads settings on its own:
callers load ``Settings`` and pass the relevant section to ``build_cache``,
``build_http_client`` or ``setup_logging``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from docpipe.cache import FileCache, PseudoCache

if TYPE_CHECKING:
    from docpipe.protocols import CacheProtocol


def _find_config_file() -> str | None:
    """Return the path of the first docpipe.yaml found, or None."""
    candidates = [
        Path("docpipe.yaml"),
        Path(platformdirs.user_config_dir("docpipe")) / "docpipe.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class CacheSettings(BaseModel):
    enabled: bool = True
    lifetime: float = Field(default=0, ge=0)  # Seconds
    directory: str = "cache"
    extension: str = "json"
    as_json: bool = True


class RawCacheSettings(CacheSettings):
    directory: str = "cache/raw"


class TransformedCacheSettings(CacheSettings):
    directory: str = "cache/transformed"


class HttpSettings(BaseModel):
    timeout: float = 30.0
    user_agent: str = ""  # Empty: "docpipe/<version>"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: DOCPIPE__HTTP__TIMEOUT=10
        env_prefix="DOCPIPE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    raw_cache: RawCacheSettings = RawCacheSettings()
    transformed_cache: TransformedCacheSettings = TransformedCacheSettings()
    http: HttpSettings = HttpSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls),
            # dotenv and file secrets intentionally excluded
        )


def build_cache(settings: CacheSettings) -> CacheProtocol:
    """Create the cache described by ``settings``.

    A disabled cache is a ``PseudoCache``, so callers keep the same pipeline
    wiring whether caching is on or off.
    """
    if not settings.enabled:
        return PseudoCache()
    return FileCache(
        lifetime=settings.lifetime,
        directory=settings.directory,
        extension=settings.extension,
        as_json=settings.as_json,
    )
