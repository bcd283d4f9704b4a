"""Document pipeline: retrieval, two cache layers and transformation.

``create_document`` wires a retriever, a transformer and a raw/transformed
cache pair into one async callable ``(id, options) -> transformed data``.

Per call:
  1. uri = get_uri(id, options); cache_key = get_cache_id(uri)
  2. fresh transformed entry → return it, nothing else happens
  3. fresh raw entry → use it, otherwise call the retriever
  4. freshly retrieved raw data is stored in the raw cache
  5. transform, store in the transformed cache, return

"Fresh" means ``exists`` and not ``is_outdated``. Errors raised by the
retriever, the caches or the transformer propagate unchanged; the pipeline
never falls back to the source when a cache misbehaves.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from docpipe.asyncutils import maybe_await
from docpipe.cache import PseudoCache
from docpipe.errors import ConfigurationError
from docpipe.protocols import PIPELINE_CACHE_METHODS
from docpipe.transformer import create_transformer, no_transform

if TYPE_CHECKING:
    from docpipe.protocols import CacheProtocol, GetCacheId, GetUri, Retriever

_ID_PLACEHOLDER = re.compile(r"\{id\}", re.IGNORECASE)


def md5_cache_id(uri: str) -> str:
    """Default cache key: hex MD5 digest of the uri."""
    return hashlib.md5(uri.encode("utf-8"), usedforsecurity=False).hexdigest()


def uri_template(template: str) -> GetUri:
    """Return a ``get_uri`` that substitutes the first ``{id}`` in ``template``.

    ``uri_template("https://api.example.com/repos/{id}")`` maps id ``42`` to
    ``https://api.example.com/repos/42``. Options are ignored.
    """
    if not isinstance(template, str):
        raise ConfigurationError(
            f"uri_template expects a string template, but found {type(template).__name__}."
        )

    def get_uri(id: Any, options: Any = None) -> str:
        return _ID_PLACEHOLDER.sub(lambda _: str(id), template, count=1)

    return get_uri


@dataclass(frozen=True)
class DocumentConfig:
    retriever: Retriever
    get_uri: GetUri
    get_cache_id: GetCacheId
    raw_cache: CacheProtocol
    transformed_cache: CacheProtocol
    transformer: Callable[[Any], Any]
    friendly_name: str = "Document"


class Document:
    """Async callable returned by ``create_document``."""

    def __init__(self, config: DocumentConfig, *, coalesce: bool = False) -> None:
        self.config = config
        self._coalesce = coalesce
        self._in_flight: dict[str, asyncio.Task] = {}

    async def __call__(self, id: Any = None, options: Any = None) -> Any:
        config = self.config
        uri = await maybe_await(config.get_uri(id, options))
        cache_key = await maybe_await(config.get_cache_id(uri))

        if not self._coalesce:
            return await self._load(id, options, uri, cache_key)

        task = self._in_flight.get(cache_key)
        if task is None:
            task = asyncio.create_task(self._load(id, options, uri, cache_key))
            self._in_flight[cache_key] = task
            task.add_done_callback(functools.partial(self._release, cache_key))
        else:
            structlog.get_logger().debug(
                "document_request_coalesced", document=config.friendly_name, cache_key=cache_key
            )
        return await asyncio.shield(task)

    def _release(self, cache_key: str, task: asyncio.Task) -> None:
        self._in_flight.pop(cache_key, None)
        # Every waiter may have been cancelled; mark the failure as seen.
        if not task.cancelled():
            task.exception()

    async def _load(self, id: Any, options: Any, uri: str, cache_key: str) -> Any:
        config = self.config
        log = structlog.get_logger().bind(
            document=config.friendly_name, id=id, cache_key=cache_key
        )

        if await _is_fresh(config.transformed_cache, cache_key):
            log.debug("cache_hit", layer="transformed", uri=uri)
            return await config.transformed_cache.retrieve(cache_key)

        raw_cached = await _is_fresh(config.raw_cache, cache_key)
        log.debug("raw_retrieving", source="cache" if raw_cached else "retriever", uri=uri)

        if raw_cached:
            raw = await config.raw_cache.retrieve(cache_key)
        else:
            raw = await maybe_await(config.retriever(uri, options))
            await config.raw_cache.store(cache_key, raw)

        transformed = await maybe_await(config.transformer(raw))
        log.debug("transformation_applied")

        await config.transformed_cache.store(cache_key, transformed)
        return transformed


async def _is_fresh(cache: CacheProtocol, key: str) -> bool:
    return await cache.exists(key) and not await cache.is_outdated(key)


def _check_cache(cache: Any, name: str) -> None:
    missing = [m for m in PIPELINE_CACHE_METHODS if not callable(getattr(cache, m, None))]
    if missing:
        raise ConfigurationError(
            f"{name} must implement the cache protocol; missing: {', '.join(missing)}."
        )


def create_document(
    *,
    retriever: Retriever,
    get_uri: GetUri,
    transformer: Callable[[Any], Any] | Mapping[str, Any] = no_transform,
    raw_cache: CacheProtocol | None = None,
    transformed_cache: CacheProtocol | None = None,
    get_cache_id: GetCacheId = md5_cache_id,
    friendly_name: str = "Document",
    coalesce: bool = False,
) -> Document:
    """Define a document type.

    With ``coalesce=True``, concurrent calls resolving to the same cache key
    share one pipeline run (and so one retriever call) instead of each
    missing the cache and fetching on their own.
    """
    if not callable(retriever):
        raise ConfigurationError("A retriever function must be provided when defining a document.")
    if not callable(get_uri):
        raise ConfigurationError(
            "A get_uri function must be provided when defining a document "
            "(use uri_template() for '{id}' style templates)."
        )
    if not callable(get_cache_id):
        raise ConfigurationError("get_cache_id must be a function.")

    if isinstance(transformer, Mapping):
        transformer = create_transformer(transformer)
    elif not callable(transformer):
        raise ConfigurationError(
            "transformer must be a function or a transform spec mapping, "
            f"but found {type(transformer).__name__}."
        )

    raw_cache = raw_cache if raw_cache is not None else PseudoCache()
    transformed_cache = transformed_cache if transformed_cache is not None else PseudoCache()
    _check_cache(raw_cache, "raw_cache")
    _check_cache(transformed_cache, "transformed_cache")

    config = DocumentConfig(
        retriever=retriever,
        get_uri=get_uri,
        get_cache_id=get_cache_id,
        raw_cache=raw_cache,
        transformed_cache=transformed_cache,
        transformer=transformer,
        friendly_name=friendly_name,
    )
    return Document(config, coalesce=coalesce)
