"""Unit tests for docpipe.document."""

from __future__ import annotations

import asyncio
import gc
import hashlib

import pytest

from docpipe.cache import PseudoCache
from docpipe.document import DocumentConfig, create_document, md5_cache_id, uri_template
from docpipe.errors import ConfigurationError, ErrorCode, SpecError


def _identity_uri(id, options=None) -> str:
    return f"doc://{id}"


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestCreateDocument:
    @pytest.mark.parametrize("retriever", [None, False, {}, "foo", []])
    def test_requires_retriever_function(self, retriever: object) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_document(retriever=retriever, get_uri=_identity_uri)
        assert exc_info.value.code == ErrorCode.INVALID_CONFIG

    @pytest.mark.parametrize("get_uri", [None, "https://example.com/{id}", 3])
    def test_requires_get_uri_function(self, get_uri: object) -> None:
        with pytest.raises(ConfigurationError):
            create_document(retriever=lambda uri, opts: None, get_uri=get_uri)

    def test_rejects_invalid_transformer(self) -> None:
        with pytest.raises(ConfigurationError):
            create_document(retriever=lambda u, o: None, get_uri=_identity_uri, transformer=5)

    def test_rejects_invalid_transform_spec(self) -> None:
        with pytest.raises(SpecError):
            create_document(
                retriever=lambda u, o: None, get_uri=_identity_uri, transformer={"a": 42}
            )

    def test_rejects_incomplete_cache(self) -> None:
        class NotACache:
            async def exists(self, key: str) -> bool:
                return False

        with pytest.raises(ConfigurationError, match="is_outdated"):
            create_document(
                retriever=lambda u, o: None, get_uri=_identity_uri, raw_cache=NotACache()
            )

    def test_exposes_config(self) -> None:
        def retriever(uri, options):
            return None

        doc = create_document(retriever=retriever, get_uri=_identity_uri, friendly_name="Repo")

        assert isinstance(doc.config, DocumentConfig)
        assert doc.config.retriever is retriever
        assert doc.config.get_uri is _identity_uri
        assert doc.config.get_cache_id is md5_cache_id
        assert doc.config.friendly_name == "Repo"
        assert isinstance(doc.config.raw_cache, PseudoCache)
        assert isinstance(doc.config.transformed_cache, PseudoCache)


class TestHelpers:
    def test_md5_cache_id(self) -> None:
        uri = "https://example.com/repos/1"
        assert md5_cache_id(uri) == hashlib.md5(uri.encode()).hexdigest()
        assert len(md5_cache_id(uri)) == 32

    def test_md5_cache_id_is_stable(self) -> None:
        assert md5_cache_id("a") == md5_cache_id("a")
        assert md5_cache_id("a") != md5_cache_id("b")

    def test_uri_template(self) -> None:
        get_uri = uri_template("https://example.com/repos/{id}/issues")
        assert get_uri(42) == "https://example.com/repos/42/issues"

    def test_uri_template_case_insensitive_first_only(self) -> None:
        get_uri = uri_template("/{ID}/{id}")
        assert get_uri("x", None) == "/x/{id}"

    def test_uri_template_requires_string(self) -> None:
        with pytest.raises(ConfigurationError):
            uri_template(None)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Retrieval and transformation
# ---------------------------------------------------------------------------


class TestDocumentCall:
    async def test_retrieves_and_transforms(self) -> None:
        doc = create_document(
            retriever=lambda uri, options: f"id: {uri}",
            get_uri=uri_template("{id}"),
            transformer=lambda data: {"transformed": data},
        )
        assert await doc(1) == {"transformed": "id: 1"}

    async def test_async_hooks(self) -> None:
        async def retriever(uri, options):
            return {"uri": uri, "options": options}

        async def get_uri(id, options):
            return f"doc://{id}"

        async def get_cache_id(uri):
            return uri.replace("://", "_")

        doc = create_document(retriever=retriever, get_uri=get_uri, get_cache_id=get_cache_id)
        assert await doc(7, {"page": 2}) == {"uri": "doc://7", "options": {"page": 2}}

    async def test_spec_mapping_as_transformer(self) -> None:
        doc = create_document(
            retriever=lambda uri, options: {"name": "docs", "owner": {"login": "octo"}},
            get_uri=_identity_uri,
            transformer={"name": True, "login": "owner.login"},
        )
        assert await doc(1) == {"name": "docs", "login": "octo"}

    async def test_default_transformer_is_identity(self) -> None:
        doc = create_document(retriever=lambda uri, options: "fresh", get_uri=_identity_uri)
        assert await doc() == "fresh"

    async def test_retriever_error_propagates(self) -> None:
        class Boom(Exception):
            pass

        def retriever(uri, options):
            raise Boom("source down")

        doc = create_document(retriever=retriever, get_uri=_identity_uri)
        with pytest.raises(Boom, match="source down"):
            await doc(1)

    async def test_transform_error_propagates(self, make_cache) -> None:
        raw_cache = make_cache()
        transformed_cache = make_cache()

        def transformer(raw):
            raise ValueError("cannot transform")

        doc = create_document(
            retriever=lambda uri, options: "fresh",
            get_uri=_identity_uri,
            transformer=transformer,
            raw_cache=raw_cache,
            transformed_cache=transformed_cache,
        )
        with pytest.raises(ValueError, match="cannot transform"):
            await doc(1)
        # Raw data was stored before transforming; nothing was stored after
        assert len(raw_cache.stored) == 1
        assert transformed_cache.stored == []


# ---------------------------------------------------------------------------
# Cache behaviour
# ---------------------------------------------------------------------------


class TestDocumentCaching:
    async def test_fresh_transformed_entry_short_circuits(self, make_cache, counted) -> None:
        key = md5_cache_id("doc://1")
        transformed_cache = make_cache({key: "cached"})
        raw_cache = make_cache()
        retriever = counted(lambda uri, options: "fresh")
        transformer = counted(lambda raw: f"transformed {raw}")

        doc = create_document(
            retriever=retriever,
            get_uri=_identity_uri,
            transformer=transformer,
            raw_cache=raw_cache,
            transformed_cache=transformed_cache,
        )

        assert await doc(1) == "cached"
        assert retriever.count == 0
        assert transformer.count == 0
        assert raw_cache.stored == []
        assert transformed_cache.stored == []

    async def test_fresh_raw_entry_skips_retriever(self, make_cache, counted) -> None:
        key = md5_cache_id("doc://1")
        raw_cache = make_cache({key: "cached"})
        transformed_cache = make_cache()
        retriever = counted(lambda uri, options: "fresh")
        transformer = counted(lambda raw: f"transformed {raw}")

        doc = create_document(
            retriever=retriever,
            get_uri=_identity_uri,
            transformer=transformer,
            raw_cache=raw_cache,
            transformed_cache=transformed_cache,
        )

        assert await doc(1) == "transformed cached"
        assert retriever.count == 0
        assert transformer.count == 1
        assert raw_cache.stored == []
        assert transformed_cache.stored == [(key, "transformed cached")]

    async def test_cold_caches_fetch_once_and_store_both(self, make_cache, counted) -> None:
        raw_cache = make_cache()
        transformed_cache = make_cache()
        retriever = counted(lambda uri, options: "fresh")

        doc = create_document(
            retriever=retriever,
            get_uri=_identity_uri,
            transformer=lambda raw: f"transformed {raw}",
            raw_cache=raw_cache,
            transformed_cache=transformed_cache,
        )

        assert await doc(1) == "transformed fresh"
        key = md5_cache_id("doc://1")
        assert retriever.calls == [("doc://1", None)]
        assert raw_cache.stored == [(key, "fresh")]
        assert transformed_cache.stored == [(key, "transformed fresh")]

    async def test_outdated_entries_are_ignored(self, make_cache, counted) -> None:
        key = md5_cache_id("doc://1")
        raw_cache = make_cache({key: "old raw"}, fresh=False)
        transformed_cache = make_cache({key: "old transformed"}, fresh=False)
        retriever = counted(lambda uri, options: "fresh")

        doc = create_document(
            retriever=retriever,
            get_uri=_identity_uri,
            raw_cache=raw_cache,
            transformed_cache=transformed_cache,
        )

        assert await doc(1) == "fresh"
        assert retriever.count == 1
        assert raw_cache.retrieved == []
        assert transformed_cache.retrieved == []

    async def test_second_call_served_from_cache(self, make_cache, counted) -> None:
        retriever = counted(lambda uri, options: f"id: {uri}")
        doc = create_document(
            retriever=retriever,
            get_uri=uri_template("{id}"),
            transformer=lambda data: {"transformed": data},
            raw_cache=make_cache(),
            transformed_cache=make_cache(),
        )

        first = await doc(1)
        second = await doc(1)

        assert first == second == {"transformed": "id: 1"}
        assert retriever.count == 1

    async def test_custom_cache_id(self, make_cache) -> None:
        transformed_cache = make_cache()
        doc = create_document(
            retriever=lambda uri, options: "fresh",
            get_uri=_identity_uri,
            get_cache_id=lambda uri: uri.rsplit("/", 1)[-1],
            transformed_cache=transformed_cache,
        )
        await doc("abc")
        assert transformed_cache.stored == [("abc", "fresh")]

    async def test_cache_errors_propagate(self, make_cache) -> None:
        class BrokenCache(make_cache):
            async def store(self, key, value):
                raise OSError("disk full")

        doc = create_document(
            retriever=lambda uri, options: "fresh",
            get_uri=_identity_uri,
            raw_cache=BrokenCache(),
        )
        with pytest.raises(OSError, match="disk full"):
            await doc(1)


# ---------------------------------------------------------------------------
# In-flight coalescing
# ---------------------------------------------------------------------------


class TestCoalescing:
    @staticmethod
    def _slow_retriever(calls: list[str]):
        async def retriever(uri, options):
            calls.append(uri)
            await asyncio.sleep(0.02)
            return f"raw {uri}"

        return retriever

    async def test_concurrent_calls_share_one_fetch(self) -> None:
        calls: list[str] = []
        doc = create_document(
            retriever=self._slow_retriever(calls), get_uri=_identity_uri, coalesce=True
        )

        results = await asyncio.gather(doc(1), doc(1), doc(1))

        assert results == ["raw doc://1"] * 3
        assert calls == ["doc://1"]

    async def test_different_keys_are_not_shared(self) -> None:
        calls: list[str] = []
        doc = create_document(
            retriever=self._slow_retriever(calls), get_uri=_identity_uri, coalesce=True
        )

        await asyncio.gather(doc(1), doc(2))

        assert sorted(calls) == ["doc://1", "doc://2"]

    async def test_without_coalescing_each_call_fetches(self) -> None:
        calls: list[str] = []
        doc = create_document(retriever=self._slow_retriever(calls), get_uri=_identity_uri)

        await asyncio.gather(doc(1), doc(1))

        assert calls == ["doc://1", "doc://1"]

    async def test_registry_cleared_after_completion(self) -> None:
        calls: list[str] = []
        doc = create_document(
            retriever=self._slow_retriever(calls), get_uri=_identity_uri, coalesce=True
        )

        await doc(1)
        await doc(1)

        assert calls == ["doc://1", "doc://1"]
        assert doc._in_flight == {}

    async def test_errors_reach_every_waiter(self) -> None:
        async def retriever(uri, options):
            await asyncio.sleep(0.01)
            raise RuntimeError("source down")

        doc = create_document(retriever=retriever, get_uri=_identity_uri, coalesce=True)

        results = await asyncio.gather(doc(1), doc(1), return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert doc._in_flight == {}

    async def test_failure_after_all_waiters_cancelled_is_retrieved(self) -> None:
        reported: list[dict] = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        started = asyncio.Event()

        async def retriever(uri, options):
            started.set()
            await asyncio.sleep(0.01)
            raise RuntimeError("source down")

        doc = create_document(retriever=retriever, get_uri=_identity_uri, coalesce=True)
        try:
            waiter = asyncio.create_task(doc(1))
            await started.wait()
            shared = doc._in_flight[md5_cache_id("doc://1")]
            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            await asyncio.wait([shared])
            await asyncio.sleep(0)
            del shared, waiter
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert doc._in_flight == {}
        assert reported == []
