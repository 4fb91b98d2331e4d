"""Tests for spellbook.core.lore — Lore catalog and lifecycle."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from spellbook.core.errors import NotFoundError, ValidationError
from spellbook.core.lore import LoreManager, catalog_key
from spellbook.core.types import ChunkMetadata

DIM = 8


@pytest.fixture
def lores(vector_store):
    manager = LoreManager(vector_store, DIM, "chunks", "chunks_metadata")
    asyncio.run(manager.initialize())
    return manager


async def _catalog_entries(store, name=None):
    points = await store.scroll(
        "chunks_metadata", query_filter={"must": [{"key": "type", "match": {"value": "lore"}}]}
    )
    return [p for p in points if name is None or p["payload"]["name"] == name]


class TestValidateName:
    @pytest.mark.parametrize("name", ["my-proj_1", "a", "A9", "x" * 64])
    def test_valid(self, name):
        LoreManager.validate_name(name)

    @pytest.mark.parametrize("name", ["-bad", "_bad", "a b", "", "x" * 65, "a.b", "proj\n", None])
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            LoreManager.validate_name(name)

    def test_collection_names(self):
        assert LoreManager.collection_name("proj") == "lore_proj"
        assert LoreManager.metadata_collection_name("proj") == "lore_proj_metadata"


class TestEnsureExists:
    def test_creates_collections_then_catalog_entry(self, lores, vector_store):
        async def scenario():
            record = await lores.ensure_exists("proj", "Project notes")
            return (
                record,
                await vector_store.collection_exists("lore_proj"),
                await vector_store.collection_exists("lore_proj_metadata"),
                await lores.exists("proj"),
            )

        record, content, metadata, exists = asyncio.run(scenario())
        assert record.description == "Project notes"
        assert record.collection_name == "lore_proj"
        assert content and metadata and exists

    def test_idempotent_and_description_update(self, lores, vector_store):
        async def scenario():
            first = await lores.ensure_exists("x")
            await lores.ensure_exists("x")
            after_two = await _catalog_entries(vector_store, "x")
            third = await lores.ensure_exists("x", "described")
            return first, after_two, third, await _catalog_entries(vector_store, "x")

        first, after_two, third, after_three = asyncio.run(scenario())
        assert len(after_two) == 1
        assert len(after_three) == 1
        assert third.description == "described"
        assert third.created_at == first.created_at
        assert third.collection_name == first.collection_name

    def test_invalid_name_rejected_before_any_store_call(self):
        store = AsyncMock()
        manager = LoreManager(store, DIM, "chunks", "chunks_metadata")
        with pytest.raises(ValidationError):
            asyncio.run(manager.ensure_exists("bad name"))
        assert store.method_calls == []

    def test_concurrent_ensure_exists_registers_once(self, lores, vector_store):
        async def scenario():
            await asyncio.gather(*(lores.ensure_exists("race") for _ in range(5)))
            return await _catalog_entries(vector_store, "race")

        assert len(asyncio.run(scenario())) == 1

    def test_catalog_entry_shares_canon_metadata_without_polluting_index(self, lores):
        async def scenario():
            await lores.ensure_exists("proj")
            return await lores.canon_index.get_index()

        assert asyncio.run(scenario()).categories == []


class TestUpdateAndDelete:
    def test_update_description_missing_lore(self, lores):
        with pytest.raises(NotFoundError):
            asyncio.run(lores.update_description("nope", "text"))

    def test_update_description(self, lores):
        async def scenario():
            await lores.ensure_exists("proj", "old")
            await lores.update_description("proj", "new")
            return (await lores.list())[0]

        assert asyncio.run(scenario()).description == "new"

    def test_delete_removes_everything_and_evicts_index(self, lores, vector_store):
        async def scenario():
            await lores.ensure_exists("proj")
            cached = lores.get_metadata_index("proj")
            await lores.delete("proj")
            return (
                cached,
                lores.get_metadata_index("proj"),
                await lores.exists("proj"),
                await vector_store.collection_exists("lore_proj"),
                await vector_store.collection_exists("lore_proj_metadata"),
                await vector_store.get("chunks_metadata", catalog_key("proj")),
            )

        cached, fresh, exists, content, metadata, entry = asyncio.run(scenario())
        assert fresh is not cached
        assert not exists and not content and not metadata
        assert entry is None

    def test_delete_missing_lore(self, lores):
        with pytest.raises(NotFoundError):
            asyncio.run(lores.delete("nope"))

    def test_delete_tolerates_missing_collections(self, lores, vector_store):
        async def scenario():
            await lores.ensure_exists("proj")
            await vector_store.delete_collection("lore_proj")
            await lores.delete("proj")
            return await lores.exists("proj")

        assert asyncio.run(scenario()) is False


class TestListAndStats:
    def test_list_reports_chunk_counts(self, lores, vector_store):
        async def scenario():
            await lores.ensure_exists("a", "first")
            await lores.ensure_exists("b")
            await vector_store.upsert("lore_a", "c1", [1.0] + [0.0] * (DIM - 1), {"text": "x"})
            return {l.name: l for l in await lores.list()}

        listed = asyncio.run(scenario())
        assert listed["a"].total_chunks == 1
        assert listed["a"].description == "first"
        assert listed["b"].total_chunks == 0

    def test_list_degrades_failed_stats_to_zero(self, lores, vector_store):
        async def scenario():
            await lores.ensure_exists("ok")
            await lores.ensure_exists("broken")
            await vector_store.upsert("lore_ok", "c1", [1.0] + [0.0] * (DIM - 1), {"text": "x"})

            real_stats = vector_store.stats

            async def flaky_stats(name):
                if name == "lore_broken":
                    raise RuntimeError("stats unavailable")
                return await real_stats(name)

            vector_store.stats = flaky_stats
            return {l.name: l.total_chunks for l in await lores.list()}

        assert asyncio.run(scenario()) == {"ok": 1, "broken": 0}

    def test_get_stats_merges_category_counts(self, lores, vector_store):
        async def scenario():
            await lores.ensure_exists("proj")
            await vector_store.upsert("lore_proj", "c1", [1.0] + [0.0] * (DIM - 1), {"text": "x"})
            await lores.get_metadata_index("proj").on_chunk_created(
                ChunkMetadata(topic_id="t", category="notes")
            )
            return await lores.get_stats("proj")

        stats = asyncio.run(scenario())
        assert stats["total_count"] == 1
        assert stats["categories"] == {"notes": 1}

    def test_get_stats_missing_lore(self, lores):
        with pytest.raises(NotFoundError):
            asyncio.run(lores.get_stats("nope"))


class TestResolve:
    def test_canon_resolution(self, lores):
        collection, index = lores.resolve(None)
        assert collection == "chunks"
        assert index is lores.canon_index

    def test_lore_resolution_caches_index(self, lores):
        collection, index = lores.resolve("proj")
        assert collection == "lore_proj"
        assert lores.resolve("proj")[1] is index
        assert index.collection_name == "lore_proj_metadata"

    def test_resolve_existing_requires_catalog_entry(self, lores):
        with pytest.raises(NotFoundError):
            asyncio.run(lores.resolve_existing("nope"))

    def test_get_metadata_index_does_not_check_existence(self):
        store = AsyncMock()
        manager = LoreManager(store, DIM, "chunks", "chunks_metadata")
        manager.get_metadata_index("anything")
        assert store.method_calls == []
