"""Tests for spellbook.core.metadata_index — category/topic aggregates."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from spellbook.core.metadata_index import MetadataIndex, category_key, topic_key
from spellbook.core.types import ChunkMetadata


def _meta(topic_id="t1", category="project", **kwargs):
    return ChunkMetadata(topic_id=topic_id, category=category, **kwargs)


@pytest.fixture
def index(vector_store):
    index = MetadataIndex(vector_store, "chunks_metadata")
    asyncio.run(index.initialize())
    return index


class TestOnChunkCreated:
    def test_distinct_topics_counted(self, index):
        async def scenario():
            for i in range(4):
                await index.on_chunk_created(_meta(topic_id=f"t{i}"))
            return await index.get_index()

        meta = asyncio.run(scenario())
        assert len(meta.categories) == 1
        category = meta.categories[0]
        assert category.name == "project"
        assert category.chunk_count == 4
        assert category.topic_count == 4
        assert meta.total_chunks == 4
        assert meta.total_topics == 4

    def test_same_topic_counts_one_topic(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(keywords=["docker"]))
            await index.on_chunk_created(_meta(keywords=["mcp", "docker"]))
            return await index.get_topics(), await index.get_index()

        topics, meta = asyncio.run(scenario())
        assert len(topics) == 1
        assert topics[0].chunk_count == 2
        assert topics[0].keywords == ["docker", "mcp"]
        assert meta.categories[0].topic_count == 1
        assert meta.categories[0].chunk_count == 2

    def test_topic_name_defaults_to_topic_id(self, index):
        async def scenario():
            await index.on_chunk_created(_meta())
            await index.on_chunk_created(_meta(topic_name="Topic One"))
            return await index.get_topics()

        topics = asyncio.run(scenario())
        assert topics[0].topic_name == "Topic One"

    def test_sub_categories_are_unioned(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="a", sub_category="infra"))
            await index.on_chunk_created(_meta(topic_id="b", sub_category="infra"))
            await index.on_chunk_created(_meta(topic_id="c", sub_category="ops"))
            return await index.get_index()

        meta = asyncio.run(scenario())
        assert meta.categories[0].sub_categories == ["infra", "ops"]

    def test_reused_topic_id_moves_topic_to_new_category(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="shared", category="a"))
            await index.on_chunk_created(_meta(topic_id="shared", category="b"))
            return await index.get_topics(), await index.get_category_stats(), await index.get_index()

        topics, stats, meta = asyncio.run(scenario())
        assert topics[0].category == "b"
        assert topics[0].chunk_count == 2
        # The old category keeps its chunk count until its chunks are erased
        assert stats == {"a": 1, "b": 1}
        by_name = {c.name: c for c in meta.categories}
        assert by_name["b"].topic_count == 1


class TestOnChunkDeleted:
    def test_fully_erased_topic_and_category_disappear(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="t1"))
            await index.on_chunk_created(_meta(topic_id="t1"))
            await index.on_chunk_deleted(_meta(topic_id="t1"))
            mid = await index.get_index()
            await index.on_chunk_deleted(_meta(topic_id="t1"))
            return mid, await index.get_index(), await index.get_topics()

        mid, after, topics = asyncio.run(scenario())
        assert mid.categories[0].chunk_count == 1
        assert after.categories == []
        assert after.total_chunks == 0
        assert topics == []

    def test_topic_count_recomputed_on_delete(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="t1"))
            await index.on_chunk_created(_meta(topic_id="t2"))
            await index.on_chunk_deleted(_meta(topic_id="t1"))
            return await index.get_index()

        meta = asyncio.run(scenario())
        assert meta.categories[0].chunk_count == 1
        assert meta.categories[0].topic_count == 1

    def test_delete_without_aggregates_is_noop(self, index):
        async def scenario():
            await index.on_chunk_deleted(_meta(topic_id="ghost", category="nowhere"))
            return await index.get_index()

        assert asyncio.run(scenario()).categories == []


class TestQueries:
    def test_get_index_scope(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="a", category="x"))
            await index.on_chunk_created(_meta(topic_id="b", category="y"))
            await index.on_chunk_created(_meta(topic_id="c", category="y"))
            return await index.get_index("y")

        meta = asyncio.run(scenario())
        assert [c.name for c in meta.categories] == ["y"]
        assert meta.total_chunks == 2
        assert meta.categories[0].description == "2 chunks, 2 topics"

    def test_get_category_stats(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="a", category="x"))
            await index.on_chunk_created(_meta(topic_id="b", category="x"))
            await index.on_chunk_created(_meta(topic_id="c", category="y"))
            return await index.get_category_stats()

        assert asyncio.run(scenario()) == {"x": 2, "y": 1}

    def test_get_topics_by_category(self, index):
        async def scenario():
            await index.on_chunk_created(_meta(topic_id="a", category="x"))
            await index.on_chunk_created(_meta(topic_id="b", category="y"))
            return await index.get_topics("x")

        assert [t.topic_id for t in asyncio.run(scenario())] == ["a"]


class TestFailureSemantics:
    def test_category_failure_propagates_after_topic_write(self):
        store = MagicMock()
        store.get = AsyncMock(return_value=None)
        store.scroll = AsyncMock(return_value=[])
        store.upsert_payload = AsyncMock(side_effect=[None, RuntimeError("qdrant down")])
        index = MetadataIndex(store, "m")

        with pytest.raises(RuntimeError, match="qdrant down"):
            asyncio.run(index.on_chunk_created(_meta()))

        # topic document was written before the failure and is not rolled back
        first_key = store.upsert_payload.call_args_list[0].args[1]
        assert first_key == topic_key("t1")
        assert store.upsert_payload.call_args_list[1].args[1] == category_key("project")
        store.delete.assert_not_called()


class TestConcurrency:
    def test_concurrent_creates_do_not_lose_increments(self, index):
        async def scenario():
            await asyncio.gather(*(index.on_chunk_created(_meta(topic_id="hot")) for _ in range(10)))
            return await index.get_topics(), await index.get_category_stats()

        topics, stats = asyncio.run(scenario())
        assert topics[0].chunk_count == 10
        assert stats == {"project": 10}
