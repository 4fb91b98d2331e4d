"""
Spellbook Metadata Index
------------------------
Category/topic aggregates for one namespace, kept in a payload-only Qdrant
collection and updated on every chunk create/delete.

Documents:
  - ``topic:<topic_id>``  -> TopicAggregate
  - ``cat:<category>``    -> CategoryAggregate

Topic is always updated before category because the category's
``topic_count`` is recomputed from the topic documents. An aggregate whose
``chunk_count`` reaches zero is deleted, never kept at zero.

Each update is a sequence of independent store calls with no rollback: if a
later step fails, earlier ones stay applied and the error propagates.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from spellbook.core.types import (
    CategoryAggregate,
    CategoryInfo,
    ChunkMetadata,
    MetaIndex,
    TopicAggregate,
    now_iso,
)

logger = logging.getLogger("Spellbook.MetadataIndex")

DEFAULT_SCAN_LIMIT = 1000


def topic_key(topic_id: str) -> str:
    return f"topic:{topic_id}"


def category_key(category: str) -> str:
    return f"cat:{category}"


class MetadataIndex:
    def __init__(self, vector_store, collection_name: str, scan_limit: int = DEFAULT_SCAN_LIMIT):
        self.vectors = vector_store
        self.collection_name = collection_name
        self.scan_limit = scan_limit
        # Serialises read-modify-write of aggregates within this process
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        await self.vectors.create_payload_collection(self.collection_name)

    async def on_chunk_created(self, metadata: ChunkMetadata) -> None:
        async with self._lock:
            await self._upsert_topic(metadata)
            await self._upsert_category(metadata)
        logger.debug("Indexed chunk topic=%s category=%s in %s", metadata.topic_id, metadata.category, self.collection_name)

    async def on_chunk_deleted(self, metadata: ChunkMetadata) -> None:
        async with self._lock:
            await self._decrement_topic(metadata)
            await self._decrement_category(metadata)
        logger.debug("Unindexed chunk topic=%s category=%s in %s", metadata.topic_id, metadata.category, self.collection_name)

    async def _upsert_topic(self, metadata: ChunkMetadata) -> None:
        key = topic_key(metadata.topic_id)
        existing = await self.vectors.get(self.collection_name, key)

        if existing:
            topic = TopicAggregate(**existing)
            merged = list(topic.keywords)
            merged.extend(k for k in metadata.keywords if k not in merged)
            topic = TopicAggregate(
                topic_id=metadata.topic_id,
                topic_name=metadata.topic_name or topic.topic_name,
                # Reusing a topic id under another category moves the topic
                category=metadata.category,
                sub_category=metadata.sub_category or topic.sub_category,
                chunk_count=topic.chunk_count + 1,
                keywords=merged,
            )
        else:
            topic = TopicAggregate(
                topic_id=metadata.topic_id,
                topic_name=metadata.topic_name or metadata.topic_id,
                category=metadata.category,
                sub_category=metadata.sub_category,
                chunk_count=1,
                keywords=list(metadata.keywords),
            )

        await self.vectors.upsert_payload(self.collection_name, key, topic.model_dump())

    async def _upsert_category(self, metadata: ChunkMetadata) -> None:
        key = category_key(metadata.category)
        existing = await self.vectors.get(self.collection_name, key)

        if existing:
            category = CategoryAggregate(**existing)
            sub_categories = list(category.sub_categories)
            chunk_count = category.chunk_count + 1
        else:
            sub_categories = []
            chunk_count = 1
        if metadata.sub_category and metadata.sub_category not in sub_categories:
            sub_categories.append(metadata.sub_category)

        category = CategoryAggregate(
            name=metadata.category,
            sub_categories=sub_categories,
            topic_count=await self._count_topics(metadata.category),
            chunk_count=chunk_count,
        )
        await self.vectors.upsert_payload(self.collection_name, key, category.model_dump())

    async def _decrement_topic(self, metadata: ChunkMetadata) -> None:
        key = topic_key(metadata.topic_id)
        existing = await self.vectors.get(self.collection_name, key)
        if not existing:
            return

        topic = TopicAggregate(**existing)
        remaining = topic.chunk_count - 1
        if remaining <= 0:
            await self.vectors.delete(self.collection_name, key)
            return

        topic.chunk_count = remaining
        topic.last_updated = now_iso()
        await self.vectors.upsert_payload(self.collection_name, key, topic.model_dump())

    async def _decrement_category(self, metadata: ChunkMetadata) -> None:
        key = category_key(metadata.category)
        existing = await self.vectors.get(self.collection_name, key)
        if not existing:
            return

        category = CategoryAggregate(**existing)
        remaining = category.chunk_count - 1
        if remaining <= 0:
            await self.vectors.delete(self.collection_name, key)
            return

        category.chunk_count = remaining
        category.topic_count = await self._count_topics(metadata.category)
        category.last_updated = now_iso()
        await self.vectors.upsert_payload(self.collection_name, key, category.model_dump())

    async def _count_topics(self, category: str) -> int:
        """Full re-scan of topic documents belonging to ``category``."""
        points = await self.vectors.scroll(
            self.collection_name,
            limit=self.scan_limit,
            query_filter={
                "must": [
                    {"key": "type", "match": {"value": "topic"}},
                    {"key": "category", "match": {"value": category}},
                ]
            },
        )
        return len(points)

    async def _categories(self) -> List[CategoryAggregate]:
        points = await self.vectors.scroll(
            self.collection_name,
            limit=self.scan_limit,
            query_filter={"must": [{"key": "type", "match": {"value": "category"}}]},
        )
        return [CategoryAggregate(**p["payload"]) for p in points]

    async def get_index(self, scope: Optional[str] = None) -> MetaIndex:
        """Flat listing of categories, optionally restricted to one category name."""
        categories = []
        for cat in await self._categories():
            if scope and cat.name != scope:
                continue
            categories.append(
                CategoryInfo(
                    id=cat.name,
                    name=cat.name,
                    sub_categories=cat.sub_categories,
                    topic_count=cat.topic_count,
                    chunk_count=cat.chunk_count,
                    description=f"{cat.chunk_count} chunks, {cat.topic_count} topics",
                    last_updated=cat.last_updated,
                )
            )
        return MetaIndex(
            categories=categories,
            total_topics=sum(c.topic_count for c in categories),
            total_chunks=sum(c.chunk_count for c in categories),
        )

    async def get_category_stats(self) -> Dict[str, int]:
        return {cat.name: cat.chunk_count for cat in await self._categories()}

    async def get_topics(self, category: Optional[str] = None) -> List[TopicAggregate]:
        must = [{"key": "type", "match": {"value": "topic"}}]
        if category:
            must.append({"key": "category", "match": {"value": category}})
        points = await self.vectors.scroll(
            self.collection_name, limit=self.scan_limit, query_filter={"must": must}
        )
        return [TopicAggregate(**p["payload"]) for p in points]
