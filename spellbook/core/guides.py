"""
Spellbook System Guides
-----------------------
Built-in guide chunks stored in Canon under category ``system``. REST
sessions snapshot ``chunking_principles`` and ``metadata_rules`` when they
start; ``filter_usage`` is there for semantic lookup of filter syntax.

Guides carry stable ids, so seeding again replaces them in place.
"""

import logging
from typing import List

from spellbook.core.filters import FILTER_GUIDE
from spellbook.core.types import Chunk, ChunkMetadata, Entity, EntityType, Importance, now_iso

logger = logging.getLogger("Spellbook.Guides")

SYSTEM_CATEGORY = "system"

CHUNKING_PRINCIPLES_TEXT = """
Chunking principles for Spellbook:
- Split knowledge into semantically independent units; one idea per chunk.
- Keep each chunk understandable without its neighbours (resolve pronouns, name the project).
- A chunk must fully answer the questions listed in its metadata.
- Aim for 100-512 tokens. Split longer material by sub-topic, merge fragments that cannot stand alone.
- Prefer facts, decisions and procedures over conversation transcripts.
""".strip()

METADATA_RULES_TEXT = """
Metadata rules for Spellbook:
- topic_id: short stable slug shared by every chunk about the same topic (e.g. "docker-setup").
- category: broad area such as project, preference, system or reference.
- keywords: 3-10 lower-case search terms; include synonyms a reader would type.
- questions: concrete, searchable questions this chunk answers.
- entities: named people, projects, technologies, organizations and concepts, each with its type.
- importance: high for decisions and constraints, medium by default, low for background.
""".strip()


def _guide(chunk_id: str, topic_id: str, topic_name: str, text: str, keywords, questions, entities) -> Chunk:
    return Chunk(
        id=chunk_id,
        text=text,
        metadata=ChunkMetadata(
            topic_id=topic_id,
            topic_name=topic_name,
            category=SYSTEM_CATEGORY,
            keywords=keywords,
            questions=questions,
            entities=entities,
            importance=Importance.HIGH,
            source="system",
        ),
    )


SYSTEM_GUIDES: List[Chunk] = [
    _guide(
        "system-guide-chunking-principles",
        "chunking_principles",
        "Chunking principles",
        CHUNKING_PRINCIPLES_TEXT,
        ["chunking", "chunk size", "guide", "rest"],
        ["How should knowledge be split into chunks?", "How large should a chunk be?"],
        [Entity(name="Spellbook", type=EntityType.PROJECT)],
    ),
    _guide(
        "system-guide-metadata-rules",
        "metadata_rules",
        "Metadata rules",
        METADATA_RULES_TEXT,
        ["metadata", "keywords", "questions", "entities", "guide"],
        ["Which metadata fields does a chunk need?", "How many keywords should a chunk have?"],
        [Entity(name="Spellbook", type=EntityType.PROJECT)],
    ),
    _guide(
        "system-guide-filter-usage",
        "filter_usage",
        "Filter usage",
        FILTER_GUIDE,
        ["filter", "qdrant", "search", "guide"],
        ["How do I filter search results?", "How do I search only one category?"],
        [Entity(name="Qdrant", type=EntityType.TECHNOLOGY)],
    ),
]


async def seed_system_guides(vector_store, embedder, canon_collection: str, canon_index) -> int:
    """
    Write the built-in guides into Canon and index them.

    A guide that is already stored is replaced and its old metadata is
    removed from the index first, so counts stay exact across re-seeding.
    """
    for guide in SYSTEM_GUIDES:
        chunk = guide.model_copy(deep=True)
        now = now_iso()
        chunk.metadata.created_at = now
        chunk.metadata.updated_at = now

        existing = await vector_store.get(canon_collection, chunk.id)
        if existing:
            await canon_index.on_chunk_deleted(ChunkMetadata(**existing))

        embedding = await embedder.embed(chunk.text)
        await vector_store.upsert(canon_collection, chunk.id, embedding, chunk.to_payload())
        await canon_index.on_chunk_created(chunk.metadata)
        logger.info("Seeded system guide '%s'", chunk.metadata.topic_id)

    return len(SYSTEM_GUIDES)
