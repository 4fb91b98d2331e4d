"""
Spellbook Search Service
------------------------
Semantic search, hybrid keyword search and near-duplicate detection over a
named content collection (Canon or a Lore).

Similarity floors:
  - 0.95 : near-duplicate (write-time soft block)
  - 0.70 : semantic search
  - 0.60 : keyword search; the keyword filter already narrows candidates,
           so weaker semantic matches are admitted
"""

import logging
from typing import Any, Dict, List, Optional

from spellbook.core.config import RetrievalConfig
from spellbook.core.filters import combine_with_keywords, convert_filter
from spellbook.core.types import SearchResult

logger = logging.getLogger("Spellbook.Search")

# Filter scans compute no similarity; this constant is not a ranking signal
UNSCORED = 1.0


def _to_result(hit: Dict[str, Any], score: float) -> SearchResult:
    payload = hit.get("payload") or {}
    return SearchResult(id=str(payload.get("chunk_id") or hit["id"]), score=score, chunk=payload)


class SearchService:
    def __init__(self, vector_store, embedder, config: Optional[RetrievalConfig] = None):
        self.vectors = vector_store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    async def semantic_search(
        self,
        collection: str,
        query: str,
        limit: Optional[int] = None,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        """Rank chunks by similarity to ``query``; nothing below the semantic floor is returned."""
        embedding = await self.embedder.embed(query)
        hits = await self.vectors.search(
            collection,
            embedding,
            limit=limit or self.config.default_limit,
            query_filter=convert_filter(filter),
            score_threshold=self.config.semantic_threshold,
        )
        return [_to_result(h, h["score"]) for h in hits if h["score"] >= self.config.semantic_threshold]

    async def keyword_search(
        self,
        collection: str,
        keywords: List[str],
        limit: Optional[int] = None,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[SearchResult]:
        """
        Hybrid keyword search.

        Candidates must carry at least one of the (lower-cased) keywords and
        satisfy the user filter; the space-joined keywords are embedded as a
        semantic proxy query to rank them.
        """
        combined = combine_with_keywords(convert_filter(filter), keywords)
        embedding = await self.embedder.embed(" ".join(keywords))
        hits = await self.vectors.search(
            collection,
            embedding,
            limit=limit or self.config.default_limit,
            query_filter=combined,
            score_threshold=self.config.keyword_threshold,
        )
        return [_to_result(h, h["score"]) for h in hits if h["score"] >= self.config.keyword_threshold]

    async def detect_duplicates(
        self,
        collection: str,
        text: str,
        threshold: Optional[float] = None,
    ) -> Optional[List[SearchResult]]:
        """Return chunks at or above ``threshold`` similarity to ``text``, or None."""
        embedding = await self.embedder.embed(text)
        hits = await self.vectors.search(
            collection,
            embedding,
            limit=self.config.duplicate_limit,
            score_threshold=threshold if threshold is not None else self.config.duplicate_threshold,
        )
        if not hits:
            return None
        return [_to_result(h, h["score"]) for h in hits]

    async def get_by_topic(self, collection: str, topic_id: str) -> List[SearchResult]:
        hits = await self.vectors.scroll(
            collection,
            limit=self.config.topic_scan_limit,
            query_filter={"must": [{"key": "topic_id", "match": {"value": topic_id}}]},
        )
        return [_to_result(h, UNSCORED) for h in hits]

    async def get_by_category(
        self, collection: str, category: str, limit: Optional[int] = None
    ) -> List[SearchResult]:
        hits = await self.vectors.scroll(
            collection,
            limit=limit or self.config.guide_scan_limit,
            query_filter={"must": [{"key": "category", "match": {"value": category}}]},
        )
        return [_to_result(h, UNSCORED) for h in hits]
