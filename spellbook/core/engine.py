"""
Spellbook Engine
----------------
Composition root and tool layer.

Constructs every component once (vector store, embedder, search, sessions,
Lore manager, chunk store) and exposes tool-level operations. Each tool
returns a ``{"status": ..., ...}`` dict and never raises; failures become
``{"status": "error", "message": ...}``.

Usage:
    config = SpellbookConfig.from_env()
    book = Spellbook(config)
    await book.initialize()

    session = await book.start_rest()
    await book.scribe(chunk, session["session_id"])
    results = await book.memorize("How is Docker configured?")

    await book.shutdown()
"""

import functools
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from spellbook.core.chunk_store import ChunkStore
from spellbook.core.config import SpellbookConfig
from spellbook.core.embedder import OllamaEmbedder
from spellbook.core.errors import NotFoundError, SpellbookError, ValidationError
from spellbook.core.filters import FILTER_GUIDE, filter_error_message
from spellbook.core.guides import seed_system_guides
from spellbook.core.lore import LoreManager
from spellbook.core.sessions import RestSessionManager
from spellbook.core.types import Chunk, utc_now
from spellbook.retrieval.searcher import SearchService
from spellbook.store.vector_store import VectorStore

logger = logging.getLogger("Spellbook")


def _error(message: str) -> Dict[str, Any]:
    return {"status": "error", "message": message}


def tool(filter_hint: bool = False):
    """
    Turn a tool coroutine's exceptions into an error outcome.

    With ``filter_hint``, failures of a call that passed a ``filter`` get the
    filter-guide pointer appended.
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except (ValidationError, NotFoundError) as e:
                return _error(str(e))
            except PydanticValidationError as e:
                return _error(f"Invalid input: {e}")
            except SpellbookError as e:
                message = str(e)
            except Exception as e:
                logger.error("%s failed: %s", func.__name__, e, exc_info=True)
                message = str(e) or f"{func.__name__} failed"
            if filter_hint and signature.bind(self, *args, **kwargs).arguments.get("filter"):
                message = filter_error_message(message)
            return _error(message)
        return wrapper
    return decorator


class Spellbook:
    """Semantic chunk memory over Canon and any number of Lores."""

    def __init__(
        self,
        config: Optional[SpellbookConfig] = None,
        vector_store: Optional[VectorStore] = None,
        embedder=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or SpellbookConfig()
        vector = self.config.vector
        retrieval = self.config.retrieval

        self.vectors = vector_store or VectorStore(
            url=vector.url, path=vector.path, api_key=vector.api_key
        )
        self.embedder = embedder or OllamaEmbedder(self.config.embedding)
        self.searcher = SearchService(self.vectors, self.embedder, retrieval)
        self.lores = LoreManager(
            self.vectors,
            vector_size=self.config.embedding.dimensions,
            canon_collection=vector.collection,
            canon_metadata_collection=vector.metadata_collection,
            scan_limit=retrieval.aggregate_scan_limit,
        )
        self.sessions = RestSessionManager(
            self.searcher,
            canon_collection=vector.collection,
            timeout_seconds=self.config.session.timeout_seconds,
            clock=clock,
            guide_scan_limit=retrieval.guide_scan_limit,
        )
        self.chunks = ChunkStore(
            self.sessions, self.lores, self.searcher, self.embedder, self.vectors, retrieval
        )
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.lores.initialize()
        self._initialized = True
        logger.info("Spellbook initialized (canon collection '%s')", self.config.vector.collection)

    async def shutdown(self) -> None:
        await self.embedder.close()
        await self.vectors.close()
        self._initialized = False
        logger.info("Spellbook shut down")

    async def health(self) -> Dict[str, Any]:
        try:
            qdrant_ok = await self.vectors.collection_exists(self.config.vector.collection)
        except Exception as e:
            logger.warning("Qdrant health check failed: %s", e)
            qdrant_ok = False
        return {
            "status": "ok" if qdrant_ok else "degraded",
            "qdrant": qdrant_ok,
            "collection": self.config.vector.collection,
            "embedding_model": self.config.embedding.model,
            "active_sessions": self.sessions.active_session_count(),
            "embedding_cache": self.embedder.cache_stats(),
        }

    async def seed_guides(self) -> int:
        return await seed_system_guides(
            self.vectors, self.embedder, self.config.vector.collection, self.lores.canon_index
        )

    # --- REST sessions ---

    @tool()
    async def start_rest(self) -> Dict[str, Any]:
        self.sessions.sweep_expired()
        return {**await self.sessions.start(), "status": "success"}

    @tool()
    async def end_rest(self, session_id: str) -> Dict[str, Any]:
        count = self.sessions.end(session_id)
        return {
            "status": "success",
            "message": "REST mode ended.",
            "scribed_count": count,
        }

    # --- Writes ---

    async def scribe(
        self,
        chunk: Any,
        session_id: str,
        category: Optional[str] = None,
        source: Optional[str] = None,
        lore: Optional[str] = None,
        lore_description: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            chunk = Chunk.model_validate(chunk) if not isinstance(chunk, Chunk) else chunk
        except PydanticValidationError as e:
            return _error(f"Invalid chunk: {e}")
        result = await self.chunks.write(session_id, lore, chunk, category, source, lore_description)
        return result.to_dict()

    @tool()
    async def erase(self, chunk_id: str, lore: Optional[str] = None) -> Dict[str, Any]:
        await self.chunks.erase(lore, chunk_id)
        return {"status": "success", "message": f"Chunk erased: {chunk_id}"}

    @tool()
    async def revise(self, chunk_id: str, new_text: str, lore: Optional[str] = None) -> Dict[str, Any]:
        await self.chunks.revise(lore, chunk_id, new_text)
        return {"status": "success", "message": f"Chunk revised: {chunk_id}"}

    # --- Reads ---

    @tool(filter_hint=True)
    async def memorize(
        self,
        query: str,
        limit: Optional[int] = None,
        filter: Optional[Dict[str, Any]] = None,
        lore: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not query or not query.strip():
            raise ValidationError("query is required")
        collection, _ = await self.lores.resolve_existing(lore)
        results = await self.searcher.semantic_search(collection, query, limit, filter)
        return {
            "status": "success",
            "query": query,
            "count": len(results),
            "results": [r.project() for r in results],
        }

    @tool(filter_hint=True)
    async def find(
        self,
        keywords: List[str],
        limit: Optional[int] = None,
        filter: Optional[Dict[str, Any]] = None,
        lore: Optional[str] = None,
    ) -> Dict[str, Any]:
        keywords = [k for k in (keywords or []) if k and str(k).strip()]
        if not keywords:
            raise ValidationError("keywords are required")
        collection, _ = await self.lores.resolve_existing(lore)
        results = await self.searcher.keyword_search(collection, keywords, limit, filter)
        return {
            "status": "success",
            "keywords": keywords,
            "count": len(results),
            "results": [r.project() for r in results],
        }

    @tool()
    async def get_topic(self, topic_id: str, lore: Optional[str] = None) -> Dict[str, Any]:
        collection, _ = await self.lores.resolve_existing(lore)
        results = await self.searcher.get_by_topic(collection, topic_id)
        return {
            "status": "success",
            "topic_id": topic_id,
            "count": len(results),
            "chunks": [r.chunk for r in results],
        }

    # --- Admin ---

    @tool()
    async def stats(self, lore: Optional[str] = None) -> Dict[str, Any]:
        if lore:
            return {"status": "success", "lore": lore, **await self.lores.get_stats(lore)}
        stats = await self.vectors.stats(self.config.vector.collection)
        categories = await self.lores.canon_index.get_category_stats()
        return {"status": "success", **stats.model_dump(), "categories": categories}

    @tool()
    async def get_index(self, scope: Optional[str] = None, lore: Optional[str] = None) -> Dict[str, Any]:
        _, index = await self.lores.resolve_existing(lore)
        meta = await index.get_index(scope)
        return {"status": "success", **meta.model_dump()}

    @tool()
    async def export(self, lore: Optional[str] = None) -> Dict[str, Any]:
        return {"status": "success", **await self.chunks.export_backup(lore)}

    @tool()
    async def import_backup(self, data: Any, session_id: str, lore: Optional[str] = None) -> Dict[str, Any]:
        report = await self.chunks.import_backup(lore, data, session_id)
        status = "success" if not report["failed"] else "warning"
        message = f"Imported {report['imported']} chunk(s), {report['failed']} failed"
        return {"status": status, "message": message, **report}

    async def filter_guide(self) -> Dict[str, Any]:
        return {"status": "success", "guide": FILTER_GUIDE}

    # --- Lores ---

    @tool()
    async def list_lores(self) -> Dict[str, Any]:
        lores = await self.lores.list()
        return {
            "status": "success",
            "count": len(lores),
            "lores": [l.model_dump() for l in lores],
        }

    @tool()
    async def update_lore(self, lore: str, description: str) -> Dict[str, Any]:
        self.lores.validate_name(lore)
        record = await self.lores.update_description(lore, description)
        return {
            "status": "success",
            "message": f"Lore '{lore}' updated",
            "lore": record.model_dump(),
        }

    @tool()
    async def delete_lore(self, lore: str) -> Dict[str, Any]:
        self.lores.validate_name(lore)
        await self.lores.delete(lore)
        return {"status": "success", "message": f"Lore '{lore}' deleted"}
