# Lazy imports to avoid pulling qdrant_client/httpx on simple type imports
from spellbook.core.types import Chunk, ChunkMetadata, SearchResult

__all__ = ["Spellbook", "Chunk", "ChunkMetadata", "SearchResult"]


def __getattr__(name):
    if name == "Spellbook":
        from spellbook.core.engine import Spellbook
        return Spellbook
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
