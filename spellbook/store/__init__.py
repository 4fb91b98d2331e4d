# Lazy imports: VectorStore needs qdrant_client
from spellbook.store.lock import KeyedLock

__all__ = ["KeyedLock", "VectorStore", "to_point_id"]


def __getattr__(name):
    if name == "VectorStore":
        from spellbook.store.vector_store import VectorStore
        return VectorStore
    if name == "to_point_id":
        from spellbook.store.vector_store import to_point_id
        return to_point_id
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
