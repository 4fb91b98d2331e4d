from spellbook.retrieval.searcher import SearchService, UNSCORED

__all__ = ["SearchService", "UNSCORED"]
