"""Shared fixtures: in-memory Qdrant, a deterministic embedder and a settable clock."""

import math
from datetime import datetime, timedelta, timezone

import pytest
from qdrant_client import AsyncQdrantClient

from spellbook.core.config import EmbeddingConfig, SpellbookConfig
from spellbook.core.engine import Spellbook
from spellbook.store.vector_store import VectorStore

DIM = 32


class FakeEmbedder:
    """
    Every distinct text gets its own basis vector, so unrelated texts score 0
    and identical texts score 1. ``alias`` and ``set_vector`` pin specific
    similarities for search tests.
    """

    def __init__(self, dimensions: int = DIM):
        self.dimensions = dimensions
        self._vectors = {}
        self._next_axis = 0
        self.calls = []

    def _basis(self):
        if self._next_axis >= self.dimensions:
            raise RuntimeError("FakeEmbedder ran out of axes")
        vector = [0.0] * self.dimensions
        vector[self._next_axis] = 1.0
        self._next_axis += 1
        return vector

    def vector_for(self, text):
        if text not in self._vectors:
            self._vectors[text] = self._basis()
        return self._vectors[text]

    def set_vector(self, text, vector):
        padded = list(vector) + [0.0] * (self.dimensions - len(vector))
        norm = math.sqrt(sum(v * v for v in padded))
        self._vectors[text] = [v / norm for v in padded]

    def alias(self, text, same_as):
        self._vectors[text] = self.vector_for(same_as)

    def blend(self, text, base, similarity):
        """Give ``text`` a vector whose cosine with ``base`` is ``similarity``."""
        base_vector = self.vector_for(base)
        other = self._basis()
        rest = math.sqrt(1.0 - similarity * similarity)
        self._vectors[text] = [similarity * b + rest * o for b, o in zip(base_vector, other)]

    async def embed(self, text):
        self.calls.append(text)
        return self.vector_for(text)

    async def batch_embed(self, texts):
        return [await self.embed(t) for t in texts]

    def cache_stats(self):
        return {"size": len(self._vectors), "hits": 0, "misses": 0, "hit_rate": 0.0}

    async def close(self):
        pass


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


def make_chunk(text, topic_id="docker-setup", category="project", **metadata):
    return {"text": text, "metadata": {"topic_id": topic_id, "category": category, **metadata}}


@pytest.fixture
def vector_store():
    return VectorStore(client=AsyncQdrantClient(location=":memory:"))


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return SpellbookConfig(
        data_dir=str(tmp_path),
        embedding=EmbeddingConfig(dimensions=DIM),
    )


@pytest.fixture
def book(config, vector_store, embedder, clock):
    return Spellbook(config, vector_store=vector_store, embedder=embedder, clock=clock)
