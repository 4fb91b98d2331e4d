"""
Spellbook Embedder
------------------
Ollama-backed text embeddings.

- Exact-text cache so repeated texts are embedded once
- L2 normalization so cosine similarity reduces to a dot product
- Batch embedding via concurrent requests (cache-aware)

The cache is unbounded and unsynchronized; concurrent requests for the same
text may both hit Ollama, and the second write simply overwrites the first.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import httpx
import numpy as np

from spellbook.core.config import EmbeddingConfig
from spellbook.core.errors import (
    EmbeddingError,
    EmbeddingModelNotFoundError,
    EmbeddingUnavailableError,
)

logger = logging.getLogger("Spellbook.Embedder")


def normalize(vector: List[float]) -> List[float]:
    """Scale a vector to unit length."""
    array = np.asarray(vector, dtype=np.float64)
    magnitude = float(np.linalg.norm(array))
    if magnitude == 0.0:
        raise EmbeddingError("Cannot normalize a zero vector")
    return (array / magnitude).tolist()


class OllamaEmbedder:
    """Embeds text through Ollama's ``/api/embeddings`` endpoint."""

    def __init__(self, config: EmbeddingConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._cache: Dict[str, List[float]] = {}
        self._hits = 0
        self._misses = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def embed(self, text: str) -> List[float]:
        cached = self._cache.get(text)
        if cached is not None:
            self._hits += 1
            return cached

        self._misses += 1
        raw = await self._call_ollama(text)
        if len(raw) != self.config.dimensions:
            raise EmbeddingError(
                f"Model '{self.config.model}' returned {len(raw)} dimensions, "
                f"expected {self.config.dimensions}",
                hint="Set SPELLBOOK_EMBEDDING_DIMS to match the model.",
            )
        vector = normalize(raw)
        self._cache[text] = vector
        return vector

    async def batch_embed(self, texts: List[str]) -> List[List[float]]:
        return list(await asyncio.gather(*(self.embed(t) for t in texts)))

    async def _call_ollama(self, text: str) -> List[float]:
        url = f"{self.config.ollama_url}/api/embeddings"
        try:
            response = await self._get_client().post(
                url,
                json={"model": self.config.model, "prompt": text},
                timeout=self.config.timeout_seconds,
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise EmbeddingUnavailableError(
                f"Cannot reach Ollama at {self.config.ollama_url}: {e}",
                hint="Check that Ollama is running.",
            ) from e

        if response.status_code == 404:
            raise EmbeddingModelNotFoundError(
                f"Embedding model not found: {self.config.model}",
                hint=f"Run: ollama pull {self.config.model}",
            )
        response.raise_for_status()

        embedding = response.json().get("embedding")
        if not embedding:
            raise EmbeddingError("Ollama returned no embedding")
        return embedding

    def clear_cache(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    def cache_stats(self) -> Dict[str, float]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / lookups) if lookups else 0.0,
        }

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
