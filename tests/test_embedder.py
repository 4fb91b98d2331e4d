"""Tests for spellbook.core.embedder — Ollama embedding client."""

import asyncio
import math

import httpx
import pytest

from spellbook.core.config import EmbeddingConfig
from spellbook.core.embedder import OllamaEmbedder, normalize
from spellbook.core.errors import (
    EmbeddingError,
    EmbeddingModelNotFoundError,
    EmbeddingUnavailableError,
)


def _embedder(handler, dimensions=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaEmbedder(EmbeddingConfig(dimensions=dimensions), client=client)


class TestNormalize:
    def test_unit_length(self):
        vector = normalize([3.0, 4.0])
        assert vector == pytest.approx([0.6, 0.8])
        assert math.isclose(sum(v * v for v in vector), 1.0)

    def test_zero_vector_rejected(self):
        with pytest.raises(EmbeddingError):
            normalize([0.0, 0.0])


class TestOllamaEmbedder:
    def test_request_shape_and_normalized_result(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"embedding": [0.0, 3.0, 4.0]})

        embedder = _embedder(handler)
        vector = asyncio.run(embedder.embed("hello"))

        assert seen["url"] == "http://localhost:11434/api/embeddings"
        assert b'"model":"nomic-embed-text"' in seen["body"].replace(b" ", b"")
        assert b'"prompt":"hello"' in seen["body"].replace(b" ", b"")
        assert vector == pytest.approx([0.0, 0.6, 0.8])

    def test_cache_hits_skip_requests(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"embedding": [1.0, 0.0, 0.0]})

        embedder = _embedder(handler)

        async def scenario():
            await embedder.embed("same")
            await embedder.embed("same")
            await embedder.embed("other")

        asyncio.run(scenario())
        assert len(calls) == 2
        stats = embedder.cache_stats()
        assert stats["size"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 2
        assert stats["hit_rate"] == pytest.approx(1 / 3)

        embedder.clear_cache()
        assert embedder.cache_stats() == {"size": 0, "hits": 0, "misses": 0, "hit_rate": 0.0}

    def test_batch_embed_preserves_order(self):
        def handler(request):
            text = request.read().decode()
            value = [1.0, 0.0, 0.0] if '"a"' in text else [0.0, 1.0, 0.0]
            return httpx.Response(200, json={"embedding": value})

        vectors = asyncio.run(_embedder(handler).batch_embed(["a", "b"]))
        assert vectors == [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]

    def test_unreachable_endpoint(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(EmbeddingUnavailableError, match="Check that Ollama is running"):
            asyncio.run(_embedder(handler).embed("x"))

    def test_unknown_model(self):
        def handler(request):
            return httpx.Response(404, json={"error": "model not found"})

        with pytest.raises(EmbeddingModelNotFoundError, match="ollama pull nomic-embed-text"):
            asyncio.run(_embedder(handler).embed("x"))

    def test_missing_embedding_field(self):
        def handler(request):
            return httpx.Response(200, json={})

        with pytest.raises(EmbeddingError, match="no embedding"):
            asyncio.run(_embedder(handler).embed("x"))

    def test_dimension_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"embedding": [1.0, 0.0]})

        with pytest.raises(EmbeddingError, match="expected 3"):
            asyncio.run(_embedder(handler).embed("x"))

    def test_server_error_propagates(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(_embedder(handler).embed("x"))

    def test_error_hint_is_appended(self):
        error = EmbeddingUnavailableError("down", hint="start it")
        assert str(error) == "down\nstart it"
        assert error.hint == "start it"
