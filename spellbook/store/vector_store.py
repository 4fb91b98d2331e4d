"""
Spellbook Vector Store
----------------------
Qdrant-based storage for chunk vectors and payload-only catalog collections.
Wraps the async qdrant-client with Spellbook-specific operations; every
call names its target collection so one client serves Canon and all Lores.
"""

import logging
import uuid
from typing import Optional, List, Dict, Any, Union

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    VectorParams,
    PointStruct,
    Filter,
    FieldCondition,
    MatchValue,
    MatchAny,
    MatchExcept,
    MatchText,
    Range,
    PointIdsList,
)

from spellbook.core.types import CollectionStats

logger = logging.getLogger("Spellbook.Vector")

PointId = Union[str, int]

# Payload-only collections still need a vector slot in Qdrant
PAYLOAD_VECTOR_SIZE = 1
PAYLOAD_VECTOR = [1.0]

_NESTED_KEYS = ("must", "should", "must_not")


_MAX_POINT_INT = 2 ** 64


def to_point_id(key: Union[str, int]) -> PointId:
    """
    Map a logical key to a Qdrant-compatible point id.

    Unsigned 64-bit integers and UUIDs are used as-is when the key is already
    in canonical form ("123", lower-case hyphenated UUID). Any other key,
    including "0123" or an upper-case UUID, is hashed into the UUID space with
    uuid5 so distinct keys never share a point.
    """
    if isinstance(key, int) and not isinstance(key, bool) and 0 <= key < _MAX_POINT_INT:
        return key
    text = str(key)
    if text.isascii() and text.isdigit() and str(int(text)) == text and int(text) < _MAX_POINT_INT:
        return int(text)
    try:
        if str(uuid.UUID(text)) == text:
            return text
    except ValueError:
        pass
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, text))


def _build_match(match: Dict[str, Any]):
    if "value" in match:
        return MatchValue(value=match["value"])
    if "any" in match:
        return MatchAny(any=list(match["any"]))
    if "except" in match:
        return MatchExcept(**{"except": list(match["except"])})
    if "text" in match:
        return MatchText(text=match["text"])
    raise ValueError(f"Unsupported match clause: {match}")


def _build_condition(condition: Any):
    if not isinstance(condition, dict):
        return condition
    if any(key in condition for key in _NESTED_KEYS):
        return build_filter(condition)
    if "key" in condition and "match" in condition:
        return FieldCondition(key=condition["key"], match=_build_match(condition["match"]))
    if "key" in condition and "range" in condition:
        return FieldCondition(key=condition["key"], range=Range(**condition["range"]))
    # has_id / is_empty / is_null / nested: let qdrant's own models parse it
    return Filter(must=[condition]).must[0]


def build_filter(structured: Optional[Union[Dict[str, Any], Filter]]) -> Optional[Filter]:
    """Convert a structured filter dict into a qdrant ``Filter``."""
    if structured is None or isinstance(structured, Filter):
        return structured
    clauses = {}
    for key in _NESTED_KEYS:
        value = structured.get(key)
        if value is None:
            continue
        if isinstance(value, dict):
            value = [value]
        clauses[key] = [_build_condition(c) for c in value]
    return Filter(**clauses)


class VectorStore:
    """Manages chunk vectors and payload documents in Qdrant."""

    def __init__(
        self,
        url: Optional[str] = None,
        path: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.url = url
        self.path = path
        self.api_key = api_key
        self._client: Optional[AsyncQdrantClient] = client

    def _get_client(self) -> AsyncQdrantClient:
        if self._client is None:
            if self.path:
                self._client = AsyncQdrantClient(path=self.path)
            else:
                self._client = AsyncQdrantClient(url=self.url, api_key=self.api_key)
        return self._client

    # --- Collections ---

    async def collection_exists(self, name: str) -> bool:
        return await self._get_client().collection_exists(collection_name=name)

    async def list_collections(self) -> List[str]:
        response = await self._get_client().get_collections()
        return [c.name for c in response.collections]

    async def create_collection(self, name: str, vector_size: int) -> bool:
        """Create a cosine collection. Returns False if it already existed."""
        client = self._get_client()
        if await client.collection_exists(collection_name=name):
            logger.info("Vector collection '%s' exists", name)
            return False
        await client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
        )
        logger.info("Created vector collection '%s' (%d dims)", name, vector_size)
        return True

    async def create_payload_collection(self, name: str) -> bool:
        """Create a payload-only collection backed by a dummy 1-d vector."""
        client = self._get_client()
        if await client.collection_exists(collection_name=name):
            return False
        await client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=PAYLOAD_VECTOR_SIZE, distance=Distance.DOT),
        )
        logger.info("Created payload collection '%s'", name)
        return True

    async def delete_collection(self, name: str) -> None:
        await self._get_client().delete_collection(collection_name=name)
        logger.info("Deleted collection '%s'", name)

    async def stats(self, name: str) -> CollectionStats:
        info = await self._get_client().get_collection(collection_name=name)
        return CollectionStats(
            total_count=info.points_count or 0,
            vector_count=info.indexed_vectors_count or 0,
        )

    # --- Points ---

    async def upsert(
        self,
        collection: str,
        key: Union[str, int],
        vector: List[float],
        payload: Dict[str, Any],
    ) -> PointId:
        """Insert or replace a point. Returns the physical point id."""
        point_id = to_point_id(key)
        await self._get_client().upsert(
            collection_name=collection,
            points=[PointStruct(id=point_id, vector=vector, payload=payload)],
            wait=True,
        )
        return point_id

    async def upsert_payload(self, collection: str, key: str, payload: Dict[str, Any]) -> PointId:
        return await self.upsert(collection, key, PAYLOAD_VECTOR, payload)

    async def get(self, collection: str, key: Union[str, int]) -> Optional[Dict[str, Any]]:
        """Return the stored payload for a key, or None if absent."""
        records = await self._get_client().retrieve(
            collection_name=collection,
            ids=[to_point_id(key)],
            with_payload=True,
            with_vectors=False,
        )
        if not records:
            return None
        return dict(records[0].payload or {})

    async def delete(self, collection: str, key: Union[str, int]) -> None:
        """Delete a point by key. Deleting a missing point is not an error."""
        await self._get_client().delete(
            collection_name=collection,
            points_selector=PointIdsList(points=[to_point_id(key)]),
            wait=True,
        )

    async def search(
        self,
        collection: str,
        vector: List[float],
        limit: int = 5,
        query_filter: Optional[Union[Dict[str, Any], Filter]] = None,
        score_threshold: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Nearest-neighbour search.
        Returns ``[{id, score, payload}]`` ordered by descending score.
        """
        response = await self._get_client().query_points(
            collection_name=collection,
            query=vector,
            limit=limit,
            query_filter=build_filter(query_filter),
            score_threshold=score_threshold,
            with_payload=True,
        )
        return [
            {"id": str(hit.id), "score": hit.score, "payload": dict(hit.payload or {})}
            for hit in response.points
        ]

    async def scroll(
        self,
        collection: str,
        limit: int = 100,
        query_filter: Optional[Union[Dict[str, Any], Filter]] = None,
    ) -> List[Dict[str, Any]]:
        """Single-page scan; the next-page offset is ignored."""
        records, _next_offset = await self._get_client().scroll(
            collection_name=collection,
            scroll_filter=build_filter(query_filter),
            limit=limit,
            with_payload=True,
            with_vectors=False,
        )
        return [{"id": str(r.id), "payload": dict(r.payload or {})} for r in records]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

