"""
Spellbook Core Types
--------------------
Pydantic models and enums for chunks, metadata aggregates, Lores,
REST sessions, tool outcomes and the backup exchange format.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


class EntityType(str, Enum):
    PERSON = "person"
    PROJECT = "project"
    TECHNOLOGY = "technology"
    ORGANIZATION = "organization"
    CONCEPT = "concept"


class Importance(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Entity(BaseModel):
    name: str
    type: EntityType


def normalize_keywords(keywords: List[str]) -> List[str]:
    """Strip, lower-case and de-duplicate keywords, keeping first-seen order."""
    seen = []
    for keyword in keywords:
        value = str(keyword).strip().lower()
        if value and value not in seen:
            seen.append(value)
    return seen


class ChunkMetadata(BaseModel):
    topic_id: str
    topic_name: Optional[str] = None
    # May be omitted when the write call supplies a category override
    category: Optional[str] = None
    sub_category: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    importance: Importance = Importance.MEDIUM
    source: Optional[str] = None

    # Set by the store, never by the caller
    rest_session_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, value: List[str]) -> List[str]:
        return normalize_keywords(value)


class Chunk(BaseModel):
    id: Optional[str] = None
    text: str
    metadata: ChunkMetadata

    def to_payload(self) -> Dict[str, Any]:
        """Flatten into the stored point payload (text + metadata fields)."""
        payload = {"text": self.text, "chunk_id": self.id}
        payload.update(self.metadata.model_dump(mode="json", exclude_none=True))
        return payload


class SearchResult(BaseModel):
    id: str
    score: float = 0.0
    chunk: Dict[str, Any] = Field(default_factory=dict)

    def project(self) -> Dict[str, Any]:
        """Shape returned by the read tools."""
        return {
            "id": self.id,
            "score": self.score,
            "text": self.chunk.get("text", ""),
            "metadata": self.chunk,
        }


# --- Metadata collection documents ---

class TopicAggregate(BaseModel):
    type: Literal["topic"] = "topic"
    topic_id: str
    topic_name: str
    category: str
    sub_category: Optional[str] = None
    chunk_count: int = 0
    keywords: List[str] = Field(default_factory=list)
    last_updated: str = Field(default_factory=now_iso)


class CategoryAggregate(BaseModel):
    type: Literal["category"] = "category"
    name: str
    sub_categories: List[str] = Field(default_factory=list)
    topic_count: int = 0
    chunk_count: int = 0
    last_updated: str = Field(default_factory=now_iso)


class LoreRecord(BaseModel):
    """Catalog entry for one Lore, stored in the Canon metadata collection."""
    type: Literal["lore"] = "lore"
    name: str
    description: str = ""
    collection_name: str
    metadata_collection_name: str
    created_at: str = Field(default_factory=now_iso)
    last_updated: str = Field(default_factory=now_iso)


class CategoryInfo(BaseModel):
    id: str
    name: str
    sub_categories: List[str] = Field(default_factory=list)
    topic_count: int = 0
    chunk_count: int = 0
    description: str = ""
    last_updated: Optional[str] = None


class MetaIndex(BaseModel):
    categories: List[CategoryInfo] = Field(default_factory=list)
    total_topics: int = 0
    total_chunks: int = 0
    last_updated: str = Field(default_factory=now_iso)


class LoreInfo(BaseModel):
    name: str
    description: str = ""
    collection_name: str
    total_chunks: int = 0
    created_at: Optional[str] = None


class CollectionStats(BaseModel):
    total_count: int = 0
    vector_count: int = 0


# --- REST sessions ---

class ChunkSizeRange(BaseModel):
    min_tokens: int = 100
    max_tokens: int = 512


class KeywordCountRange(BaseModel):
    min: int = 3
    max: int = 10


class ChunkingGuide(BaseModel):
    principles: List[str] = Field(default_factory=list)
    ideal_chunk_size: ChunkSizeRange = Field(default_factory=ChunkSizeRange)
    examples: List[str] = Field(default_factory=list)


class MetadataRules(BaseModel):
    required_fields: List[str] = Field(
        default_factory=lambda: ["topic_id", "category", "keywords", "questions", "entities"]
    )
    keyword_count: KeywordCountRange = Field(default_factory=KeywordCountRange)
    question_guidelines: List[str] = Field(default_factory=list)
    entity_extraction: List[str] = Field(default_factory=list)


class RestSession(BaseModel):
    id: str
    created_at: datetime
    expires_at: datetime
    chunking_guide: ChunkingGuide
    metadata_rules: MetadataRules
    scribed_count: int = 0
    status: Literal["active", "expired"] = "active"


# --- Outcomes ---

class WriteResult(BaseModel):
    status: Literal["success", "warning", "error"]
    message: str
    chunk_id: Optional[str] = None
    duplicates: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# --- Backup exchange format ---

BACKUP_VERSION = "0.1.0"


class BackupChunk(BaseModel):
    id: Optional[str] = None
    text: str
    topic_id: str = "imported"
    topic_name: Optional[str] = None
    category: str = "imported"
    sub_category: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    importance: Importance = Importance.MEDIUM
    source: str = "backup-import"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BackupData(BaseModel):
    version: Optional[str] = BACKUP_VERSION
    exported_at: Optional[str] = None
    total_chunks: Optional[int] = None
    chunks: List[BackupChunk] = Field(default_factory=list)


# --- HTTP request models ---

class LoreScoped(BaseModel):
    lore: Optional[str] = None


class RestEndRequest(BaseModel):
    session_id: str


class ScribeRequest(LoreScoped):
    chunk: Chunk
    session_id: str
    category: Optional[str] = None
    source: Optional[str] = None
    lore_description: Optional[str] = None


class EraseRequest(LoreScoped):
    chunk_id: str


class ReviseRequest(LoreScoped):
    chunk_id: str
    new_text: str


class MemorizeRequest(LoreScoped):
    query: str
    limit: Optional[int] = None
    filter: Optional[Dict[str, Any]] = None


class FindRequest(LoreScoped):
    keywords: List[str]
    limit: Optional[int] = None
    filter: Optional[Dict[str, Any]] = None


class ImportRequest(LoreScoped):
    session_id: str
    data: BackupData


class UpdateLoreRequest(BaseModel):
    description: str
