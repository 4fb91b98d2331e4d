"""
Spellbook Configuration
-----------------------
Centralized configuration management for all Spellbook components.
Loads from environment variables and YAML config files.
"""

import os
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field

from spellbook.core.errors import ConfigError
from spellbook.platform import get_data_dir

logger = logging.getLogger("Spellbook.Config")

DEFAULT_DATA_DIR = str(get_data_dir())


def _parse_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'; expected integer. Using %d.", name, raw, default)
        return default


def _parse_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'; expected float. Using %s.", name, raw, default)
        return default


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""
    provider: str = "ollama"
    model: str = "nomic-embed-text"
    dimensions: int = 768
    ollama_url: str = "http://localhost:11434"
    context_length: int = 8192
    timeout_seconds: float = 30.0


class VectorConfig(BaseModel):
    """Qdrant vector store configuration."""
    url: str = "http://localhost:17951"
    # When set, an embedded local Qdrant at this path is used instead of `url`
    path: Optional[str] = None
    api_key: Optional[str] = None
    collection: str = "chunks"
    metadata_collection: str = "chunks_metadata"


class SessionConfig(BaseModel):
    """REST session configuration."""
    timeout_seconds: int = 3600


class RetrievalConfig(BaseModel):
    """Similarity floors and scan bounds."""
    semantic_threshold: float = 0.7
    keyword_threshold: float = 0.6
    duplicate_threshold: float = 0.95
    duplicate_limit: int = 5
    default_limit: int = 5
    aggregate_scan_limit: int = 1000
    topic_scan_limit: int = 100
    guide_scan_limit: int = 10
    export_scan_limit: int = 10000


class ServerConfig(BaseModel):
    """FastAPI server configuration."""
    host: str = "0.0.0.0"
    port: int = 17950
    log_level: str = "info"


class SpellbookConfig(BaseModel):
    """Root configuration for the entire Spellbook system."""
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector: VectorConfig = Field(default_factory=VectorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    data_dir: str = DEFAULT_DATA_DIR

    @classmethod
    def from_env(cls) -> "SpellbookConfig":
        """
        Load configuration from environment variables.

        Environment variables override defaults:
        - SPELLBOOK_DATA_DIR: Base data directory
        - SPELLBOOK_HOST / SPELLBOOK_PORT / SPELLBOOK_LOG_LEVEL: Server binding
        - SPELLBOOK_EMBEDDING_MODEL / SPELLBOOK_EMBEDDING_DIMS: Embedding model
        - SPELLBOOK_EMBEDDING_CONTEXT_LENGTH: Embedding context window
        - SPELLBOOK_OLLAMA_URL: Ollama server URL
        - SPELLBOOK_QDRANT_URL / SPELLBOOK_QDRANT_PATH / SPELLBOOK_QDRANT_API_KEY
        - SPELLBOOK_COLLECTION / SPELLBOOK_METADATA_COLLECTION: Canon collections
        - SPELLBOOK_SESSION_TIMEOUT: REST session lifetime in seconds
        - SPELLBOOK_DEDUP_THRESHOLD: Near-duplicate similarity floor
        """
        data_dir = os.environ.get("SPELLBOOK_DATA_DIR", DEFAULT_DATA_DIR)
        embedding_dims = _parse_int_env("SPELLBOOK_EMBEDDING_DIMS", 768)
        collection = os.environ.get("SPELLBOOK_COLLECTION", "chunks")

        return cls(
            data_dir=data_dir,
            embedding=EmbeddingConfig(
                model=os.environ.get("SPELLBOOK_EMBEDDING_MODEL", "nomic-embed-text"),
                dimensions=embedding_dims,
                ollama_url=os.environ.get("SPELLBOOK_OLLAMA_URL", "http://localhost:11434"),
                context_length=_parse_int_env("SPELLBOOK_EMBEDDING_CONTEXT_LENGTH", 8192),
            ),
            vector=VectorConfig(
                url=os.environ.get("SPELLBOOK_QDRANT_URL", "http://localhost:17951"),
                path=os.environ.get("SPELLBOOK_QDRANT_PATH") or None,
                api_key=os.environ.get("SPELLBOOK_QDRANT_API_KEY") or None,
                collection=collection,
                metadata_collection=os.environ.get(
                    "SPELLBOOK_METADATA_COLLECTION", f"{collection}_metadata"
                ),
            ),
            session=SessionConfig(
                timeout_seconds=_parse_int_env("SPELLBOOK_SESSION_TIMEOUT", 3600),
            ),
            retrieval=RetrievalConfig(
                duplicate_threshold=_parse_float_env("SPELLBOOK_DEDUP_THRESHOLD", 0.95),
            ),
            server=ServerConfig(
                host=os.environ.get("SPELLBOOK_HOST", "0.0.0.0"),
                port=_parse_int_env("SPELLBOOK_PORT", 17950),
                log_level=os.environ.get("SPELLBOOK_LOG_LEVEL", "info"),
            ),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "SpellbookConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using environment", path)
            return cls.from_env()
        return cls(**data)

    def ensure_directories(self) -> None:
        """Create data directories if they don't exist."""
        Path(self.data_dir).mkdir(parents=True, exist_ok=True)
        if self.vector.path:
            Path(self.vector.path).mkdir(parents=True, exist_ok=True)


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_config(config: SpellbookConfig) -> None:
    """Reject configurations the server cannot start with."""
    if not 1 <= config.server.port <= 65535:
        raise ConfigError(f"Invalid port number: {config.server.port}")
    if config.embedding.dimensions <= 0:
        raise ConfigError(f"Invalid embedding dimensions: {config.embedding.dimensions}")
    if not _is_http_url(config.embedding.ollama_url):
        raise ConfigError(f"Invalid Ollama URL: {config.embedding.ollama_url}")
    if not config.vector.path and not _is_http_url(config.vector.url):
        raise ConfigError(f"Invalid Qdrant URL: {config.vector.url}")

    logger.info(
        "Configuration OK: server=%s:%d qdrant=%s ollama=%s model=%s (%d dims)",
        config.server.host,
        config.server.port,
        config.vector.path or config.vector.url,
        config.embedding.ollama_url,
        config.embedding.model,
        config.embedding.dimensions,
    )

