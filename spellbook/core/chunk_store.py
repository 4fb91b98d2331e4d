"""
Spellbook Chunk Store
---------------------
Mutation entry points for chunks in Canon or a Lore.

Write sequence:
1. Validate the REST session
2. Provision the Lore (named namespaces only)
3. Assign an id and stamp timestamps / session / overrides
4. Near-duplicate check; duplicates stop the write with a warning
5. Embed and upsert into the content collection
6. Update the namespace's MetadataIndex
7. Count the write against the session

Steps are not rolled back: a failure after step 5 leaves the chunk stored
and is reported as an ``error`` outcome.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from spellbook.core.config import RetrievalConfig
from spellbook.core.errors import NotFoundError, SpellbookError, ValidationError
from spellbook.core.types import (
    BACKUP_VERSION,
    BackupChunk,
    BackupData,
    Chunk,
    ChunkMetadata,
    WriteResult,
    now_iso,
)

logger = logging.getLogger("Spellbook.ChunkStore")


def _metadata_from_payload(payload: Dict[str, Any]) -> ChunkMetadata:
    return ChunkMetadata(**payload)


def _payload_to_backup(point: Dict[str, Any]) -> Dict[str, Any]:
    payload = dict(point["payload"])
    chunk_id = payload.pop("chunk_id", None) or point["id"]
    return {"id": chunk_id, **payload}


class ChunkStore:
    def __init__(self, sessions, lores, searcher, embedder, vector_store, config: Optional[RetrievalConfig] = None):
        self.sessions = sessions
        self.lores = lores
        self.searcher = searcher
        self.embedder = embedder
        self.vectors = vector_store
        self.config = config or RetrievalConfig()

    async def write(
        self,
        session_id: str,
        lore: Optional[str],
        chunk: Chunk,
        category: Optional[str] = None,
        source: Optional[str] = None,
        lore_description: Optional[str] = None,
    ) -> WriteResult:
        try:
            self.sessions.validate(session_id)

            chunk = chunk.model_copy(deep=True)
            if category:
                chunk.metadata.category = category
            if source:
                chunk.metadata.source = source
            if not chunk.text or not chunk.text.strip():
                raise ValidationError("Chunk text is required")
            if not chunk.metadata.topic_id:
                raise ValidationError("Chunk metadata.topic_id is required")
            if not chunk.metadata.category:
                raise ValidationError("Chunk metadata.category is required")

            if lore:
                await self.lores.ensure_exists(lore, lore_description)
            collection, index = self.lores.resolve(lore)

            if not chunk.id:
                chunk.id = str(uuid.uuid4())
            now = now_iso()
            chunk.metadata.created_at = now
            chunk.metadata.updated_at = now
            chunk.metadata.rest_session_id = session_id

            duplicates = await self.searcher.detect_duplicates(
                collection, chunk.text, self.config.duplicate_threshold
            )
            if duplicates:
                return WriteResult(
                    status="warning",
                    message=(
                        f"{len(duplicates)} similar chunk(s) already exist. "
                        "Revise the existing chunk or change the text to store it."
                    ),
                    duplicates=[d.project() for d in duplicates],
                )

            embedding = await self.embedder.embed(chunk.text)
            await self.vectors.upsert(collection, chunk.id, embedding, chunk.to_payload())
            await index.on_chunk_created(chunk.metadata)
            self.sessions.record_activity(session_id)

        except SpellbookError as e:
            logger.warning("Scribe rejected: %s", e)
            return WriteResult(status="error", message=str(e))
        except Exception as e:
            logger.error("Scribe failed: %s", e, exc_info=True)
            return WriteResult(status="error", message=str(e) or "Write failed")

        logger.info("Scribed chunk %s into %s", chunk.id, collection)
        return WriteResult(status="success", message="Chunk stored", chunk_id=chunk.id)

    async def erase(self, lore: Optional[str], chunk_id: str) -> None:
        collection, index = await self.lores.resolve_existing(lore)

        payload = await self.vectors.get(collection, chunk_id)
        await self.vectors.delete(collection, chunk_id)
        if payload:
            await index.on_chunk_deleted(_metadata_from_payload(payload))
            logger.info("Erased chunk %s from %s", chunk_id, collection)
        else:
            logger.info("Erase of missing chunk %s in %s; index untouched", chunk_id, collection)

    async def revise(self, lore: Optional[str], chunk_id: str, new_text: str) -> None:
        if not new_text or not new_text.strip():
            raise ValidationError("new_text is required")
        collection, _ = await self.lores.resolve_existing(lore)

        payload = await self.vectors.get(collection, chunk_id)
        if not payload:
            raise NotFoundError(f"Chunk not found: {chunk_id}")

        embedding = await self.embedder.embed(new_text)
        payload.update(text=new_text, updated_at=now_iso())
        await self.vectors.upsert(collection, chunk_id, embedding, payload)
        logger.info("Revised chunk %s in %s", chunk_id, collection)

    async def export_backup(self, lore: Optional[str]) -> Dict[str, Any]:
        collection, _ = await self.lores.resolve_existing(lore)
        points = await self.vectors.scroll(collection, limit=self.config.export_scan_limit)
        chunks = [_payload_to_backup(p) for p in points]
        return {
            "version": BACKUP_VERSION,
            "exported_at": now_iso(),
            "total_chunks": len(chunks),
            "chunks": chunks,
        }

    async def import_backup(self, lore: Optional[str], data: Any, session_id: str) -> Dict[str, Any]:
        """
        Restore chunks from a backup document.

        Every chunk is re-embedded and replayed into the MetadataIndex.
        Duplicate detection is skipped; a chunk whose id already exists
        replaces the stored one. Per-chunk failures are collected rather
        than aborting the import.
        """
        self.sessions.validate(session_id)
        if not isinstance(data, BackupData):
            try:
                data = BackupData.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid backup data: {e}") from e

        if lore:
            await self.lores.ensure_exists(lore)
        collection, index = self.lores.resolve(lore)

        imported = 0
        errors = []
        for position, item in enumerate(data.chunks):
            try:
                chunk_id = await self._import_chunk(collection, index, item, session_id)
                self.sessions.record_activity(session_id)
                imported += 1
            except SpellbookError:
                raise
            except Exception as e:
                logger.warning("Import of chunk #%d failed: %s", position, e)
                errors.append({"index": position, "id": item.id, "error": str(e)})
                continue
            logger.debug("Imported chunk %s", chunk_id)

        logger.info("Imported %d/%d chunks into %s", imported, len(data.chunks), collection)
        return {"imported": imported, "failed": len(errors), "errors": errors}

    async def _import_chunk(self, collection: str, index, item: BackupChunk, session_id: str) -> str:
        chunk_id = item.id or str(uuid.uuid4())
        now = now_iso()

        fields = item.model_dump(exclude={"id", "text"})
        fields["created_at"] = item.created_at or now
        fields["updated_at"] = item.updated_at or now
        fields["rest_session_id"] = session_id
        chunk = Chunk(id=chunk_id, text=item.text, metadata=ChunkMetadata(**fields))

        existing = await self.vectors.get(collection, chunk_id)
        if existing:
            await index.on_chunk_deleted(_metadata_from_payload(existing))

        embedding = await self.embedder.embed(chunk.text)
        await self.vectors.upsert(collection, chunk_id, embedding, chunk.to_payload())
        await index.on_chunk_created(chunk.metadata)
        return chunk_id
