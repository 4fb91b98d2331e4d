"""
Spellbook Lore Manager
----------------------
Lifecycle of named namespaces ("Lores") alongside the default Canon.

Each Lore owns two collections:
  - ``lore_<name>``           : chunk vectors (cosine)
  - ``lore_<name>_metadata``  : payload-only MetadataIndex documents

A Lore exists iff its catalog entry (point key ``lore:<name>``) is present
in the Canon metadata collection. Collections are provisioned before the
catalog entry is written, so a registered Lore always has its collections;
a crash in between can only leave unregistered (unreachable) collections.

MetadataIndex instances are constructed on first access and cached for the
life of this manager. ``delete`` evicts the cached instance.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from spellbook.core.errors import NotFoundError, ValidationError
from spellbook.core.metadata_index import DEFAULT_SCAN_LIMIT, MetadataIndex
from spellbook.core.types import LoreInfo, LoreRecord, now_iso
from spellbook.store.lock import KeyedLock

logger = logging.getLogger("Spellbook.Lore")

LORE_PREFIX = "lore_"
METADATA_SUFFIX = "_metadata"
CATALOG_KEY_PREFIX = "lore:"

LORE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def catalog_key(name: str) -> str:
    return f"{CATALOG_KEY_PREFIX}{name}"


class LoreManager:
    """
    Owns the Lore catalog and the per-namespace MetadataIndex cache.

    The Canon namespace is addressed with ``None`` wherever a Lore name is
    accepted; its collections come from configuration rather than a name.
    """

    def __init__(
        self,
        vector_store,
        vector_size: int,
        canon_collection: str,
        canon_metadata_collection: str,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
    ):
        self.vectors = vector_store
        self.vector_size = vector_size
        self.canon_collection = canon_collection
        self.canon_metadata_collection = canon_metadata_collection
        self.scan_limit = scan_limit

        self.canon_index = MetadataIndex(vector_store, canon_metadata_collection, scan_limit)
        self._indexes: Dict[str, MetadataIndex] = {}
        self._locks = KeyedLock()

    async def initialize(self) -> None:
        """Provision the Canon content and metadata collections."""
        await self.vectors.create_collection(self.canon_collection, self.vector_size)
        await self.canon_index.initialize()

    # --- Naming ---

    @staticmethod
    def validate_name(name: str) -> None:
        if not isinstance(name, str) or not LORE_NAME_PATTERN.fullmatch(name):
            raise ValidationError(
                f"Invalid Lore name '{name}': use 1-64 letters, digits, '_' or '-', "
                "starting with a letter or digit"
            )

    @staticmethod
    def collection_name(name: str) -> str:
        return f"{LORE_PREFIX}{name}"

    @staticmethod
    def metadata_collection_name(name: str) -> str:
        return f"{LORE_PREFIX}{name}{METADATA_SUFFIX}"

    # --- Catalog ---

    async def _get_record(self, name: str) -> Optional[LoreRecord]:
        payload = await self.vectors.get(self.canon_metadata_collection, catalog_key(name))
        if not payload:
            return None
        return LoreRecord(**payload)

    async def _require_record(self, name: str) -> LoreRecord:
        record = await self._get_record(name)
        if record is None:
            raise NotFoundError(f"Lore '{name}' not found")
        return record

    async def _save_record(self, record: LoreRecord) -> None:
        await self.vectors.upsert_payload(
            self.canon_metadata_collection, catalog_key(record.name), record.model_dump()
        )

    async def exists(self, name: str) -> bool:
        return await self._get_record(name) is not None

    async def ensure_exists(self, name: str, description: Optional[str] = None) -> LoreRecord:
        """Create the Lore if missing; otherwise optionally refresh its description."""
        self.validate_name(name)

        async with self._locks.acquire(name):
            record = await self._get_record(name)
            if record is not None:
                if description is not None:
                    record.description = description
                    record.last_updated = now_iso()
                    await self._save_record(record)
                return record

            collection = self.collection_name(name)
            metadata_collection = self.metadata_collection_name(name)
            await self.vectors.create_collection(collection, self.vector_size)
            await self.vectors.create_payload_collection(metadata_collection)

            record = LoreRecord(
                name=name,
                description=description or "",
                collection_name=collection,
                metadata_collection_name=metadata_collection,
            )
            await self._save_record(record)
            logger.info("Created Lore '%s'", name)
            return record

    async def update_description(self, name: str, description: str) -> LoreRecord:
        record = await self._require_record(name)
        record.description = description
        record.last_updated = now_iso()
        await self._save_record(record)
        return record

    async def delete(self, name: str) -> None:
        """
        Drop a Lore's collections and catalog entry.

        Steps are not atomic: if one fails, collections already deleted stay
        deleted and the error propagates.
        """
        async with self._locks.acquire(name):
            record = await self._require_record(name)

            for collection in (record.collection_name, record.metadata_collection_name):
                if await self.vectors.collection_exists(collection):
                    await self.vectors.delete_collection(collection)

            await self.vectors.delete(self.canon_metadata_collection, catalog_key(name))
            self._indexes.pop(name, None)

        self._locks.discard(name)
        logger.info("Deleted Lore '%s'", name)

    async def list(self) -> List[LoreInfo]:
        points = await self.vectors.scroll(
            self.canon_metadata_collection,
            limit=self.scan_limit,
            query_filter={"must": [{"key": "type", "match": {"value": "lore"}}]},
        )

        lores = []
        for point in points:
            record = LoreRecord(**point["payload"])
            try:
                total = (await self.vectors.stats(record.collection_name)).total_count
            except Exception as e:
                logger.warning("Could not read stats for Lore '%s': %s", record.name, e)
                total = 0
            lores.append(
                LoreInfo(
                    name=record.name,
                    description=record.description,
                    collection_name=record.collection_name,
                    total_chunks=total,
                    created_at=record.created_at,
                )
            )
        return lores

    async def get_stats(self, name: str) -> Dict:
        record = await self._require_record(name)
        stats = await self.vectors.stats(record.collection_name)
        categories = await self.get_metadata_index(name).get_category_stats()
        return {**stats.model_dump(), "categories": categories}

    def get_metadata_index(self, name: str) -> MetadataIndex:
        index = self._indexes.get(name)
        if index is None:
            index = MetadataIndex(self.vectors, self.metadata_collection_name(name), self.scan_limit)
            self._indexes[name] = index
        return index

    # --- Namespace resolution ---

    def resolve(self, lore: Optional[str]) -> Tuple[str, MetadataIndex]:
        """Content collection and MetadataIndex for a Lore name, or Canon for None."""
        if not lore:
            return self.canon_collection, self.canon_index
        self.validate_name(lore)
        return self.collection_name(lore), self.get_metadata_index(lore)

    async def resolve_existing(self, lore: Optional[str]) -> Tuple[str, MetadataIndex]:
        """Like :meth:`resolve`, but a named Lore must already exist."""
        if lore:
            self.validate_name(lore)
            await self._require_record(lore)
        return self.resolve(lore)
