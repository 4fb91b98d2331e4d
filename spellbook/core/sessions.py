"""
Spellbook REST Sessions
-----------------------
In-memory write authorization. Every chunk mutation must name an active
REST session; sessions live for one hour and are discarded either by an
explicit end call or the first time they are validated after expiry.

The session table is owned by one RestSessionManager instance for the life
of the process. Nothing is persisted.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from spellbook.core.errors import (
    NotAuthorizedError,
    NotFoundError,
    SessionExpiredError,
    ValidationError,
)
from spellbook.core.types import (
    ChunkingGuide,
    MetadataRules,
    RestSession,
    SearchResult,
    utc_now,
)

logger = logging.getLogger("Spellbook.Sessions")

DEFAULT_TIMEOUT_SECONDS = 3600
SESSION_PREFIX = "rest-"

CHUNKING_GUIDE_TOPIC = "chunking_principles"
METADATA_RULES_TOPIC = "metadata_rules"

DEFAULT_PRINCIPLES = [
    "Split into semantically independent units",
    "Keep the smallest unit that is understandable in context",
    "Each chunk should fully answer the questions it lists",
]
DEFAULT_QUESTION_GUIDELINES = [
    "Write questions this chunk can answer",
    "Make questions concrete and searchable",
]
DEFAULT_ENTITY_EXTRACTION = [
    "Extract technology, project and person names",
    "Always give the entity type",
]


def _find_guide(guides: List[SearchResult], topic_id: str) -> Optional[SearchResult]:
    for guide in guides:
        if guide.chunk.get("topic_id") == topic_id:
            return guide
    return None


def build_chunking_guide(guides: List[SearchResult]) -> ChunkingGuide:
    guide = _find_guide(guides, CHUNKING_GUIDE_TOPIC)
    if guide is None:
        return ChunkingGuide(principles=list(DEFAULT_PRINCIPLES))
    return ChunkingGuide(principles=[guide.chunk.get("text", "")])


def build_metadata_rules(guides: List[SearchResult]) -> MetadataRules:
    guide = _find_guide(guides, METADATA_RULES_TOPIC)
    if guide is None:
        return MetadataRules(
            question_guidelines=list(DEFAULT_QUESTION_GUIDELINES),
            entity_extraction=list(DEFAULT_ENTITY_EXTRACTION),
        )
    return MetadataRules(
        question_guidelines=[guide.chunk.get("text", "")],
        entity_extraction=["Classify entities by type"],
    )


class RestSessionManager:
    """
    Issues, validates and expires REST sessions.

    ``clock`` returns the current aware datetime; tests inject a fake one
    to move past expiry without sleeping.
    """

    def __init__(
        self,
        searcher,
        canon_collection: str,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        guide_scan_limit: int = 10,
    ):
        self.searcher = searcher
        self.canon_collection = canon_collection
        self.timeout = timedelta(seconds=timeout_seconds)
        self.clock = clock
        self.guide_scan_limit = guide_scan_limit
        self._sessions: Dict[str, RestSession] = {}

    async def start(self) -> Dict[str, Any]:
        """Open a session with a snapshot of the current chunking guidance."""
        guides = await self.searcher.get_by_category(
            self.canon_collection, "system", limit=self.guide_scan_limit
        )

        now = self.clock()
        session = RestSession(
            id=f"{SESSION_PREFIX}{uuid.uuid4()}",
            created_at=now,
            expires_at=now + self.timeout,
            chunking_guide=build_chunking_guide(guides),
            metadata_rules=build_metadata_rules(guides),
        )
        self._sessions[session.id] = session
        logger.info("REST session started: %s (expires %s)", session.id, session.expires_at.isoformat())

        return {
            "session_id": session.id,
            "chunking_guide": session.chunking_guide.model_dump(),
            "metadata_rules": session.metadata_rules.model_dump(),
            "expires_at": session.expires_at.isoformat(),
            "message": (
                "REST mode active; scribe is allowed. "
                f"Session expires at {session.expires_at.isoformat()}"
            ),
        }

    def end(self, session_id: str) -> int:
        """Close a session and return how many chunks it scribed."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f"REST session not found: {session_id}")
        logger.info("REST session ended: %s (%d scribed)", session_id, session.scribed_count)
        return session.scribed_count

    def validate(self, session_id: str) -> RestSession:
        if not session_id:
            raise ValidationError("session_id is required")

        session = self._sessions.get(session_id)
        if session is None:
            raise NotAuthorizedError("Not in REST mode. Call rest() first.")

        if self.clock() > session.expires_at:
            self._sessions.pop(session_id, None)
            logger.info("REST session expired: %s", session_id)
            raise SessionExpiredError("REST session expired. Call rest() again.")

        return session

    def record_activity(self, session_id: str) -> None:
        session = self.validate(session_id)
        session.scribed_count += 1

    def sweep_expired(self) -> int:
        now = self.clock()
        expired = [sid for sid, s in self._sessions.items() if now > s.expires_at]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Swept %d expired REST sessions", len(expired))
        return len(expired)

    def active_session_count(self) -> int:
        return len(self._sessions)
