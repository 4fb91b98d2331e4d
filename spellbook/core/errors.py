"""
Spellbook Errors
----------------
Exception taxonomy shared by every core component.

Core components raise these; the tool layer (``spellbook.core.engine``) and
the chunk write path convert them into structured ``{status, message}``
outcomes so nothing escapes past the outer protocol boundary.
"""

from __future__ import annotations

from typing import Optional


class SpellbookError(RuntimeError):
    """Base class for all Spellbook errors."""


class ValidationError(SpellbookError):
    """Malformed input, rejected before any external call."""


class NotFoundError(SpellbookError):
    """A session, chunk or Lore that the caller referenced does not exist."""


class NotAuthorizedError(SpellbookError):
    """A mutation was attempted without an active REST session."""


class SessionExpiredError(SpellbookError):
    """The REST session passed its expiry and has been discarded."""


class ConfigError(SpellbookError):
    """Invalid process configuration."""


class EmbeddingError(SpellbookError):
    """The embedding endpoint returned an unusable response."""

    def __init__(self, detail: str, *, hint: Optional[str] = None) -> None:
        self.detail = detail
        self.hint = hint
        message = f"{detail}\n{hint}" if hint else detail
        super().__init__(message)


class EmbeddingUnavailableError(EmbeddingError):
    """The embedding endpoint could not be reached."""


class EmbeddingModelNotFoundError(EmbeddingError):
    """The configured embedding model is unknown to the endpoint."""
