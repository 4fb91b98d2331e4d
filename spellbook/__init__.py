"""
Spellbook: Semantic Chunk Memory with Named Lores
"""

from spellbook.core.errors import (
    NotAuthorizedError,
    NotFoundError,
    SessionExpiredError,
    SpellbookError,
    ValidationError,
)
from spellbook.version import __version__

__all__ = [
    "__version__",
    "Spellbook",
    "SpellbookConfig",
    "SpellbookError",
    "ValidationError",
    "NotFoundError",
    "NotAuthorizedError",
    "SessionExpiredError",
]


def __getattr__(name):
    if name == "Spellbook":
        from spellbook.core.engine import Spellbook
        return Spellbook
    if name == "SpellbookConfig":
        from spellbook.core.config import SpellbookConfig
        return SpellbookConfig
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
