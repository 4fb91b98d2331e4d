"""
Spellbook Platform Helpers
--------------------------
Cross-platform data/log directory resolution via platformdirs.

``SPELLBOOK_DATA_DIR`` / ``SPELLBOOK_LOG_DIR`` override the platform defaults.
"""

import os
import sys
from pathlib import Path
from typing import Dict, Any

import platformdirs

_APP_NAME = "spellbook"


def _resolve_dir(env_var: str, default: str) -> Path:
    override = os.environ.get(env_var, "").strip()
    if override:
        return Path(override).expanduser()
    return Path(default)


def get_data_dir() -> Path:
    """Directory holding the instance lock and embedded Qdrant data."""
    return _resolve_dir("SPELLBOOK_DATA_DIR", platformdirs.user_data_dir(_APP_NAME, appauthor=False))


def get_log_dir() -> Path:
    return _resolve_dir("SPELLBOOK_LOG_DIR", platformdirs.user_log_dir(_APP_NAME, appauthor=False))


def get_platform_info() -> Dict[str, Any]:
    """Return platform diagnostic information for the health endpoint."""
    return {
        "os": sys.platform,
        "python": sys.version.split()[0],
        "data_dir": str(get_data_dir()),
        "log_dir": str(get_log_dir()),
    }
