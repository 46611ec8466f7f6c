"""Cross-platform path handling using platformdirs.

Provides XDG-compliant paths with environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from platformdirs import user_data_dir, user_log_dir

from meshshelf.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

APP_NAME = "meshshelf"
APPAUTHOR: Literal[False] = False  # Avoid "CompanyName/AppName" nesting on Windows

CATALOG_FILENAME = "catalog.db"


def _env_override(env_var: str) -> Path | None:
    """Check for environment variable override.

    Args:
        env_var: Environment variable name to check

    Returns:
        Path from environment variable if set, None otherwise
    """
    v = os.environ.get(env_var)
    return Path(v).expanduser() if v else None


def data_dir(*, ensure: bool = True) -> Path:
    """Get application data directory.

    Linux: ~/.local/share/meshshelf
    macOS: ~/Library/Application Support/meshshelf
    Windows: C:\\Users\\<user>\\AppData\\Local\\meshshelf

    Override with MESHSHELF_DATA_DIR env var.

    Args:
        ensure: Create directory if it doesn't exist

    Returns:
        Path to data directory
    """
    d = _env_override("MESHSHELF_DATA_DIR") or Path(user_data_dir(APP_NAME, APPAUTHOR))
    if ensure:
        d.mkdir(parents=True, exist_ok=True)
    return d


def log_dir(*, ensure: bool = True) -> Path:
    """Get application log directory.

    Override with MESHSHELF_LOG_DIR env var.
    """
    d = _env_override("MESHSHELF_LOG_DIR") or Path(user_log_dir(APP_NAME, APPAUTHOR))
    if ensure:
        d.mkdir(parents=True, exist_ok=True)
    return d


def catalog_db_path(configured: Path | None = None) -> Path:
    """Resolve the catalog database location.

    Args:
        configured: Explicit path from settings (wins over the default)

    Returns:
        Path to the SQLite catalog file (parent directory not created)

    Raises:
        ConfigurationError: If the configured path is a directory
    """
    if configured is not None:
        path = configured.expanduser()
        if path.is_dir():
            raise ConfigurationError(
                f"Catalog path {path} is a directory, expected a database file",
                field="db_path",
            )
        return path
    return data_dir() / CATALOG_FILENAME
