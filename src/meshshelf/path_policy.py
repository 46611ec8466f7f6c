"""
Filesystem path policy.

Keeps a set of approved root directories. Scans and file reads validate
the requested path against this set before touching the filesystem.

Approved roots are stored in canonical (resolved) form when registered.
Requested paths are resolved at validation time, not cached, because
symlink targets can change after a root is approved.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from meshshelf.exceptions import PathPolicyError
from meshshelf.models import DirectoryEntry

logger = logging.getLogger(__name__)


class PathPolicy:
    """Allow-list of directories the importer may read from."""

    def __init__(self, roots: Iterable[Path | str] = ()) -> None:
        self._roots: set[Path] = set()
        for root in roots:
            self.add_approved_root(root)

    @property
    def roots(self) -> frozenset[Path]:
        return frozenset(self._roots)

    def add_approved_root(self, directory: Path | str) -> Path:
        """Canonicalize a directory and approve it.

        A directory that no longer exists (e.g. seeded from the catalog
        after deletion) is stored in absolute but unresolved form.
        """
        path = Path(directory).expanduser()
        try:
            canonical = path.resolve(strict=True)
        except OSError:
            canonical = path.absolute()
        self._roots.add(canonical)
        return canonical

    def seed_from_directories(self, directories: Iterable[DirectoryEntry]) -> None:
        """Approve every directory already registered in the catalog."""
        for entry in directories:
            self.add_approved_root(entry.path)

    def clear(self) -> None:
        self._roots.clear()

    def validate_path(
        self,
        requested: Path | str,
        *,
        require_extension: str | None = None,
    ) -> Path:
        """Validate that a path lies within an approved root.

        Args:
            requested: Path to check
            require_extension: Required suffix (case-insensitive), e.g. ".stl"

        Returns:
            The canonical path

        Raises:
            PathPolicyError: If the path is outside every approved root,
                cannot be resolved, or has the wrong extension
        """
        path = Path(requested)
        if require_extension and path.suffix.lower() != require_extension.lower():
            msg = f"Extension {path.suffix!r} not allowed (required: {require_extension})"
            logger.error("Path policy denied %s: %s", path, msg)
            raise PathPolicyError(msg, path=path)

        try:
            canonical = path.expanduser().resolve(strict=True)
        except OSError as e:
            logger.error("Path policy denied %s: cannot resolve (%s)", path, e)
            raise PathPolicyError(f"Cannot resolve path {path}: {e}", path=path) from e

        for root in self._roots:
            if canonical == root or canonical.is_relative_to(root):
                return canonical

        logger.error("Path policy denied %s: not within any approved root", canonical)
        raise PathPolicyError(f"Path {canonical} is not within any approved root", path=canonical)
