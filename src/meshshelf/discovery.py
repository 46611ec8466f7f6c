"""
Model file discovery.

Walks a directory tree and returns every file with a wanted extension:

    Library/
    ├── CreatorName/
    │   └── Collection/
    │       ├── dragon_28mm.stl
    │       └── base.stl
    └── loose_model.stl

Relative paths always use "/" separators so they are stable catalog keys
across platforms. Unreadable directories and entries are logged and
skipped; the scan itself never fails because of one bad entry.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from pathlib import Path

from meshshelf.exceptions import ScanError
from meshshelf.models import CandidateItem

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (".stl",)


def _matches(name: str, extensions: tuple[str, ...]) -> bool:
    return name.lower().endswith(extensions)


def _walk(
    root: Path,
    extensions: tuple[str, ...],
    errors: list[ScanError],
) -> Iterable[tuple[os.DirEntry[str], str]]:
    """Yield (entry, relative_path) for matching files, depth first."""
    stack: list[tuple[Path, str]] = [(root, "")]
    while stack:
        directory, rel = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            err = ScanError(f"Cannot read directory {directory}: {e}", path=directory)
            logger.warning("%s", err)
            errors.append(err)
            continue

        subdirs: list[tuple[Path, str]] = []
        for entry in entries:
            rel_path = f"{rel}/{entry.name}" if rel else entry.name
            try:
                if entry.is_file() and _matches(entry.name, extensions):
                    yield entry, rel_path
                elif entry.is_dir(follow_symlinks=False):
                    subdirs.append((Path(entry.path), rel_path))
            except OSError as e:
                err = ScanError(f"Skipping {entry.path}: {e}", path=entry.path)
                logger.warning("%s", err)
                errors.append(err)
        # Reversed so the stack pops subdirectories in name order
        stack.extend(reversed(subdirs))


def scan_directory(
    root: Path | str,
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    *,
    errors: list[ScanError] | None = None,
) -> list[CandidateItem]:
    """
    Recursively find model files under a directory.

    Args:
        root: Directory to scan
        extensions: Lower-case suffixes to include (e.g. ".stl")
        errors: Optional list that collects skipped-entry errors

    Returns:
        Candidate items in scan order (sorted by path within each directory)
    """
    root_path = Path(root)
    exts = tuple(ext.lower() for ext in extensions)
    collected: list[ScanError] = errors if errors is not None else []
    results: list[CandidateItem] = []

    for entry, rel_path in _walk(root_path, exts, collected):
        try:
            stat = entry.stat()
        except OSError as e:
            err = ScanError(f"Cannot stat {entry.path}: {e}", path=entry.path)
            logger.warning("%s", err)
            collected.append(err)
            continue
        results.append(
            CandidateItem(
                relative_path=rel_path,
                absolute_path=Path(entry.path),
                size_bytes=stat.st_size,
                last_modified=int(stat.st_mtime * 1000),
            )
        )

    logger.info("Found %d model files in %s", len(results), root_path)
    if collected:
        logger.warning("Skipped %d unreadable entries in %s", len(collected), root_path)
    return results


def count_files(root: Path | str, extensions: Iterable[str] = DEFAULT_EXTENSIONS) -> int:
    """Count model files under a directory without stat-ing them."""
    exts = tuple(ext.lower() for ext in extensions)
    return sum(1 for _ in _walk(Path(root), exts, []))


def candidates_from_bytes(
    files: Iterable[tuple[str, bytes]],
    extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    *,
    last_modified: int | None = None,
) -> list[CandidateItem]:
    """Build candidates for files handed over as (filename, content) pairs.

    Files without a wanted extension are dropped.
    """
    exts = tuple(ext.lower() for ext in extensions)
    stamp = last_modified if last_modified is not None else int(time.time() * 1000)
    return [
        CandidateItem(
            relative_path=name,
            size_bytes=len(data),
            last_modified=stamp,
            data=data,
        )
        for name, data in files
        if _matches(name, exts)
    ]
