"""Data models for meshshelf."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

CategoryValues = dict[str, str]


class ImportPhase(str, Enum):
    """Phase of the import state machine."""

    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    REVIEWING = "reviewing"


class ItemStatus(str, Enum):
    """Status of a row in the catalog items table."""

    PENDING = "pending"  # Staged by an import session, not yet reviewed
    CONFIRMED = "confirmed"  # Part of the library


class ErrorKind(str, Enum):
    """Where a per-item failure happened."""

    PROCESSING = "processing"
    STAGING = "staging"


def new_local_id() -> str:
    """Generate a session-local identifier for a content record."""
    return uuid.uuid4().hex


def format_size(size_bytes: int) -> str:
    """Human-readable size in megabytes, e.g. "1.2 MB"."""
    return f"{size_bytes / (1024 * 1024):.1f} MB"


@dataclass(frozen=True)
class CandidateItem:
    """A discovered file that has not been processed yet.

    Items dropped in as raw bytes have no absolute path and carry
    their content in ``data``.
    """

    relative_path: str
    size_bytes: int
    last_modified: int  # epoch milliseconds
    absolute_path: Path | None = None
    data: bytes | None = field(default=None, repr=False)

    @property
    def filename(self) -> str:
        """Last path component of the relative path."""
        return self.relative_path.rsplit("/", 1)[-1]


@dataclass
class ItemContent:
    """Processor output for one candidate item."""

    name: str
    original_filename: str
    categories: CategoryValues = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    preview: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContentRecord:
    """
    In-memory representation of one processed item.

    Created per item during processing with a session-local ``id``.
    By the time the record is exposed for review the id has been
    rewritten to the canonical catalog id.
    """

    id: str
    name: str
    original_filename: str
    relative_path: str
    size_bytes: int
    directory_id: str | None = None
    absolute_path: Path | None = None
    last_modified: int | None = None
    categories: CategoryValues = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    preview: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status: ItemStatus = ItemStatus.PENDING

    @property
    def size_display(self) -> str:
        """Human-readable size string."""
        return format_size(self.size_bytes)

    @classmethod
    def from_content(
        cls,
        candidate: CandidateItem,
        content: ItemContent,
        *,
        directory_id: str | None = None,
        local_id: str | None = None,
    ) -> ContentRecord:
        """Build a record for a processed candidate with a fresh local id."""
        return cls(
            id=local_id or new_local_id(),
            name=content.name,
            original_filename=content.original_filename,
            relative_path=candidate.relative_path,
            size_bytes=candidate.size_bytes,
            directory_id=directory_id,
            absolute_path=candidate.absolute_path,
            last_modified=candidate.last_modified,
            categories=dict(content.categories),
            tags=list(content.tags),
            preview=content.preview,
            metadata=dict(content.metadata),
        )

    def with_id(self, new_id: str) -> ContentRecord:
        """Copy of this record addressed by a different id."""
        if new_id == self.id:
            return self
        return replace(self, id=new_id)

    def copy(self) -> ContentRecord:
        """Copy with its own tags, categories and metadata containers."""
        return replace(
            self,
            categories=dict(self.categories),
            tags=list(self.tags),
            metadata=dict(self.metadata),
        )


@dataclass(frozen=True)
class ItemError:
    """A per-item failure kept for the review screen."""

    name: str
    cause: str
    kind: ErrorKind = ErrorKind.PROCESSING


@dataclass(frozen=True)
class ProgressEvent:
    """One per-item completion reported to the progress aggregator."""

    processed_delta: int = 0
    current_name: str | None = None
    error: ItemError | None = None


@dataclass(frozen=True)
class ProgressUpdate:
    """Aggregated progress emitted once per aggregation window."""

    processed_delta: int
    current_name: str | None
    new_errors: tuple[ItemError, ...] = ()


@dataclass(frozen=True)
class SessionState:
    """Observable snapshot of the import pipeline."""

    phase: ImportPhase = ImportPhase.IDLE
    processed: int = 0
    total: int = 0
    current_name: str | None = None
    errors: tuple[ItemError, ...] = ()
    records: tuple[ContentRecord, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.phase is not ImportPhase.IDLE


@dataclass(frozen=True)
class DirectoryEntry:
    """A directory registered in the catalog."""

    id: str
    name: str
    path: str
    added_at: int
    last_scanned_at: int | None = None
