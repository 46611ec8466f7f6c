"""SQLite catalog of imported model files.

Holds both confirmed library items and the pending rows staged by an
import session. Staging is an idempotent upsert keyed on
(directory_id, relative_path), or relative_path alone for loose files
without a directory; confirm and cancel are single
transactions addressed by canonical item ids.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from meshshelf.env_settings import CatalogEnvSettings, get_env_settings
from meshshelf.exceptions import OperationFailure, StagingWriteError, StoreError
from meshshelf.models import CategoryValues, ContentRecord, DirectoryEntry, ItemStatus
from meshshelf.paths import catalog_db_path

logger = logging.getLogger(__name__)

# Bump to drop and rebuild the catalog tables
SCHEMA_VERSION = 4

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS catalog_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS directories (
    id               TEXT PRIMARY KEY,
    name             TEXT NOT NULL,
    path             TEXT NOT NULL UNIQUE,
    added_at         INTEGER NOT NULL,
    last_scanned_at  INTEGER
);

CREATE TABLE IF NOT EXISTS items (
    id                 TEXT PRIMARY KEY,
    directory_id       TEXT REFERENCES directories(id) ON DELETE CASCADE,
    relative_path      TEXT NOT NULL,
    name               TEXT NOT NULL,
    original_filename  TEXT NOT NULL,
    full_path          TEXT,
    size_bytes         INTEGER NOT NULL,
    size_display       TEXT NOT NULL,
    preview            TEXT,
    status             TEXT NOT NULL DEFAULT 'confirmed',  -- "pending" | "confirmed"
    session_id         TEXT,                               -- last session that staged the row
    imported_at        INTEGER NOT NULL,
    last_modified      INTEGER,
    metadata_json      TEXT,
    UNIQUE(directory_id, relative_path)
);

CREATE TABLE IF NOT EXISTS tags (
    item_id  TEXT REFERENCES items(id) ON DELETE CASCADE,
    tag      TEXT NOT NULL,
    PRIMARY KEY (item_id, tag)
);

CREATE TABLE IF NOT EXISTS category_values (
    item_id      TEXT REFERENCES items(id) ON DELETE CASCADE,
    category_id  TEXT NOT NULL,
    value        TEXT NOT NULL,
    PRIMARY KEY (item_id, category_id)
);

CREATE INDEX IF NOT EXISTS idx_items_directory ON items(directory_id);
CREATE INDEX IF NOT EXISTS idx_items_status ON items(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_items_loose_path ON items(relative_path)
    WHERE directory_id IS NULL;
CREATE INDEX IF NOT EXISTS idx_tags_tag ON tags(tag);
CREATE INDEX IF NOT EXISTS idx_catval_category ON category_values(category_id, value);
"""

DROP_SQL = """
DROP TABLE IF EXISTS tags;
DROP TABLE IF EXISTS category_values;
DROP TABLE IF EXISTS items;
DROP TABLE IF EXISTS directories;
DROP TABLE IF EXISTS catalog_meta;
"""

# The status expression never downgrades a confirmed row. Loose files
# (NULL directory_id) conflict on the partial index instead.
_STAGE_UPDATE = """DO UPDATE SET
    full_path = excluded.full_path,
    size_bytes = excluded.size_bytes,
    size_display = excluded.size_display,
    preview = excluded.preview,
    last_modified = excluded.last_modified,
    metadata_json = excluded.metadata_json,
    status = CASE WHEN items.status = 'confirmed' THEN 'confirmed' ELSE excluded.status END,
    session_id = CASE WHEN items.status = 'confirmed' THEN items.session_id
                      ELSE excluded.session_id END"""

STAGE_SQL = f"""
INSERT INTO items (
    id, directory_id, relative_path, name, original_filename, full_path,
    size_bytes, size_display, preview, status, session_id, imported_at,
    last_modified, metadata_json
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(directory_id, relative_path) {_STAGE_UPDATE}
ON CONFLICT(relative_path) WHERE directory_id IS NULL {_STAGE_UPDATE}
RETURNING id, status
"""

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds
_MAX_PARAMS = 500


def _now_ms() -> int:
    return int(time.time() * 1000)


def _chunks(ids: list[str], size: int = _MAX_PARAMS) -> Iterator[list[str]]:
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


class CatalogStore:
    """SQLite catalog of model files.

    Note:
        One connection is shared by all callers. It is opened with
        ``check_same_thread=False`` because the import pipeline calls
        into the store from worker threads (``asyncio.to_thread``);
        every operation holds ``self._lock`` for its whole transaction.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (created if not exists),
                or ":memory:" for a throwaway catalog
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if isinstance(self.db_path, Path):
                conn.execute("PRAGMA journal_mode = WAL")
            self._conn = conn
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        """Create the schema, rebuilding it if the stored version is older."""
        conn = self._conn
        if conn is None:
            return

        current = 0
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='catalog_meta'"
        )
        if cursor.fetchone() is not None:
            row = conn.execute(
                "SELECT value FROM catalog_meta WHERE key = 'schema_version'"
            ).fetchone()
            current = int(row[0]) if row else 0

        if current >= SCHEMA_VERSION:
            return

        if current:
            logger.warning(
                "Catalog schema version %d is older than %d, rebuilding", current, SCHEMA_VERSION
            )
        conn.executescript(DROP_SQL)
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO catalog_meta (key, value) VALUES (?, ?)",
            ("schema_version", str(SCHEMA_VERSION)),
        )
        conn.commit()
        logger.info("Created catalog schema version %d", SCHEMA_VERSION)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the store lock and commit (or roll back) one transaction."""
        with self._lock:
            conn = self._get_conn()
            with conn:
                yield conn

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> CatalogStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Staging ===

    def stage(
        self,
        record: ContentRecord,
        directory_id: str | None,
        *,
        session_id: str | None = None,
    ) -> str:
        """Upsert a record as pending and return its canonical id.

        On a (directory_id, relative_path) conflict the existing row keeps
        its id and its status if already confirmed; content fields are
        refreshed either way. Tags and categories are only replaced while
        the row is still pending, so user edits on confirmed rows survive
        a re-scan.

        Args:
            record: Processed record addressed by its session-local id
            directory_id: Parent directory id, None for dropped files
            session_id: Import session staging the row

        Returns:
            The id of the row in the catalog

        Raises:
            StagingWriteError: The row could not be written
        """
        metadata_json = json.dumps(record.metadata) if record.metadata else None
        imported_at = record.metadata.get("imported_at") or _now_ms()
        params = (
            record.id,
            directory_id,
            record.relative_path,
            record.name,
            record.original_filename,
            str(record.absolute_path) if record.absolute_path else None,
            record.size_bytes,
            record.size_display,
            record.preview,
            ItemStatus.PENDING.value,
            session_id,
            imported_at,
            record.last_modified,
            metadata_json,
        )
        try:
            with self._transaction() as conn:
                row = conn.execute(STAGE_SQL, params).fetchall()[0]
                canonical_id: str = row["id"]
                if row["status"] == ItemStatus.PENDING.value:
                    self._replace_tags(conn, canonical_id, record.tags)
                    self._replace_categories(conn, canonical_id, record.categories)
        except sqlite3.Error as e:
            raise StagingWriteError(
                f"Failed to stage {record.relative_path}: {e}",
                relative_path=record.relative_path,
            ) from e

        if canonical_id != record.id:
            logger.debug("Staged %s onto existing row %s", record.relative_path, canonical_id)
        return canonical_id

    def confirm_batch(self, ids: Iterable[str]) -> int:
        """Mark rows as confirmed in one transaction.

        Unknown ids are ignored, so confirming twice is a no-op.

        Returns:
            Number of rows that changed status

        Raises:
            OperationFailure: The transaction failed
        """
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return 0
        changed = 0
        try:
            with self._transaction() as conn:
                for chunk in _chunks(id_list):
                    placeholders = ",".join("?" * len(chunk))
                    cursor = conn.execute(
                        f"UPDATE items SET status = 'confirmed' "
                        f"WHERE status = 'pending' AND id IN ({placeholders})",
                        chunk,
                    )
                    changed += cursor.rowcount
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to confirm {len(id_list)} items: {e}", ids=id_list, operation="confirm"
            ) from e
        logger.info("Confirmed %d of %d staged items", changed, len(id_list))
        return changed

    def cancel_batch(
        self,
        ids: Iterable[str] | None = None,
        *,
        session_id: str | None = None,
    ) -> int:
        """Delete pending rows in one transaction.

        Args:
            ids: Canonical ids to delete. None deletes every pending row
                (administrative cleanup); an empty collection deletes nothing.
            session_id: Only delete rows last staged by this session

        Returns:
            Number of rows deleted

        Raises:
            OperationFailure: The transaction failed
        """
        id_list = None if ids is None else list(dict.fromkeys(ids))
        if id_list is not None and not id_list:
            return 0

        session_clause = " AND session_id = ?" if session_id is not None else ""
        session_params = [session_id] if session_id is not None else []
        deleted = 0
        try:
            with self._transaction() as conn:
                if id_list is None:
                    cursor = conn.execute(
                        f"DELETE FROM items WHERE status = 'pending'{session_clause}",
                        session_params,
                    )
                    deleted = cursor.rowcount
                else:
                    for chunk in _chunks(id_list):
                        placeholders = ",".join("?" * len(chunk))
                        cursor = conn.execute(
                            f"DELETE FROM items WHERE status = 'pending' "
                            f"AND id IN ({placeholders}){session_clause}",
                            [*chunk, *session_params],
                        )
                        deleted += cursor.rowcount
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to discard pending items: {e}", ids=id_list, operation="cancel"
            ) from e
        if id_list is None:
            logger.warning("Discarded all %d pending items", deleted)
        else:
            logger.info("Discarded %d pending items", deleted)
        return deleted

    def list_confirmed(self) -> list[ContentRecord]:
        """All confirmed items, newest first."""
        with self._lock:
            conn = self._get_conn()
            rows = conn.execute(
                "SELECT * FROM items WHERE status = 'confirmed' ORDER BY imported_at DESC"
            ).fetchall()
            return [self._row_to_record(conn, row) for row in rows]

    def list_pending(self) -> list[ContentRecord]:
        """All pending items, oldest first."""
        with self._lock:
            conn = self._get_conn()
            rows = conn.execute(
                "SELECT * FROM items WHERE status = 'pending' ORDER BY imported_at"
            ).fetchall()
            return [self._row_to_record(conn, row) for row in rows]

    # === Item maintenance ===

    def get_item(self, item_id: str) -> ContentRecord | None:
        """Get one item by id regardless of status."""
        with self._lock:
            conn = self._get_conn()
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_record(conn, row)

    def update_item(
        self,
        item_id: str,
        *,
        tags: list[str] | None = None,
        categories: CategoryValues | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Update user-editable fields of one item.

        Metadata is merged into the stored metadata, tags and categories
        replace the stored values.

        Returns:
            False if the item does not exist
        """
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT metadata_json FROM items WHERE id = ?", (item_id,)
                ).fetchone()
                if row is None:
                    return False
                if tags is not None:
                    self._replace_tags(conn, item_id, tags)
                if categories is not None:
                    self._replace_categories(conn, item_id, categories)
                if metadata:
                    existing = json.loads(row["metadata_json"]) if row["metadata_json"] else {}
                    existing.update(metadata)
                    conn.execute(
                        "UPDATE items SET metadata_json = ? WHERE id = ?",
                        (json.dumps(existing), item_id),
                    )
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to update item {item_id}: {e}", ids=[item_id], operation="update"
            ) from e
        return True

    def delete_item(self, item_id: str) -> None:
        """Delete one item regardless of status."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM items WHERE id = ?", (item_id,))

    def get_category_values(self, item_id: str) -> CategoryValues:
        with self._lock:
            return self._load_categories(self._get_conn(), item_id)

    def set_category_values(self, item_id: str, categories: CategoryValues) -> None:
        with self._transaction() as conn:
            self._replace_categories(conn, item_id, categories)

    def bulk_set_category_value(self, item_ids: Iterable[str], category_id: str, value: str) -> None:
        """Set one category to the same value on many items."""
        try:
            with self._transaction() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO category_values (item_id, category_id, value) "
                    "VALUES (?, ?, ?)",
                    [(item_id, category_id, value) for item_id in item_ids],
                )
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to set category {category_id}: {e}", operation="bulk_update"
            ) from e

    def bulk_set_category_values(self, entries: Iterable[tuple[str, CategoryValues]]) -> None:
        """Upsert category values for many items in one transaction.

        Empty values are skipped, existing categories not mentioned are kept.
        """
        rows = [
            (item_id, category_id, value)
            for item_id, categories in entries
            for category_id, value in categories.items()
            if value
        ]
        if not rows:
            return
        try:
            with self._transaction() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO category_values (item_id, category_id, value) "
                    "VALUES (?, ?, ?)",
                    rows,
                )
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to update categories: {e}", operation="bulk_update"
            ) from e

    def bulk_update_attributes(self, records: Iterable[ContentRecord]) -> int:
        """Write reviewed tags and categories for many items in one transaction.

        Records must already be addressed by canonical id.

        Returns:
            Number of records written

        Raises:
            OperationFailure: The transaction failed
        """
        record_list = list(records)
        if not record_list:
            return 0
        try:
            with self._transaction() as conn:
                for record in record_list:
                    self._replace_tags(conn, record.id, record.tags)
                    self._replace_categories(conn, record.id, record.categories)
        except sqlite3.Error as e:
            raise OperationFailure(
                f"Failed to apply review edits: {e}",
                ids=[r.id for r in record_list],
                operation="bulk_update",
            ) from e
        return len(record_list)

    # === Directories ===

    def save_directory(self, path: Path | str, name: str | None = None) -> DirectoryEntry:
        """Register a directory and return its canonical row.

        Re-registering a known path keeps the existing id (so staged rows
        keep resolving to the same parent) and refreshes last_scanned_at.
        """
        path_str = str(path)
        dir_name = name or Path(path_str).name or path_str
        now = _now_ms()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO directories (id, name, path, added_at, last_scanned_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET last_scanned_at = excluded.last_scanned_at
                """,
                (uuid.uuid4().hex, dir_name, path_str, now, now),
            )
            row = conn.execute("SELECT * FROM directories WHERE path = ?", (path_str,)).fetchone()
        return self._row_to_directory(row)

    def list_directories(self) -> list[DirectoryEntry]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM directories ORDER BY added_at DESC"
            ).fetchall()
        return [self._row_to_directory(row) for row in rows]

    def delete_directory(self, directory_id: str) -> None:
        """Delete a directory and (by cascade) every item under it."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM directories WHERE id = ?", (directory_id,))

    # === Helpers ===

    @staticmethod
    def _replace_tags(conn: sqlite3.Connection, item_id: str, tags: Iterable[str]) -> None:
        conn.execute("DELETE FROM tags WHERE item_id = ?", (item_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO tags (item_id, tag) VALUES (?, ?)",
            [(item_id, tag) for tag in tags],
        )

    @staticmethod
    def _replace_categories(
        conn: sqlite3.Connection, item_id: str, categories: CategoryValues
    ) -> None:
        conn.execute("DELETE FROM category_values WHERE item_id = ?", (item_id,))
        conn.executemany(
            "INSERT OR REPLACE INTO category_values (item_id, category_id, value) VALUES (?, ?, ?)",
            [(item_id, cat, value) for cat, value in categories.items() if value],
        )

    @staticmethod
    def _load_categories(conn: sqlite3.Connection, item_id: str) -> CategoryValues:
        rows = conn.execute(
            "SELECT category_id, value FROM category_values WHERE item_id = ?", (item_id,)
        )
        return {row["category_id"]: row["value"] for row in rows}

    def _row_to_record(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ContentRecord:
        tags = [
            r["tag"]
            for r in conn.execute("SELECT tag FROM tags WHERE item_id = ? ORDER BY tag", (row["id"],))
        ]
        return ContentRecord(
            id=row["id"],
            name=row["name"],
            original_filename=row["original_filename"],
            relative_path=row["relative_path"],
            size_bytes=row["size_bytes"],
            directory_id=row["directory_id"],
            absolute_path=Path(row["full_path"]) if row["full_path"] else None,
            last_modified=row["last_modified"],
            categories=self._load_categories(conn, row["id"]),
            tags=tags,
            preview=row["preview"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
            status=ItemStatus(row["status"]),
        )

    @staticmethod
    def _row_to_directory(row: sqlite3.Row | None) -> DirectoryEntry:
        if row is None:
            raise StoreError("Directory row vanished during save", operation="save_directory")
        return DirectoryEntry(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            added_at=row["added_at"],
            last_scanned_at=row["last_scanned_at"],
        )


def open_catalog(settings: CatalogEnvSettings | None = None) -> CatalogStore:
    """Open the catalog at the configured location (default: user data dir)."""
    settings = settings or get_env_settings().catalog
    db_path = catalog_db_path(settings.db_path)
    logger.debug("Opening catalog at %s", db_path)
    return CatalogStore(db_path)
