"""In-memory collection of confirmed catalog items."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from meshshelf.models import ContentRecord

if TYPE_CHECKING:
    from meshshelf.catalog.store import CatalogStore

logger = logging.getLogger(__name__)


class Library:
    """
    The caller's long-lived view of the catalog.

    Records are kept newest first. Adding a record whose id is already
    present replaces the old entry and moves it to the front.
    """

    def __init__(self, records: Iterable[ContentRecord] = ()) -> None:
        self._records: dict[str, ContentRecord] = {}
        for record in records:
            self._records[record.id] = record

    @classmethod
    def load(cls, store: CatalogStore) -> Library:
        """Build a library from every confirmed row in the store."""
        library = cls(store.list_confirmed())
        logger.debug("Loaded %d items into library", len(library))
        return library

    def add(self, records: Iterable[ContentRecord]) -> None:
        incoming = {r.id: r for r in records}
        if not incoming:
            return
        remaining = {k: v for k, v in self._records.items() if k not in incoming}
        self._records = {**incoming, **remaining}

    def get(self, item_id: str) -> ContentRecord | None:
        return self._records.get(item_id)

    def remove(self, item_id: str) -> bool:
        return self._records.pop(item_id, None) is not None

    @property
    def records(self) -> list[ContentRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ContentRecord]:
        return iter(self._records.values())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._records
