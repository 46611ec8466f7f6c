"""Session-scoped mapping from local record ids to canonical catalog ids."""

from __future__ import annotations

from collections.abc import Iterator

from meshshelf.exceptions import ReconciliationError


class IdReconciliationMap:
    """
    Local id -> canonical id, written once per successfully staged item.

    Lookups for ids with no entry return the id unchanged: the catalog
    accepted it as-is, or it already is a canonical id.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def record(self, local_id: str, canonical_id: str) -> None:
        """Store the canonical id for a local id.

        Raises:
            ReconciliationError: If the local id already maps elsewhere
        """
        existing = self._entries.get(local_id)
        if existing is not None and existing != canonical_id:
            raise ReconciliationError(local_id, existing, canonical_id)
        self._entries[local_id] = canonical_id

    def resolve(self, local_id: str) -> str:
        return self._entries.get(local_id, local_id)

    def canonical_ids(self) -> list[str]:
        """Distinct canonical ids, in the order they were recorded."""
        return list(dict.fromkeys(self._entries.values()))

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)
