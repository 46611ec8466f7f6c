"""Shared pytest fixtures and helpers for meshshelf tests."""

from __future__ import annotations

import struct
from collections.abc import Iterable
from pathlib import Path

import pytest

from meshshelf.catalog import CatalogStore
from meshshelf.env_settings import ImportEnvSettings
from meshshelf.exceptions import ItemProcessingError
from meshshelf.models import CandidateItem, ContentRecord, ItemContent


def make_candidate(
    relative_path: str = "model.stl",
    size_bytes: int = 1024,
    last_modified: int = 1_700_000_000_000,
    absolute_path: Path | None = None,
) -> CandidateItem:
    """Create a CandidateItem with sensible defaults."""
    return CandidateItem(
        relative_path=relative_path,
        size_bytes=size_bytes,
        last_modified=last_modified,
        absolute_path=absolute_path,
    )


def make_record(
    record_id: str = "local-1",
    relative_path: str = "model.stl",
    *,
    tags: list[str] | None = None,
    categories: dict[str, str] | None = None,
    imported_at: int = 1_700_000_000_000,
) -> ContentRecord:
    """Create a ContentRecord as a processor would produce it."""
    filename = relative_path.rsplit("/", 1)[-1]
    return ContentRecord(
        id=record_id,
        name=filename.rsplit(".", 1)[0],
        original_filename=filename,
        relative_path=relative_path,
        size_bytes=2048,
        last_modified=1_700_000_000_000,
        categories=categories or {},
        tags=tags or [],
        metadata={"imported_at": imported_at, "triangle_count": 12},
    )


def binary_stl(triangles: Iterable[tuple[tuple[float, float, float], ...]], header: bytes = b"") -> bytes:
    """Encode triangles ((v1, v2, v3) tuples) as a binary STL file."""
    tri_list = list(triangles)
    data = header.ljust(80, b"\x00")[:80] + struct.pack("<I", len(tri_list))
    for v1, v2, v3 in tri_list:
        data += struct.pack("<12fH", 0.0, 0.0, 0.0, *v1, *v2, *v3, 0)
    return data


def tetrahedron(size: float = 10.0) -> list[tuple[tuple[float, float, float], ...]]:
    """Closed tetrahedron with outward-facing triangles."""
    a = (0.0, 0.0, 0.0)
    b = (size, 0.0, 0.0)
    c = (0.0, size, 0.0)
    d = (0.0, 0.0, size)
    return [(a, c, b), (a, b, d), (a, d, c), (b, c, d)]


class FakeProcessor:
    """ItemProcessor double that fails for every relative path in ``fail``."""

    def __init__(self, fail: Iterable[str] = ()) -> None:
        self.fail = set(fail)
        self.calls: list[str] = []

    async def process(self, candidate: CandidateItem) -> ItemContent:
        self.calls.append(candidate.relative_path)
        if candidate.relative_path in self.fail:
            raise ItemProcessingError(candidate.filename, "corrupt mesh")
        return ItemContent(
            name=candidate.filename.rsplit(".", 1)[0],
            original_filename=candidate.filename,
            categories={"role": "prop"},
            tags=["auto"],
            metadata={"triangle_count": 4},
        )


@pytest.fixture
def store(tmp_path: Path) -> CatalogStore:
    """Catalog store on a temporary database file."""
    s = CatalogStore(tmp_path / "catalog.db")
    yield s
    s.close()


@pytest.fixture
def import_settings() -> ImportEnvSettings:
    """Import settings with immediate progress flushes."""
    return ImportEnvSettings(yield_every=5, flush_interval_ms=0, extensions=[".stl"])


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    """Directory tree with three STL files and one unrelated file."""
    root = tmp_path / "models"
    (root / "Creator" / "Set").mkdir(parents=True)
    data = binary_stl(tetrahedron())
    (root / "a_dragon.stl").write_bytes(data)
    (root / "Creator" / "Set" / "b_tower.stl").write_bytes(data)
    (root / "Creator" / "c_chest.STL").write_bytes(data)
    (root / "notes.txt").write_text("not a model")
    return root
