"""
Item processors: turn one candidate file into catalog content.

The import pipeline only depends on the ``ItemProcessor`` protocol.
``StlItemProcessor`` is the default implementation for STL meshes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from meshshelf.exceptions import ItemProcessingError, PathPolicyError
from meshshelf.models import CandidateItem, ItemContent
from meshshelf.path_policy import PathPolicy
from meshshelf.processing.classifier import classify_file
from meshshelf.processing.stl import analyze_stl
from meshshelf.processing.tokenizer import display_name, tokenize_filename

logger = logging.getLogger(__name__)

# g/cm3
MATERIAL_DENSITY: dict[str, float] = {
    "PLA": 1.24,
    "ABS": 1.04,
    "PETG": 1.27,
    "TPU": 1.21,
    "Nylon": 1.14,
    "Resin": 1.15,
}


@dataclass(frozen=True)
class PrintSettings:
    """Material assumptions for the print weight estimate."""

    material: str = "PLA"
    infill_percent: int = 20


def estimate_weight(volume_mm3: float | None, settings: PrintSettings) -> float | None:
    """Estimated filament weight in grams, None when volume is unknown."""
    if volume_mm3 is None:
        return None
    density = MATERIAL_DENSITY.get(settings.material, MATERIAL_DENSITY["PLA"])
    volume_cm3 = volume_mm3 / 1000
    return round(volume_cm3 * (settings.infill_percent / 100) * density, 1)


@runtime_checkable
class ItemProcessor(Protocol):
    """Decodes one candidate into content, or raises ItemProcessingError."""

    async def process(self, candidate: CandidateItem) -> ItemContent: ...


class StlItemProcessor:
    """Default processor for STL files.

    Reads the file in a worker thread, analyses the mesh, tokenizes the
    filename and classifies the model. Preview rendering belongs to the
    presentation layer, so ``preview`` is left empty.
    """

    def __init__(
        self,
        *,
        path_policy: PathPolicy | None = None,
        print_settings: PrintSettings | None = None,
    ) -> None:
        self.path_policy = path_policy
        self.print_settings = print_settings or PrintSettings()

    async def _read(self, candidate: CandidateItem) -> bytes:
        if candidate.data is not None:
            return candidate.data
        if candidate.absolute_path is None:
            raise ItemProcessingError(candidate.filename, "No file path or content available")
        path = candidate.absolute_path
        if self.path_policy is not None:
            try:
                path = self.path_policy.validate_path(path, require_extension=".stl")
            except PathPolicyError as e:
                raise ItemProcessingError(candidate.filename, e) from e
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ItemProcessingError(candidate.filename, e) from e

    async def process(self, candidate: CandidateItem) -> ItemContent:
        filename = candidate.filename
        data = await self._read(candidate)
        try:
            stats = analyze_stl(data)
        except (ValueError, OverflowError) as e:
            raise ItemProcessingError(filename, e) from e

        tokens = tokenize_filename(filename)
        categories = classify_file(candidate.relative_path, filename, tokens, stats.dimensions)
        volume_cm3 = round(stats.volume / 1000, 2) if stats.volume is not None else None

        metadata = {
            **stats.to_dict(),
            "original_filename": filename,
            "suggested_tags": tokens,
            "imported_at": int(time.time() * 1000),
            "last_modified": candidate.last_modified,
            "file_size": candidate.size_bytes,
            "print_estimate": {
                "volume_cm3": volume_cm3,
                "estimated_grams": estimate_weight(stats.volume, self.print_settings),
            },
        }
        logger.debug("Processed %s: %d triangles", filename, stats.triangle_count)
        return ItemContent(
            name=display_name(filename),
            original_filename=filename,
            categories=categories,
            tags=[],
            preview=None,
            metadata=metadata,
        )
