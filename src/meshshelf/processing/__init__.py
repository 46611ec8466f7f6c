"""Item processing: STL analysis, filename tags and auto-classification."""

from meshshelf.processing.classifier import CATEGORY_IDS, classify_file
from meshshelf.processing.processor import (
    ItemProcessor,
    PrintSettings,
    StlItemProcessor,
    estimate_weight,
)
from meshshelf.processing.stl import MeshStats, analyze_stl
from meshshelf.processing.tokenizer import display_name, tokenize_filename

__all__ = [
    "CATEGORY_IDS",
    "ItemProcessor",
    "MeshStats",
    "PrintSettings",
    "StlItemProcessor",
    "analyze_stl",
    "classify_file",
    "display_name",
    "estimate_weight",
    "tokenize_filename",
]
