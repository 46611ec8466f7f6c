"""Staged import pipeline: scan, process, review, commit or discard."""

from meshshelf.importer.orchestrator import ImportOrchestrator
from meshshelf.importer.progress import ProgressAggregator
from meshshelf.importer.reconciliation import IdReconciliationMap
from meshshelf.importer.session import ImportSession

__all__ = [
    "IdReconciliationMap",
    "ImportOrchestrator",
    "ImportSession",
    "ProgressAggregator",
]
