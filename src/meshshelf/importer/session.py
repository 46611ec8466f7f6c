"""In-memory context of one live import."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from meshshelf.importer.reconciliation import IdReconciliationMap
from meshshelf.models import ContentRecord, ItemError, new_local_id

logger = logging.getLogger(__name__)


@dataclass
class ImportSession:
    """
    State threaded through one scan -> review cycle.

    At most one session exists per orchestrator. ``session_id`` is written
    to every staged row so a cancel only ever deletes rows this session
    staged.
    """

    total: int
    directory_id: str | None = None
    session_id: str = field(default_factory=new_local_id)
    processed: int = 0
    cancelled: bool = False
    records: list[ContentRecord] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    failed_ids: set[str] = field(default_factory=set)
    id_map: IdReconciliationMap = field(default_factory=IdReconciliationMap)
    pending_writes: set[asyncio.Task[None]] = field(default_factory=set)
    loop_done: asyncio.Event = field(default_factory=asyncio.Event)

    def track_write(self, write: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        """Start a staging write without awaiting it."""
        task = asyncio.create_task(write)
        self.pending_writes.add(task)
        return task

    async def drain_writes(self) -> None:
        """Wait until every tracked write has finished.

        Writes started while waiting are picked up too. Failures the write
        coroutine did not handle itself are raised once everything settled.
        """
        unexpected: list[BaseException] = []
        while self.pending_writes:
            batch = list(self.pending_writes)
            results = await asyncio.gather(*batch, return_exceptions=True)
            self.pending_writes.difference_update(batch)
            for result in results:
                if isinstance(result, BaseException) and not isinstance(
                    result, asyncio.CancelledError
                ):
                    unexpected.append(result)
        if unexpected:
            logger.error("%d staging writes failed unexpectedly", len(unexpected))
            raise unexpected[0]

    @property
    def staged_count(self) -> int:
        return len(self.id_map)
