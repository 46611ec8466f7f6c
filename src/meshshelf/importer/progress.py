"""
Progress aggregation for the import loop.

Per-item completions arrive much faster than observers want to redraw.
``ProgressAggregator`` merges events into an accumulator and emits at
most one ``ProgressUpdate`` per aggregation window. A forced ``drain()``
at phase boundaries guarantees no event is lost.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from meshshelf.models import ItemError, ProgressEvent, ProgressUpdate

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressUpdate], None]


class ProgressAggregator:
    """Coalesce progress events into periodic batched updates.

    Must be used from inside a running event loop: ``report()`` schedules
    the flush on that loop.
    """

    def __init__(self, sink: ProgressSink, *, interval: float = 0.05) -> None:
        """
        Args:
            sink: Receives each aggregated update
            interval: Aggregation window in seconds (0 flushes on the next loop tick)
        """
        self._sink = sink
        self.interval = interval
        self._handle: asyncio.Handle | asyncio.TimerHandle | None = None
        self._reset()

    def _reset(self) -> None:
        self._processed_delta = 0
        self._current_name: str | None = None
        self._new_errors: list[ItemError] = []
        self._dirty = False

    @property
    def scheduled(self) -> bool:
        """True if a flush is waiting on the event loop."""
        return self._handle is not None

    def report(self, event: ProgressEvent) -> None:
        """Merge one event and make sure a flush is scheduled."""
        self._processed_delta += event.processed_delta
        if event.current_name is not None:
            self._current_name = event.current_name
        if event.error is not None:
            self._new_errors.append(event.error)
        self._dirty = True

        if self._handle is None:
            loop = asyncio.get_running_loop()
            if self.interval > 0:
                self._handle = loop.call_later(self.interval, self.flush)
            else:
                self._handle = loop.call_soon(self.flush)

    def flush(self) -> ProgressUpdate | None:
        """Emit one update with everything accumulated so far, then reset."""
        self._handle = None
        if not self._dirty:
            return None
        update = ProgressUpdate(
            processed_delta=self._processed_delta,
            current_name=self._current_name,
            new_errors=tuple(self._new_errors),
        )
        self._reset()
        self._sink(update)
        return update

    def drain(self) -> ProgressUpdate | None:
        """Cancel any scheduled flush and flush synchronously."""
        self._cancel_handle()
        return self.flush()

    def discard(self) -> None:
        """Cancel any scheduled flush and drop what has accumulated."""
        self._cancel_handle()
        if self._dirty:
            logger.debug("Discarding %d unreported progress items", self._processed_delta)
        self._reset()

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
