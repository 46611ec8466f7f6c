"""
Import orchestrator: the staged-import state machine.

    idle -> scanning -> processing -> finalizing -> reviewing -> idle

cancel() returns to idle from any of the active phases.

Each item is processed in scan order. A successful item is buffered for
review and its staging write is dispatched as a background task; per-item
failures are collected and never end the session. Writes are joined at
the end of processing and again before confirm or cancel, so neither
ever acts on a half-staged batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from pathlib import Path

from meshshelf.catalog.store import CatalogStore
from meshshelf.discovery import scan_directory
from meshshelf.env_settings import ImportEnvSettings, get_env_settings
from meshshelf.exceptions import (
    InvalidPhaseError,
    ItemProcessingError,
    SessionActiveError,
    StagingWriteError,
)
from meshshelf.importer.progress import ProgressAggregator
from meshshelf.importer.session import ImportSession
from meshshelf.library import Library
from meshshelf.models import (
    CandidateItem,
    ContentRecord,
    ErrorKind,
    ImportPhase,
    ItemError,
    ItemStatus,
    ProgressEvent,
    ProgressUpdate,
    SessionState,
)
from meshshelf.path_policy import PathPolicy
from meshshelf.processing.processor import ItemProcessor, StlItemProcessor

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]
Walker = Callable[[Path, Sequence[str]], list[CandidateItem]]


class ImportOrchestrator:
    """Drives one import session at a time against a catalog store.

    Example:
        orchestrator = ImportOrchestrator(store, library=library)
        unsubscribe = orchestrator.subscribe(print)
        await orchestrator.start_scan("~/models")
        await orchestrator.confirm(orchestrator.state.records)
    """

    def __init__(
        self,
        store: CatalogStore,
        processor: ItemProcessor | None = None,
        *,
        library: Library | None = None,
        path_policy: PathPolicy | None = None,
        settings: ImportEnvSettings | None = None,
        walker: Walker = scan_directory,
    ) -> None:
        settings = settings or get_env_settings().importer
        self.store = store
        self.path_policy = path_policy
        self.processor = processor or StlItemProcessor(path_policy=path_policy)
        self.library = library
        self.yield_every = settings.yield_every
        self.extensions: tuple[str, ...] = tuple(settings.extensions)
        self._walker = walker
        self._aggregator = ProgressAggregator(self._apply_progress, interval=settings.flush_interval)
        self._listeners: list[StateListener] = []

        self._phase = ImportPhase.IDLE
        self._session: ImportSession | None = None
        self._scan_cancelled = False
        self._processed_seen = 0
        self._current_name: str | None = None
        self._errors_seen: list[ItemError] = []
        self._review_records: tuple[ContentRecord, ...] = ()

    # === Observation ===

    @property
    def phase(self) -> ImportPhase:
        return self._phase

    @property
    def session(self) -> ImportSession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        """Snapshot of what observers are allowed to see.

        Review records are copies: edits made on them only reach the
        catalog when passed back to confirm().
        """
        total = self._session.total if self._session is not None else 0
        records: tuple[ContentRecord, ...] = ()
        if self._phase is ImportPhase.REVIEWING:
            records = tuple(record.copy() for record in self._review_records)
        return SessionState(
            phase=self._phase,
            processed=self._processed_seen,
            total=total,
            current_name=self._current_name,
            errors=tuple(self._errors_seen),
            records=records,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener. Returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    def _set_phase(self, phase: ImportPhase) -> None:
        logger.debug("Import phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self._notify()

    def _apply_progress(self, update: ProgressUpdate) -> None:
        if self._session is None:
            return
        self._processed_seen += update.processed_delta
        if update.current_name is not None:
            self._current_name = update.current_name
        self._errors_seen.extend(update.new_errors)
        self._notify()

    def _reset(self) -> None:
        self._aggregator.discard()
        self._session = None
        self._scan_cancelled = False
        self._processed_seen = 0
        self._current_name = None
        self._errors_seen = []
        self._review_records = ()
        self._set_phase(ImportPhase.IDLE)

    def _ensure_idle(self) -> None:
        if self._phase is not ImportPhase.IDLE:
            raise SessionActiveError(
                f"An import is already {self._phase.value}", phase=self._phase.value
            )

    # === Entry points ===

    async def start_scan(self, directory: Path | str) -> SessionState:
        """Scan a directory and import every matching file for review.

        Raises:
            SessionActiveError: Another import is live
            PathPolicyError: The directory was rejected
        """
        self._ensure_idle()
        self._set_phase(ImportPhase.SCANNING)
        try:
            root = Path(directory).expanduser()
            if self.path_policy is not None:
                root = self.path_policy.add_approved_root(root)
            candidates = await asyncio.to_thread(self._walker, root, self.extensions)
            if self._scan_cancelled:
                logger.info("Scan of %s cancelled", root)
                self._reset()
                return self.state
            if not candidates:
                logger.info("No model files found in %s", root)
                self._reset()
                return self.state
            entry = await asyncio.to_thread(self.store.save_directory, root)
        except Exception:
            self._reset()
            raise
        if self._scan_cancelled:
            self._reset()
            return self.state

        logger.info("Importing %d files from %s", len(candidates), root)
        await self._run(candidates, directory_id=entry.id)
        return self.state

    async def import_files(self, candidates: Iterable[CandidateItem]) -> SessionState:
        """Import loose files that have no parent directory.

        Candidates without a configured extension are dropped first.
        """
        self._ensure_idle()
        wanted = [c for c in candidates if c.relative_path.lower().endswith(self.extensions)]
        if not wanted:
            logger.info("No importable files among dropped items")
            return self.state
        logger.info("Importing %d dropped files", len(wanted))
        await self._run(wanted, directory_id=None)
        return self.state

    # === Pipeline ===

    async def _run(self, candidates: Sequence[CandidateItem], *, directory_id: str | None) -> None:
        session = ImportSession(total=len(candidates), directory_id=directory_id)
        self._session = session
        self._processed_seen = 0
        self._current_name = None
        self._errors_seen = []
        self._review_records = ()
        self._set_phase(ImportPhase.PROCESSING)

        try:
            await self._process_all(session, candidates)
        finally:
            session.loop_done.set()

        if session.cancelled:
            return
        await self._finalize(session)

    async def _process_all(self, session: ImportSession, candidates: Sequence[CandidateItem]) -> None:
        for index, candidate in enumerate(candidates):
            if session.cancelled:
                break
            if index and index % self.yield_every == 0:
                await asyncio.sleep(0)
                if session.cancelled:
                    break

            name = candidate.filename
            error: ItemError | None = None
            try:
                content = await self.processor.process(candidate)
            except ItemProcessingError as e:
                logger.warning("%s", e)
                error = ItemError(name=e.name, cause=e.cause)
            except Exception as e:
                logger.exception("Unexpected error processing %s", name)
                error = ItemError(name=name, cause=str(e) or type(e).__name__)

            # Cancelled while the processor ran: nothing may be staged now
            if session.cancelled:
                break

            session.processed += 1
            if error is not None:
                session.errors.append(error)
                self._aggregator.report(
                    ProgressEvent(processed_delta=1, current_name=name, error=error)
                )
                continue

            record = ContentRecord.from_content(
                candidate, content, directory_id=session.directory_id
            )
            session.records.append(record)
            session.track_write(self._stage(session, record))
            self._aggregator.report(ProgressEvent(processed_delta=1, current_name=name))

    async def _stage(self, session: ImportSession, record: ContentRecord) -> None:
        try:
            canonical_id = await asyncio.to_thread(
                self.store.stage,
                record,
                session.directory_id,
                session_id=session.session_id,
            )
        except StagingWriteError as e:
            logger.warning("Could not stage %s: %s", record.relative_path, e)
            session.failed_ids.add(record.id)
            error = ItemError(name=record.original_filename, cause=e.message, kind=ErrorKind.STAGING)
            session.errors.append(error)
            if not session.cancelled:
                self._aggregator.report(ProgressEvent(error=error))
            return
        session.id_map.record(record.id, canonical_id)

    async def _finalize(self, session: ImportSession) -> None:
        self._set_phase(ImportPhase.FINALIZING)
        self._aggregator.drain()
        await session.drain_writes()
        if session.cancelled:
            return
        self._aggregator.drain()

        staged = [
            record.with_id(session.id_map.resolve(record.id))
            for record in session.records
            if record.id not in session.failed_ids
        ]
        reviewed = await asyncio.to_thread(self._with_stored_edits, staged)
        if session.cancelled:
            return
        self._review_records = tuple(reviewed)
        self._processed_seen = session.processed
        self._errors_seen = list(session.errors)
        logger.info(
            "Import ready for review: %d staged, %d errors",
            len(self._review_records),
            len(session.errors),
        )
        self._set_phase(ImportPhase.REVIEWING)

    def _with_stored_edits(self, records: list[ContentRecord]) -> list[ContentRecord]:
        """Show re-scanned library items with the tags and categories they already have."""
        merged = []
        for record in records:
            stored = self.store.get_item(record.id)
            if stored is not None and stored.status is ItemStatus.CONFIRMED:
                record = replace(record, tags=stored.tags, categories=stored.categories)
            merged.append(record)
        return merged

    # === Terminal transitions ===

    async def cancel(self) -> None:
        """Abort the live import and delete the rows it staged.

        No-op when nothing is running.

        Raises:
            OperationFailure: Staged rows could not be deleted. The session
                is kept so the cancel can be retried.
        """
        if self._phase is ImportPhase.SCANNING and self._session is None:
            self._scan_cancelled = True
            return
        session = self._session
        if session is None:
            return

        session.cancelled = True
        self._aggregator.discard()
        await session.loop_done.wait()
        await session.drain_writes()

        staged_ids = session.id_map.canonical_ids()
        removed = await asyncio.to_thread(
            self.store.cancel_batch, staged_ids, session_id=session.session_id
        )
        logger.info("Import cancelled, %d staged items removed", removed)
        self._reset()

    async def confirm(self, records: Iterable[ContentRecord] | None = None) -> list[ContentRecord]:
        """Commit the reviewed records to the catalog and the library.

        Args:
            records: The review set as edited by the user. Defaults to the
                records published for review. Staged rows of this session
                missing from it are discarded.

        Returns:
            The confirmed records

        Raises:
            InvalidPhaseError: No import is awaiting review
            OperationFailure: The catalog update failed. The session is
                kept so the confirm can be retried.
        """
        session = self._session
        if session is None or self._phase is not ImportPhase.REVIEWING:
            raise InvalidPhaseError(
                f"Cannot confirm while {self._phase.value}", phase=self._phase.value
            )
        if session.cancelled:
            raise InvalidPhaseError("Cannot confirm a cancelled import", phase=self._phase.value)
        await session.drain_writes()

        staged = session.id_map.canonical_ids()
        staged_set = set(staged)
        reviewed: list[ContentRecord] = []
        for record in self._review_records if records is None else records:
            canonical = record.with_id(session.id_map.resolve(record.id))
            if canonical.id not in staged_set:
                logger.warning("Ignoring %s: not staged by this import", record.name)
                continue
            reviewed.append(canonical)

        kept = {r.id for r in reviewed}
        dropped = [item_id for item_id in staged if item_id not in kept]

        await asyncio.to_thread(self._commit, reviewed, dropped, session.session_id)

        confirmed = [replace(r, status=ItemStatus.CONFIRMED) for r in reviewed]
        if self.library is not None:
            self.library.add(confirmed)
        logger.info("Confirmed %d items, discarded %d", len(confirmed), len(dropped))
        self._reset()
        return confirmed

    def _commit(self, reviewed: list[ContentRecord], dropped: list[str], session_id: str) -> None:
        self.store.confirm_batch([r.id for r in reviewed])
        self.store.bulk_update_attributes(reviewed)
        self.store.cancel_batch(dropped, session_id=session_id)
