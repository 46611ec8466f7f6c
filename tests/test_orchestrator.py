"""Tests for the staged import orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from meshshelf.catalog import CatalogStore
from meshshelf.env_settings import ImportEnvSettings
from meshshelf.exceptions import (
    InvalidPhaseError,
    OperationFailure,
    SessionActiveError,
    StagingWriteError,
)
from meshshelf.importer import ImportOrchestrator
from meshshelf.library import Library
from meshshelf.models import (
    CandidateItem,
    ErrorKind,
    ImportPhase,
    ItemStatus,
    SessionState,
)
from meshshelf.path_policy import PathPolicy
from tests.conftest import FakeProcessor, make_candidate, make_record


def make_files(root: Path, count: int, prefix: str = "item") -> Path:
    """Create ``count`` empty STL files named item1.stl .. itemN.stl."""
    root.mkdir(parents=True, exist_ok=True)
    for i in range(1, count + 1):
        (root / f"{prefix}{i:02d}.stl").write_bytes(b"solid x\nendsolid x\n")
    return root


def make_orchestrator(
    store: CatalogStore,
    settings: ImportEnvSettings,
    processor: FakeProcessor | None = None,
    **kwargs: object,
) -> ImportOrchestrator:
    return ImportOrchestrator(
        store,
        processor or FakeProcessor(),
        settings=settings,
        **kwargs,
    )


def cancel_after(orchestrator: ImportOrchestrator, calls: int) -> tuple[FakeProcessor, list]:
    """Processor that triggers a cancel from inside call number ``calls + 1``."""
    tasks: list[asyncio.Task] = []

    class CancellingProcessor(FakeProcessor):
        async def process(self, candidate: CandidateItem):
            if len(self.calls) == calls and not tasks:
                tasks.append(asyncio.create_task(orchestrator.cancel()))
                await asyncio.sleep(0)
            return await super().process(candidate)

    return CancellingProcessor(), tasks


class TestScenarios:
    """End-to-end import scenarios against a real catalog."""

    @pytest.mark.asyncio
    async def test_three_candidates_all_succeed(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """3 candidates -> processed=3, 3 records, no errors."""
        root = make_files(tmp_path / "lib", 3)
        orch = make_orchestrator(store, import_settings)

        state = await orch.start_scan(root)

        assert state.phase is ImportPhase.REVIEWING
        assert state.processed == 3
        assert state.total == 3
        assert len(state.records) == 3
        assert state.errors == ()
        assert orch.session is not None
        assert orch.session.processed == 3

    @pytest.mark.asyncio
    async def test_failing_candidate_is_collected(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Candidate #3 fails -> processed=5, 4 records, one error naming it."""
        root = make_files(tmp_path / "lib", 5)
        orch = make_orchestrator(store, import_settings, FakeProcessor(fail={"item03.stl"}))

        state = await orch.start_scan(root)

        assert state.processed == 5
        assert len(state.records) == 4
        assert len(state.errors) == 1
        assert state.errors[0].name == "item03.stl"
        assert state.errors[0].cause == "corrupt mesh"
        assert state.errors[0].kind is ErrorKind.PROCESSING
        assert "item03.stl" not in [r.relative_path for r in state.records]

    @pytest.mark.asyncio
    async def test_rescan_keeps_confirmed_status(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Re-scanning a confirmed item updates its content but not its status."""
        root = tmp_path / "lib"
        root.mkdir()
        target = root / "a.stl"
        target.write_bytes(b"x" * 10)

        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)
        confirmed = await orch.confirm()
        item_id = confirmed[0].id

        target.write_bytes(b"x" * 2_000_000)
        state = await orch.start_scan(root)

        assert [r.id for r in state.records] == [item_id]
        row = store.get_item(item_id)
        assert row is not None
        assert row.status is ItemStatus.CONFIRMED
        assert row.size_bytes == 2_000_000

    @pytest.mark.asyncio
    async def test_cancel_after_two_deletes_exactly_those(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Cancel after 2 of 10 -> exactly the 2 staged rows are deleted."""
        root = make_files(tmp_path / "lib", 10)
        orch = make_orchestrator(store, import_settings)
        processor, tasks = cancel_after(orch, 2)
        orch.processor = processor

        with patch.object(store, "cancel_batch", wraps=store.cancel_batch) as spy:
            await orch.start_scan(root)
            await tasks[0]

        assert orch.phase is ImportPhase.IDLE
        spy.assert_called_once()
        deleted_ids = spy.call_args.args[0]
        assert len(deleted_ids) == 2
        assert spy.call_args.kwargs["session_id"] is not None
        assert store.list_pending() == []
        assert store.list_confirmed() == []
        for item_id in deleted_ids:
            assert store.get_item(item_id) is None

    @pytest.mark.asyncio
    async def test_cancelling_later_session_keeps_earlier_rows(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Session A confirmed, session B cancelled mid-flight -> A untouched."""
        root_a = make_files(tmp_path / "a", 10)
        root_b = make_files(tmp_path / "b", 5)
        orch = make_orchestrator(store, import_settings)

        await orch.start_scan(root_a)
        confirmed_a = await orch.confirm()
        assert len(confirmed_a) == 10

        processor, tasks = cancel_after(orch, 3)
        orch.processor = processor
        await orch.start_scan(root_b)
        await tasks[0]

        remaining = store.list_confirmed()
        assert {r.id for r in remaining} == {r.id for r in confirmed_a}
        assert all(r.status is ItemStatus.CONFIRMED for r in remaining)
        assert store.list_pending() == []


class TestProperties:
    """Invariants that hold for every session."""

    @pytest.mark.asyncio
    async def test_records_plus_errors_equals_total(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 12)
        fail = {"item02.stl", "item07.stl", "item11.stl"}
        orch = make_orchestrator(store, import_settings, FakeProcessor(fail=fail))

        state = await orch.start_scan(root)

        assert state.processed == 12
        assert len(state.records) + len(state.errors) == 12

    @pytest.mark.asyncio
    async def test_records_carry_canonical_ids(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """A re-scan reuses existing rows, so records must show the old ids."""
        root = make_files(tmp_path / "lib", 3)
        orch = make_orchestrator(store, import_settings)

        await orch.start_scan(root)
        confirmed = await orch.confirm()
        kept_ids = sorted(r.id for r in confirmed)

        second = await orch.start_scan(root)

        assert orch.session is not None
        local_ids = {r.id for r in orch.session.records}
        assert local_ids.isdisjoint(kept_ids)
        assert sorted(r.id for r in second.records) == kept_ids
        for record in second.records:
            assert store.get_item(record.id) is not None

    @pytest.mark.asyncio
    async def test_observed_progress_is_monotonic(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 17)
        orch = make_orchestrator(store, import_settings)
        seen: list[SessionState] = []
        orch.subscribe(seen.append)

        await orch.start_scan(root)

        processed = [s.processed for s in seen if s.phase is not ImportPhase.IDLE]
        assert processed == sorted(processed)
        assert seen[-1].phase is ImportPhase.REVIEWING
        assert seen[-1].processed == 17
        phases = [s.phase for s in seen]
        assert phases.index(ImportPhase.SCANNING) < phases.index(ImportPhase.PROCESSING)
        assert phases.index(ImportPhase.PROCESSING) < phases.index(ImportPhase.FINALIZING)

    @pytest.mark.asyncio
    async def test_records_only_visible_while_reviewing(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        seen: list[SessionState] = []
        orch.subscribe(seen.append)

        await orch.start_scan(root)

        for snapshot in seen:
            if snapshot.phase is not ImportPhase.REVIEWING:
                assert snapshot.records == ()


class TestStartScan:
    """Tests for scan entry and the scanning phase."""

    @pytest.mark.asyncio
    async def test_empty_directory_returns_to_idle(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Zero candidates -> idle, no session, no directory row."""
        root = tmp_path / "empty"
        root.mkdir()
        (root / "readme.txt").write_text("nothing here")
        orch = make_orchestrator(store, import_settings)

        state = await orch.start_scan(root)

        assert state.phase is ImportPhase.IDLE
        assert orch.session is None
        assert store.list_directories() == []

    @pytest.mark.asyncio
    async def test_directory_registered_once(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)

        await orch.start_scan(root)
        await orch.confirm()
        await orch.start_scan(root)

        directories = store.list_directories()
        assert len(directories) == 1
        assert directories[0].last_scanned_at is not None
        assert all(r.directory_id == directories[0].id for r in orch.state.records)

    @pytest.mark.asyncio
    async def test_scan_while_active_raises(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)

        with pytest.raises(SessionActiveError):
            await orch.start_scan(root)

        assert orch.phase is ImportPhase.REVIEWING

    @pytest.mark.asyncio
    async def test_scan_uses_scan_order(
        self, store: CatalogStore, import_settings: ImportEnvSettings, model_dir: Path
    ) -> None:
        processor = FakeProcessor()
        orch = make_orchestrator(store, import_settings, processor)

        await orch.start_scan(model_dir)

        assert processor.calls == [
            "a_dragon.stl",
            "Creator/c_chest.STL",
            "Creator/Set/b_tower.stl",
        ]

    @pytest.mark.asyncio
    async def test_scan_approves_directory(
        self, store: CatalogStore, import_settings: ImportEnvSettings, model_dir: Path
    ) -> None:
        policy = PathPolicy()
        orch = make_orchestrator(store, import_settings, path_policy=policy)

        await orch.start_scan(model_dir)

        assert model_dir.resolve() in policy.roots

    @pytest.mark.asyncio
    async def test_custom_walker(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        candidates = [make_candidate("x.stl"), make_candidate("y.stl")]
        calls: list[tuple[Path, tuple[str, ...]]] = []

        def walker(root: Path, extensions: tuple[str, ...]) -> list[CandidateItem]:
            calls.append((root, extensions))
            return candidates

        orch = make_orchestrator(store, import_settings, walker=walker)
        state = await orch.start_scan(tmp_path)

        assert calls == [(tmp_path, (".stl",))]
        assert len(state.records) == 2


class TestImportFiles:
    """Tests for dropped files without a parent directory."""

    @pytest.mark.asyncio
    async def test_filters_extensions(
        self, store: CatalogStore, import_settings: ImportEnvSettings
    ) -> None:
        orch = make_orchestrator(store, import_settings)

        state = await orch.import_files(
            [make_candidate("one.stl"), make_candidate("two.obj"), make_candidate("THREE.STL")]
        )

        assert state.phase is ImportPhase.REVIEWING
        assert sorted(r.relative_path for r in state.records) == ["THREE.STL", "one.stl"]
        assert all(r.directory_id is None for r in state.records)

    @pytest.mark.asyncio
    async def test_nothing_importable_stays_idle(
        self, store: CatalogStore, import_settings: ImportEnvSettings
    ) -> None:
        orch = make_orchestrator(store, import_settings)

        state = await orch.import_files([make_candidate("readme.md")])

        assert state.phase is ImportPhase.IDLE
        assert orch.session is None

    @pytest.mark.asyncio
    async def test_dropped_file_reimport_reuses_row(
        self, store: CatalogStore, import_settings: ImportEnvSettings
    ) -> None:
        """Loose files are keyed on their name, so a second drop updates the row."""
        orch = make_orchestrator(store, import_settings)

        await orch.import_files([make_candidate("dup.stl")])
        first = await orch.confirm()
        await orch.import_files([make_candidate("dup.stl", size_bytes=4096)])
        second = await orch.confirm()

        assert first[0].id == second[0].id
        rows = store.list_confirmed()
        assert len(rows) == 1
        assert rows[0].size_bytes == 4096


class TestConfirm:
    """Tests for committing a reviewed import."""

    @pytest.mark.asyncio
    async def test_confirm_applies_edits_and_fills_library(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 3)
        library = Library()
        orch = make_orchestrator(store, import_settings, library=library)
        state = await orch.start_scan(root)

        edited = list(state.records)
        edited[0].tags = ["dragon", "painted"]
        edited[0].categories = {"role": "monster", "size": "28mm"}

        confirmed = await orch.confirm(edited)

        assert orch.phase is ImportPhase.IDLE
        assert orch.session is None
        assert len(confirmed) == 3
        assert all(r.status is ItemStatus.CONFIRMED for r in confirmed)
        row = store.get_item(edited[0].id)
        assert row is not None
        assert row.status is ItemStatus.CONFIRMED
        assert row.tags == ["dragon", "painted"]
        assert row.categories == {"role": "monster", "size": "28mm"}
        assert len(library) == 3
        assert edited[0].id in library

    @pytest.mark.asyncio
    async def test_removed_records_are_discarded(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 3)
        orch = make_orchestrator(store, import_settings)
        state = await orch.start_scan(root)
        kept, dropped = list(state.records[:2]), state.records[2]

        await orch.confirm(kept)

        assert {r.id for r in store.list_confirmed()} == {r.id for r in kept}
        assert store.get_item(dropped.id) is None
        assert store.list_pending() == []

    @pytest.mark.asyncio
    async def test_confirm_outside_review_raises(
        self, store: CatalogStore, import_settings: ImportEnvSettings
    ) -> None:
        orch = make_orchestrator(store, import_settings)

        with pytest.raises(InvalidPhaseError):
            await orch.confirm([])

    @pytest.mark.asyncio
    async def test_failure_keeps_session_for_retry(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        state = await orch.start_scan(root)

        with patch.object(
            store, "confirm_batch", side_effect=OperationFailure("disk full", ids=[])
        ):
            with pytest.raises(OperationFailure):
                await orch.confirm()

        assert orch.phase is ImportPhase.REVIEWING
        assert orch.state.records == state.records

        confirmed = await orch.confirm()
        assert len(confirmed) == 2
        assert orch.phase is ImportPhase.IDLE

    @pytest.mark.asyncio
    async def test_confirm_twice_is_idempotent_in_store(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)
        confirmed = await orch.confirm()

        assert store.confirm_batch([r.id for r in confirmed]) == 0
        assert len(store.list_confirmed()) == 2

    @pytest.mark.asyncio
    async def test_rescan_confirm_keeps_library_edits(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Tags and categories edited on a library item survive a re-scan and confirm."""
        root = make_files(tmp_path / "lib", 1)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)
        item_id = (await orch.confirm())[0].id
        store.update_item(item_id, tags=["painted", "favorite"], categories={"role": "hero"})

        state = await orch.start_scan(root)
        assert state.records[0].tags == ["favorite", "painted"]
        assert state.records[0].categories == {"role": "hero"}
        await orch.confirm(state.records)

        row = store.get_item(item_id)
        assert row is not None
        assert row.tags == ["favorite", "painted"]
        assert row.categories == {"role": "hero"}

    @pytest.mark.asyncio
    async def test_snapshot_edits_do_not_leak(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """Editing a state snapshot changes nothing until it is passed to confirm."""
        root = make_files(tmp_path / "lib", 1)
        orch = make_orchestrator(store, import_settings)
        state = await orch.start_scan(root)

        state.records[0].tags.append("scratch")
        state.records[0].categories["role"] = "scratch"

        assert orch.state.records[0].tags == ["auto"]
        assert orch.state.records[0].categories == {"role": "prop"}
        confirmed = await orch.confirm()
        assert confirmed[0].tags == ["auto"]

    @pytest.mark.asyncio
    async def test_confirm_refused_while_cancel_runs(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)

        cancelling = asyncio.create_task(orch.cancel())
        await asyncio.sleep(0)

        with pytest.raises(InvalidPhaseError):
            await orch.confirm()
        await cancelling
        assert orch.phase is ImportPhase.IDLE
        assert store.list_confirmed() == []
        assert store.list_pending() == []


class TestCancel:
    """Tests for discarding an import."""

    @pytest.mark.asyncio
    async def test_cancel_without_session_is_noop(
        self, store: CatalogStore, import_settings: ImportEnvSettings
    ) -> None:
        orch = make_orchestrator(store, import_settings)

        await orch.cancel()

        assert orch.phase is ImportPhase.IDLE

    @pytest.mark.asyncio
    async def test_cancel_in_review_discards_staged_rows(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 4)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)
        assert len(store.list_pending()) == 4

        await orch.cancel()

        assert orch.phase is ImportPhase.IDLE
        assert orch.state == SessionState()
        assert store.list_pending() == []

    @pytest.mark.asyncio
    async def test_cancel_spares_other_sessions_pending_rows(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        foreign_dir = store.save_directory(tmp_path / "elsewhere")
        store.stage(make_record("foreign", "x.stl"), foreign_dir.id, session_id="other-session")
        root = make_files(tmp_path / "lib", 3)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)

        await orch.cancel()

        assert [r.id for r in store.list_pending()] == ["foreign"]

    @pytest.mark.asyncio
    async def test_no_write_after_cancel(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        """An item whose processing straddles the cancel is never staged."""
        root = make_files(tmp_path / "lib", 6)
        orch = make_orchestrator(store, import_settings)
        processor, tasks = cancel_after(orch, 0)
        orch.processor = processor

        with patch.object(store, "stage", wraps=store.stage) as stage_spy:
            await orch.start_scan(root)
            await tasks[0]

        stage_spy.assert_not_called()
        assert processor.calls == ["item01.stl"]
        assert orch.phase is ImportPhase.IDLE

    @pytest.mark.asyncio
    async def test_cancel_failure_keeps_session(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 2)
        orch = make_orchestrator(store, import_settings)
        await orch.start_scan(root)

        with patch.object(store, "cancel_batch", side_effect=OperationFailure("locked")):
            with pytest.raises(OperationFailure):
                await orch.cancel()

        assert orch.session is not None
        await orch.cancel()
        assert orch.session is None
        assert store.list_pending() == []


class TestStagingFailures:
    """Tests for writes the store rejects."""

    @pytest.mark.asyncio
    async def test_failed_write_is_excluded_from_review(
        self, store: CatalogStore, import_settings: ImportEnvSettings, tmp_path: Path
    ) -> None:
        root = make_files(tmp_path / "lib", 3)
        orch = make_orchestrator(store, import_settings)
        real_stage = store.stage

        def flaky_stage(record, directory_id, *, session_id=None):
            if record.relative_path == "item02.stl":
                raise StagingWriteError("constraint failed", relative_path=record.relative_path)
            return real_stage(record, directory_id, session_id=session_id)

        with patch.object(store, "stage", side_effect=flaky_stage):
            state = await orch.start_scan(root)

        assert state.processed == 3
        assert sorted(r.relative_path for r in state.records) == ["item01.stl", "item03.stl"]
        assert len(state.errors) == 1
        assert state.errors[0].kind is ErrorKind.STAGING
        assert state.errors[0].name == "item02.stl"
        assert orch.session is not None
        assert len(orch.session.id_map) == 2
