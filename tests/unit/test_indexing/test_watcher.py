"""Tests for file watcher."""

import asyncio
import shutil
import time
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from watchfiles import Change

from codebase_indexer.core.exceptions import InvalidPathError
from codebase_indexer.indexing.matcher import MatchPatternSet
from codebase_indexer.indexing.pipeline import IndexingPipeline
from codebase_indexer.indexing.store import IndexStore
from codebase_indexer.indexing.watcher import (
    ChangeDebouncer,
    ChangeType,
    ChangeWatcher,
    FileChange,
    IndexWatchFilter,
    WatcherState,
    WatchStats,
)


async def idle_awatch(*args: Any, stop_event: asyncio.Event | None = None, **kwargs: Any) -> AsyncGenerator[set, None]:
    """Stand-in subscription that yields nothing until stopped."""
    assert stop_event is not None
    await stop_event.wait()
    return
    yield  # pragma: no cover


async def failing_awatch(*args: Any, **kwargs: Any) -> AsyncGenerator[set, None]:
    """Stand-in subscription that fails immediately."""
    raise RuntimeError("inotify limit reached")
    yield  # pragma: no cover


def change(path: Path, change_type: ChangeType) -> FileChange:
    """Build a change event."""
    return FileChange(path=path, change_type=change_type, timestamp=time.time())


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create an empty project root."""
    root = tmp_path / "proj"
    root.mkdir()
    return root


@pytest.fixture
def pipeline(tmp_path: Path) -> IndexingPipeline:
    """Create pipeline indexing Python files only."""
    store = IndexStore(tmp_path / "storage" / "proj.json")
    return IndexingPipeline(store, MatchPatternSet.from_lists(["**/*.py"]))


@pytest.fixture
async def watcher(project: Path, pipeline: IndexingPipeline) -> AsyncGenerator[ChangeWatcher, None]:
    """Create a started watcher with a short stability window."""
    with patch("codebase_indexer.indexing.watcher.awatch", idle_awatch):
        w = ChangeWatcher(project, pipeline, stability_window=0.05)
        await w.start()
        yield w
        await w.stop()


class TestChangeType:
    """Tests for ChangeType enum."""

    def test_values(self) -> None:
        """Test enum values."""
        assert ChangeType.ADDED.value == "added"
        assert ChangeType.MODIFIED.value == "modified"
        assert ChangeType.DELETED.value == "deleted"

    def test_from_watchfiles(self) -> None:
        """Test mapping from watchfiles changes."""
        assert ChangeType.from_watchfiles(Change.added) == ChangeType.ADDED
        assert ChangeType.from_watchfiles(Change.modified) == ChangeType.MODIFIED
        assert ChangeType.from_watchfiles(Change.deleted) == ChangeType.DELETED


class TestFileChange:
    """Tests for FileChange dataclass."""

    def test_to_dict(self) -> None:
        """Test conversion to dict."""
        c = FileChange(path=Path("/test.py"), change_type=ChangeType.MODIFIED, timestamp=1234567890.0)

        assert c.to_dict() == {
            "path": "/test.py",
            "change_type": "modified",
            "timestamp": 1234567890.0,
        }


class TestChangeDebouncer:
    """Tests for ChangeDebouncer."""

    def test_ready_after_window(self) -> None:
        """Test a change is held for the stability window."""
        debouncer = ChangeDebouncer(window=0.5)
        debouncer.add(change(Path("/a.py"), ChangeType.MODIFIED), now=0.0)

        assert debouncer.pop_ready(now=0.4) == []
        ready = debouncer.pop_ready(now=0.5)
        assert [c.path for c in ready] == [Path("/a.py")]
        assert debouncer.count == 0

    def test_new_event_extends_window(self) -> None:
        """Test each event restarts the path's window."""
        debouncer = ChangeDebouncer(window=0.5)
        debouncer.add(change(Path("/a.py"), ChangeType.MODIFIED), now=0.0)
        debouncer.add(change(Path("/a.py"), ChangeType.MODIFIED), now=0.3)

        assert debouncer.pop_ready(now=0.6) == []
        assert len(debouncer.pop_ready(now=0.8)) == 1

    def test_paths_are_independent(self) -> None:
        """Test one path's events do not delay another's."""
        debouncer = ChangeDebouncer(window=0.5)
        debouncer.add(change(Path("/a.py"), ChangeType.MODIFIED), now=0.0)
        debouncer.add(change(Path("/b.py"), ChangeType.MODIFIED), now=0.4)

        assert [c.path for c in debouncer.pop_ready(now=0.5)] == [Path("/a.py")]
        assert debouncer.count == 1

    @pytest.mark.parametrize(
        "first,second,expected",
        [
            (ChangeType.ADDED, ChangeType.MODIFIED, ChangeType.ADDED),
            (ChangeType.MODIFIED, ChangeType.MODIFIED, ChangeType.MODIFIED),
            (ChangeType.MODIFIED, ChangeType.DELETED, ChangeType.DELETED),
            (ChangeType.ADDED, ChangeType.DELETED, ChangeType.DELETED),
            (ChangeType.DELETED, ChangeType.ADDED, ChangeType.MODIFIED),
        ],
    )
    def test_merge(self, first: ChangeType, second: ChangeType, expected: ChangeType) -> None:
        """Test how consecutive events for one path combine."""
        debouncer = ChangeDebouncer(window=0.1)
        debouncer.add(change(Path("/a.py"), first), now=0.0)
        debouncer.add(change(Path("/a.py"), second), now=0.0)

        [merged] = debouncer.pop_ready(now=1.0)
        assert merged.change_type == expected

    def test_time_until_ready(self) -> None:
        """Test time to the earliest deadline."""
        debouncer = ChangeDebouncer(window=0.5)
        assert debouncer.time_until_ready() is None

        debouncer.add(change(Path("/a.py"), ChangeType.MODIFIED), now=1.0)
        assert debouncer.time_until_ready(now=1.2) == pytest.approx(0.3)
        assert debouncer.time_until_ready(now=2.0) == 0.0

    def test_clear(self) -> None:
        """Test dropping pending changes."""
        debouncer = ChangeDebouncer()
        debouncer.add(change(Path("/a.py"), ChangeType.ADDED))
        debouncer.add(change(Path("/b.py"), ChangeType.ADDED))

        assert debouncer.clear() == 2
        assert debouncer.count == 0


class TestIndexWatchFilter:
    """Tests for the watch filter."""

    def test_ignores_vcs_and_dependencies(self, tmp_path: Path) -> None:
        """Test pruned directories are filtered."""
        flt = IndexWatchFilter()

        assert not flt(Change.modified, str(tmp_path / ".git" / "HEAD"))
        assert not flt(Change.added, str(tmp_path / "node_modules" / "x" / "index.js"))
        assert flt(Change.modified, str(tmp_path / "src" / "app.py"))

    def test_ignores_storage(self, tmp_path: Path) -> None:
        """Test the storage directory is filtered."""
        storage = tmp_path / "storage"
        flt = IndexWatchFilter(ignore_paths=[storage])

        assert not flt(Change.modified, str(storage / "proj.json"))


class TestChangeWatcher:
    """Tests for ChangeWatcher."""

    @pytest.mark.asyncio
    async def test_start_sets_state(self, watcher: ChangeWatcher) -> None:
        """Test a started watcher is watching."""
        assert watcher.state == WatcherState.WATCHING
        assert watcher.is_watching

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, watcher: ChangeWatcher) -> None:
        """Test a second start keeps the running session."""
        dispatcher = watcher._dispatcher
        await watcher.start()

        assert watcher._dispatcher is dispatcher
        assert watcher.is_watching

    @pytest.mark.asyncio
    async def test_start_requires_directory(self, tmp_path: Path, pipeline: IndexingPipeline) -> None:
        """Test watching a missing root fails."""
        w = ChangeWatcher(tmp_path / "missing", pipeline)

        with pytest.raises(InvalidPathError):
            await w.start()
        assert w.state == WatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_burst_indexed_once(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test several rapid events for one file resolve to one indexing."""
        path = project / "app.py"
        path.write_text("print('v1')\n")

        with patch.object(watcher.pipeline, "index_file", wraps=watcher.pipeline.index_file) as index_file:
            await watcher.notify(change(path, ChangeType.ADDED))
            path.write_text("print('v2')\n")
            await watcher.notify(change(path, ChangeType.MODIFIED))
            path.write_text("print('v3')\n")
            await watcher.notify(change(path, ChangeType.MODIFIED))

            assert await watcher.wait_idle(timeout=2.0)

        assert index_file.call_count == 1
        assert watcher.stats == WatchStats(files_added=1)
        assert watcher.pipeline.store.get("app.py").content == "print('v3')\n"

    @pytest.mark.asyncio
    async def test_modified_file_counted_as_changed(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test an edit to an existing file."""
        path = project / "app.py"
        path.write_text("x = 1\n")
        await watcher.pipeline.index_file(path, project)

        path.write_text("x = 2\n")
        await watcher.notify(change(path, ChangeType.MODIFIED))
        assert await watcher.wait_idle(timeout=2.0)

        assert watcher.stats.files_changed == 1
        assert watcher.pipeline.store.get("app.py").content == "x = 2\n"

    @pytest.mark.asyncio
    async def test_unchanged_content_not_counted(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test a touch without a content change is not counted."""
        path = project / "app.py"
        path.write_text("x = 1\n")
        await watcher.pipeline.index_file(path, project)

        await watcher.notify(change(path, ChangeType.MODIFIED))
        assert await watcher.wait_idle(timeout=2.0)

        assert watcher.stats == WatchStats()

    @pytest.mark.asyncio
    async def test_non_matching_file_ignored(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test files outside the pattern set are not indexed."""
        path = project / "notes.txt"
        path.write_text("hello\n")

        await watcher.notify(change(path, ChangeType.ADDED))
        assert await watcher.wait_idle(timeout=2.0)

        assert "notes.txt" not in watcher.pipeline.store
        assert watcher.stats == WatchStats()

    @pytest.mark.asyncio
    async def test_delete_ignores_patterns(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test deletions remove records even when the path no longer matches."""
        path = project / "notes.txt"
        path.write_text("hello\n")
        watcher.pipeline.patterns = MatchPatternSet.from_lists(["**/*.txt"])
        await watcher.pipeline.index_file(path, project)
        watcher.pipeline.patterns = MatchPatternSet.from_lists(["**/*.py"])

        path.unlink()
        await watcher.notify(change(path, ChangeType.DELETED))
        assert await watcher.wait_idle(timeout=2.0)

        assert "notes.txt" not in watcher.pipeline.store
        assert watcher.stats.files_deleted == 1

    @pytest.mark.asyncio
    async def test_delete_unknown_not_counted(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test deleting a never-indexed file is not counted."""
        await watcher.notify(change(project / "ghost.py", ChangeType.DELETED))
        assert await watcher.wait_idle(timeout=2.0)

        assert watcher.stats.files_deleted == 0

    @pytest.mark.asyncio
    async def test_deleted_directory_removes_its_files(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test a single event for a removed directory drops every record below it."""
        pkg = project / "pkg"
        pkg.mkdir()
        for name in ("a.py", "b.py"):
            (pkg / name).write_text(f"name = '{name}'\n")
            await watcher.pipeline.index_file(pkg / name, project)
        (project / "pkg_extra.py").write_text("extra = 1\n")
        await watcher.pipeline.index_file(project / "pkg_extra.py", project)

        shutil.move(str(pkg), str(project.parent / "moved-away"))
        await watcher.notify(change(pkg, ChangeType.DELETED))
        assert await watcher.wait_idle(timeout=2.0)

        assert watcher.pipeline.store.paths == ["pkg_extra.py"]
        assert watcher.stats.files_deleted == 2

        reloaded = IndexStore(watcher.pipeline.store.store_path)
        reloaded.load()
        assert reloaded.paths == ["pkg_extra.py"]

    @pytest.mark.asyncio
    async def test_add_then_delete_in_window(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test a file created and removed inside the window leaves no trace."""
        path = project / "temp.py"
        await watcher.notify(change(path, ChangeType.ADDED))
        await watcher.notify(change(path, ChangeType.DELETED))
        assert await watcher.wait_idle(timeout=2.0)

        assert "temp.py" not in watcher.pipeline.store
        assert watcher.stats == WatchStats()

    @pytest.mark.asyncio
    async def test_read_error_counted(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test a failing read is counted and the watcher keeps going."""
        bad = project / "bad.py"
        bad.write_bytes(b"\xff\xfe")
        good = project / "good.py"
        good.write_text("ok = True\n")

        await watcher.notify(change(bad, ChangeType.ADDED))
        await watcher.notify(change(good, ChangeType.ADDED))
        assert await watcher.wait_idle(timeout=2.0)

        assert watcher.stats.errors == 1
        assert watcher.stats.files_added == 1
        assert watcher.is_watching

    @pytest.mark.asyncio
    async def test_handler_exception_counted(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test an unexpected handler failure is counted, not fatal."""
        path = project / "app.py"
        path.write_text("x = 1\n")

        with patch.object(watcher.pipeline, "index_file", side_effect=RuntimeError("boom")):
            await watcher.notify(change(path, ChangeType.ADDED))
            assert await watcher.wait_idle(timeout=2.0)

        assert watcher.stats.errors == 1
        assert watcher.is_watching

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, watcher: ChangeWatcher) -> None:
        """Test stopping twice."""
        await watcher.stop()
        await watcher.stop()

        assert watcher.state == WatcherState.STOPPED

    @pytest.mark.asyncio
    async def test_notify_after_stop_ignored(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test events after stop are dropped."""
        await watcher.stop()
        await watcher.notify(change(project / "a.py", ChangeType.ADDED))

        assert watcher.pending_count == 0

    @pytest.mark.asyncio
    async def test_stop_drops_pending_and_flushes(
        self, project: Path, pipeline: IndexingPipeline
    ) -> None:
        """Test stop discards undispatched events and saves the store."""
        path = project / "app.py"
        path.write_text("x = 1\n")
        await pipeline.index_file(path, project, persist=False)

        with patch("codebase_indexer.indexing.watcher.awatch", idle_awatch):
            w = ChangeWatcher(project, pipeline, stability_window=10.0)
            await w.start()
            await w.notify(change(project / "other.py", ChangeType.ADDED))
            assert w.pending_count == 1

            await w.stop()

        assert w.pending_count == 0
        assert not pipeline.store.is_dirty
        assert pipeline.store.store_path.exists()
        assert "other.py" not in pipeline.store

    @pytest.mark.asyncio
    async def test_stop_finishes_in_flight_dispatch(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test a dispatch already running completes before stop returns."""
        path = project / "a.py"
        path.write_text("a = 1\n")
        index_file = watcher.pipeline.index_file
        started = asyncio.Event()

        async def slow_index_file(*args: Any, **kwargs: Any) -> Any:
            started.set()
            await asyncio.sleep(0.3)
            return await index_file(*args, **kwargs)

        with patch.object(watcher.pipeline, "index_file", side_effect=slow_index_file):
            await watcher.notify(change(path, ChangeType.ADDED))
            await asyncio.wait_for(started.wait(), timeout=2.0)
            await watcher.stop()

        assert watcher.state == WatcherState.STOPPED
        assert "a.py" in watcher.pipeline.store
        assert watcher.stats.files_added == 1
        assert not watcher.pipeline.store.is_dirty

    @pytest.mark.asyncio
    async def test_paused_holds_dispatch(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test changes wait while paused and are dispatched afterwards."""
        path = project / "a.py"
        path.write_text("a = 1\n")

        async with watcher.paused():
            await watcher.notify(change(path, ChangeType.ADDED))
            await asyncio.sleep(0.2)
            assert "a.py" not in watcher.pipeline.store

        assert await watcher.wait_idle(timeout=2.0)
        assert "a.py" in watcher.pipeline.store
        assert watcher.stats.files_added == 1

    @pytest.mark.asyncio
    async def test_subscription_failure_counted(self, project: Path, pipeline: IndexingPipeline) -> None:
        """Test a failing subscription is counted and notify still works."""
        with patch("codebase_indexer.indexing.watcher.awatch", failing_awatch):
            w = ChangeWatcher(project, pipeline, stability_window=0.05)
            await w.start()
            await asyncio.sleep(0.05)

            assert w.stats.errors == 1
            assert w.is_watching

            path = project / "app.py"
            path.write_text("x = 1\n")
            await w.notify(change(path, ChangeType.ADDED))
            assert await w.wait_idle(timeout=2.0)
            assert w.stats.files_added == 1

            await w.stop()

    @pytest.mark.asyncio
    async def test_stats_copy_and_reset(self, watcher: ChangeWatcher, project: Path) -> None:
        """Test stats are a snapshot and can be reset."""
        path = project / "app.py"
        path.write_text("x = 1\n")
        await watcher.notify(change(path, ChangeType.ADDED))
        assert await watcher.wait_idle(timeout=2.0)

        snapshot = watcher.stats
        snapshot.files_added = 99
        assert watcher.stats.files_added == 1

        watcher.reset_stats()
        assert watcher.stats == WatchStats()
        assert watcher.stats.to_dict() == {
            "files_added": 0,
            "files_changed": 0,
            "files_deleted": 0,
            "errors": 0,
        }


class TestChangeWatcherLive:
    """Tests against real filesystem notifications."""

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_file_creation_indexed(self, project: Path, pipeline: IndexingPipeline) -> None:
        """Test a file written to disk reaches the index."""
        w = ChangeWatcher(project, pipeline, stability_window=0.1)
        await w.start()
        try:
            await asyncio.sleep(0.3)
            (project / "live.py").write_text("live = True\n")

            deadline = time.monotonic() + 5.0
            while "live.py" not in pipeline.store and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
        finally:
            await w.stop()

        assert "live.py" in pipeline.store
