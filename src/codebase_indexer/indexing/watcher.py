"""File system watcher keeping an index in step with a live project.

Events from ``watchfiles`` are coalesced per path: a path is dispatched only
after no further event arrived for it during the stability window, so one
logical save that fires several writes is indexed once.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import watchfiles
from watchfiles import Change, awatch

from codebase_indexer.core.exceptions import (
    CodebaseIndexerError,
    InvalidPathError,
    WatchSubscriptionError,
)
from codebase_indexer.indexing.pipeline import PRUNED_DIRS, IndexingPipeline, IndexStatus
from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STABILITY_WINDOW = 0.5


class ChangeType(str, Enum):
    """Type of file change."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"

    @classmethod
    def from_watchfiles(cls, change: Change) -> "ChangeType":
        """Map a ``watchfiles`` change to a change type."""
        return {
            Change.added: cls.ADDED,
            Change.modified: cls.MODIFIED,
            Change.deleted: cls.DELETED,
        }[change]


@dataclass
class FileChange:
    """Represents a file change event.

    Attributes:
        path: Path to the changed file.
        change_type: Type of change.
        timestamp: When the change was detected.
    """

    path: Path
    change_type: ChangeType
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": str(self.path),
            "change_type": self.change_type.value,
            "timestamp": self.timestamp,
        }


class WatcherState(str, Enum):
    """Lifecycle state of a watcher."""

    STOPPED = "stopped"
    STARTING = "starting"
    WATCHING = "watching"


@dataclass
class WatchStats:
    """Running counters of a watch session."""

    files_added: int = 0
    files_changed: int = 0
    files_deleted: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "files_added": self.files_added,
            "files_changed": self.files_changed,
            "files_deleted": self.files_deleted,
            "errors": self.errors,
        }


def _merge(previous: ChangeType, current: ChangeType) -> ChangeType:
    if previous == ChangeType.ADDED and current == ChangeType.MODIFIED:
        return ChangeType.ADDED
    if previous == ChangeType.DELETED and current == ChangeType.ADDED:
        # delete + re-create is how editors save atomically
        return ChangeType.MODIFIED
    return current


class ChangeDebouncer:
    """Coalesces bursts of changes per path.

    Each new change for a path pushes that path's deadline out to
    ``now + window``; a path is ready once its deadline has passed.
    """

    def __init__(self, window: float = DEFAULT_STABILITY_WINDOW) -> None:
        """Initialize debouncer.

        Args:
            window: Stability window in seconds.
        """
        self.window = window
        self._pending: dict[Path, tuple[FileChange, float]] = {}

    def add(self, change: FileChange, now: float | None = None) -> None:
        """Record a change, merging it with a pending one for the same path."""
        now = time.monotonic() if now is None else now
        previous = self._pending.pop(change.path, None)
        if previous is not None:
            change = FileChange(
                path=change.path,
                change_type=_merge(previous[0].change_type, change.change_type),
                timestamp=change.timestamp,
            )
        self._pending[change.path] = (change, now + self.window)

    def pop_ready(self, now: float | None = None) -> list[FileChange]:
        """Remove and return the changes whose window has elapsed."""
        now = time.monotonic() if now is None else now
        ready = [path for path, (_, deadline) in self._pending.items() if deadline <= now]
        return [self._pending.pop(path)[0] for path in ready]

    def time_until_ready(self, now: float | None = None) -> float | None:
        """Seconds until the next path is ready, or None if nothing is pending."""
        if not self._pending:
            return None
        now = time.monotonic() if now is None else now
        return max(0.0, min(deadline for _, deadline in self._pending.values()) - now)

    def clear(self) -> int:
        """Drop every pending change.

        Returns:
            Number of dropped changes.
        """
        count = len(self._pending)
        self._pending.clear()
        return count

    @property
    def count(self) -> int:
        """Number of pending paths."""
        return len(self._pending)


class IndexWatchFilter(watchfiles.DefaultFilter):
    """Ignores VCS and dependency directories and the index storage directory."""

    def __init__(self, ignore_paths: Sequence[str | Path] = ()) -> None:
        super().__init__(
            ignore_dirs=tuple(sorted(set(self.ignore_dirs) | PRUNED_DIRS)),
            ignore_paths=[str(p) for p in ignore_paths],
        )


class ChangeWatcher:
    """Routes live filesystem events of one project to its indexing pipeline.

    The pipeline carries the session's pattern set and size limit; both stay
    fixed for the lifetime of the watcher.
    """

    def __init__(
        self,
        project_root: Path,
        pipeline: IndexingPipeline,
        stability_window: float = DEFAULT_STABILITY_WINDOW,
        storage_dir: Path | None = None,
    ) -> None:
        """Initialize watcher.

        Args:
            project_root: Directory to watch recursively.
            pipeline: Pipeline owning the project's index store.
            stability_window: Quiet period in seconds before a change is dispatched.
            storage_dir: Index storage directory, ignored when inside the project.
        """
        self.project_root = Path(project_root)
        self.pipeline = pipeline
        self.storage_dir = storage_dir or pipeline.store.store_path.parent
        self._debouncer = ChangeDebouncer(stability_window)
        self._stats = WatchStats()
        self._state = WatcherState.STOPPED
        self._stop_event: asyncio.Event | None = None
        self._wakeup = asyncio.Event()
        self._dispatch_lock = asyncio.Lock()
        self._in_flight = 0
        self._subscription: asyncio.Task[None] | None = None
        self._dispatcher: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Subscribe to filesystem events and start dispatching.

        Starting a watcher that is already running is a no-op.

        Raises:
            InvalidPathError: If the project root is not a directory.
        """
        if self._state != WatcherState.STOPPED:
            logger.info("Watcher already running", root=str(self.project_root))
            return
        if not self.project_root.is_dir():
            raise InvalidPathError(str(self.project_root), "Project root is not a directory")

        self._state = WatcherState.STARTING
        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        self._subscription = asyncio.create_task(self._subscribe(self._stop_event))
        self._state = WatcherState.WATCHING

        logger.info(
            "File watcher started",
            root=str(self.project_root),
            stability_window=self._debouncer.window,
        )

    async def stop(self) -> None:
        """Stop watching and flush the index store.

        A dispatch already handed to the pipeline finishes first; changes
        still waiting out their stability window are dropped. Stopping a
        watcher that is not running is a no-op.
        """
        if self._state == WatcherState.STOPPED:
            return

        if self._stop_event is not None:
            self._stop_event.set()
        if self._subscription is not None:
            self._subscription.cancel()
            await asyncio.gather(self._subscription, return_exceptions=True)
            self._subscription = None

        if self._dispatcher is not None:
            async with self._dispatch_lock:
                self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        dropped = self._debouncer.clear() + self._in_flight
        self._in_flight = 0
        try:
            self.pipeline.close()
        except CodebaseIndexerError as e:
            self._stats.errors += 1
            logger.error("Failed to flush index on stop", error=e.message)

        self._state = WatcherState.STOPPED
        logger.info(
            "File watcher stopped",
            root=str(self.project_root),
            dropped_pending=dropped,
            **self._stats.to_dict(),
        )

    async def notify(self, change: FileChange) -> None:
        """Queue a change for debounced dispatch."""
        if self._state == WatcherState.STOPPED:
            return
        self._debouncer.add(change)
        self._wakeup.set()

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no change is pending or being dispatched.

        Args:
            timeout: Maximum wait time in seconds.

        Returns:
            True if the watcher went idle.
        """
        start = time.monotonic()
        while self._debouncer.count > 0 or self._in_flight > 0:
            if timeout is not None and (time.monotonic() - start) > timeout:
                return False
            await asyncio.sleep(0.01)
        return True

    @asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Hold back dispatching while the caller writes to the pipeline.

        A dispatch in progress finishes before the block is entered. Changes
        arriving meanwhile stay pending and are dispatched afterwards.
        """
        async with self._dispatch_lock:
            yield

    async def _subscribe(self, stop_event: asyncio.Event) -> None:
        """Feed ``watchfiles`` events into the debouncer until stopped."""
        watch_filter = IndexWatchFilter(ignore_paths=[self.storage_dir])
        try:
            async for changes in awatch(
                self.project_root,
                watch_filter=watch_filter,
                stop_event=stop_event,
                recursive=True,
                step=50,
                ignore_permission_denied=True,
            ):
                now = time.time()
                for change, raw_path in changes:
                    await self.notify(
                        FileChange(
                            path=Path(raw_path),
                            change_type=ChangeType.from_watchfiles(change),
                            timestamp=now,
                        )
                    )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = WatchSubscriptionError(str(self.project_root), cause=e)
            self._stats.errors += 1
            logger.error("Watcher error", error=error.message, cause=str(e))

    async def _dispatch_loop(self) -> None:
        while True:
            self._wakeup.clear()
            delay = self._debouncer.time_until_ready()
            if delay is None or delay > 0:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

            ready = self._debouncer.pop_ready()
            self._in_flight = len(ready)
            for change in ready:
                async with self._dispatch_lock:
                    try:
                        await self._handle(change)
                    except Exception as e:
                        self._stats.errors += 1
                        logger.error(
                            "Failed to handle change",
                            path=str(change.path),
                            change_type=change.change_type.value,
                            error=str(e),
                        )
                    finally:
                        self._in_flight -= 1

    async def _handle(self, change: FileChange) -> None:
        """Route one debounced change to the pipeline and update counters."""
        root = self.project_root

        if change.change_type == ChangeType.DELETED:
            try:
                removed = self.pipeline.remove_file(change.path, root)
            except CodebaseIndexerError as e:
                self._stats.errors += 1
                logger.error("Error removing file", path=str(change.path), error=e.message)
                return
            if removed:
                self._stats.files_deleted += 1
                logger.info("Removed", path=self.pipeline.relative_path(change.path, root))
                return
            # a moved or deleted directory arrives as one event for the directory
            try:
                removed_paths = self.pipeline.remove_tree(change.path, root)
            except CodebaseIndexerError as e:
                self._stats.errors += 1
                logger.error("Error removing directory", path=str(change.path), error=e.message)
                return
            if removed_paths:
                self._stats.files_deleted += len(removed_paths)
                logger.info(
                    "Removed directory",
                    path=self.pipeline.relative_path(change.path, root),
                    files=len(removed_paths),
                )
            return

        if not self.pipeline.should_index(change.path, root):
            return

        result = await self.pipeline.index_file(change.path, root)
        if result.status == IndexStatus.INDEXED:
            if change.change_type == ChangeType.ADDED:
                self._stats.files_added += 1
                logger.info("Added", path=result.path, size=result.size)
            else:
                self._stats.files_changed += 1
                logger.info("Updated", path=result.path, size=result.size)
        elif result.status == IndexStatus.ERROR:
            self._stats.errors += 1
            logger.error(
                "Error indexing file",
                path=result.path,
                error=result.error.message if result.error else None,
            )

    @property
    def state(self) -> WatcherState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_watching(self) -> bool:
        """Whether the watcher is running."""
        return self._state == WatcherState.WATCHING

    @property
    def stats(self) -> WatchStats:
        """Copy of the running counters."""
        return WatchStats(**self._stats.to_dict())

    @property
    def pending_count(self) -> int:
        """Number of paths waiting out their stability window."""
        return self._debouncer.count

    def reset_stats(self) -> None:
        """Zero the running counters."""
        self._stats = WatchStats()
