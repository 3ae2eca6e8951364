"""Incremental indexing pipeline.

Decides per file whether it needs re-indexing (content hash comparison) and
keeps the index store in step with the project tree. Only files whose content
actually changed are written, so re-indexing cost follows the number of
changed files rather than the size of the project.
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import TracebackType
from typing import Any, Iterator

from codebase_indexer.core.exceptions import (
    IndexingError,
    PersistenceError,
    ReadError,
)
from codebase_indexer.indexing.fingerprint import ContentFingerprinter
from codebase_indexer.indexing.matcher import (
    MatchPatternSet,
    get_extension,
    normalize_path,
    should_index,
)
from codebase_indexer.indexing.store import FileRecord, IndexStore, utc_timestamp
from codebase_indexer.utils.async_io import FileContent, read_files_parallel, read_text
from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)

# Skipped by name during the walk, before any pattern is evaluated
PRUNED_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        "node_modules",
        "__pycache__",
        ".venv",
        "venv",
        ".codebase-index",
    }
)


class IndexStatus(str, Enum):
    """Outcome of indexing a single file."""

    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    ERROR = "error"


@dataclass
class IndexResult:
    """Result of indexing a single file.

    Attributes:
        status: Outcome.
        path: Project-relative path.
        size: Size in bytes when indexed.
        error: Cause when status is ERROR.
    """

    status: IndexStatus
    path: str
    size: int = 0
    error: IndexingError | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"status": self.status.value, "path": self.path}
        if self.status == IndexStatus.INDEXED:
            result["size"] = self.size
        if self.error is not None:
            result["error"] = self.error.message
        return result


@dataclass
class ScanSummary:
    """Aggregated counters of a bulk scan.

    Attributes:
        total_files: Files found by the walk after structural pruning.
        candidates: Files that passed the matcher.
        indexed: Files written to the store.
        unchanged: Files skipped because their hash did not change.
        errors: Files that failed, plus failed store writes.
        duration_seconds: Wall time of the scan.
        failures: Error results, in the order they happened.
    """

    total_files: int = 0
    candidates: int = 0
    indexed: int = 0
    unchanged: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    failures: list[IndexResult] = field(default_factory=list)

    def record(self, result: IndexResult) -> None:
        """Count a single file result."""
        if result.status == IndexStatus.INDEXED:
            self.indexed += 1
        elif result.status == IndexStatus.UNCHANGED:
            self.unchanged += 1
        else:
            self.errors += 1
            self.failures.append(result)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_files": self.total_files,
            "candidates": self.candidates,
            "indexed": self.indexed,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 3),
            "failures": [f.to_dict() for f in self.failures],
        }


def walk_project(
    root: Path,
    prune_dirs: frozenset[str] = PRUNED_DIRS,
    skip_paths: tuple[Path, ...] = (),
) -> Iterator[Path]:
    """Yield every regular file under ``root``.

    Directories named in ``prune_dirs`` and any directory in ``skip_paths``
    are not descended into. Unreadable directories are skipped silently and
    symlinks are not followed.
    """
    skipped = {os.path.normcase(os.path.abspath(p)) for p in skip_paths}
    stack = [str(root)]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            continue

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in prune_dirs:
                        continue
                    if os.path.normcase(os.path.abspath(entry.path)) in skipped:
                        continue
                    subdirs.append(entry.path)
                elif entry.is_file(follow_symlinks=False):
                    yield Path(entry.path)
            except OSError:
                continue
        # depth-first, alphabetical
        stack.extend(reversed(subdirs))


class IndexingPipeline:
    """Keeps one project's index store in sync with its files.

    One pipeline instance owns its store; callers must not run two pipelines
    against the same project at once.
    """

    def __init__(
        self,
        store: IndexStore,
        patterns: MatchPatternSet,
        max_file_size: int | None = None,
        fingerprinter: ContentFingerprinter | None = None,
        batch_size: int = 50,
        max_concurrent: int = 4,
    ) -> None:
        """Initialize pipeline.

        Args:
            store: Loaded index store.
            patterns: Include/exclude pattern set for this session.
            max_file_size: Files larger than this are not candidates.
            fingerprinter: Fingerprinter, MD5 by default.
            batch_size: Indexed files between saves during a scan.
            max_concurrent: Concurrent reads during a scan.
        """
        self.store = store
        self.patterns = patterns
        self.max_file_size = max_file_size
        self.fingerprinter = fingerprinter or ContentFingerprinter()
        self.batch_size = max(1, batch_size)
        self.max_concurrent = max(1, max_concurrent)

    @classmethod
    def open(
        cls,
        project_id: str,
        storage_dir: Path,
        patterns: MatchPatternSet,
        **kwargs: Any,
    ) -> "IndexingPipeline":
        """Load the store of a project and wrap it in a pipeline.

        Args:
            project_id: Project identifier, names the store document.
            storage_dir: Directory holding store documents.
            patterns: Pattern set for this session.
            **kwargs: Passed to the constructor.
        """
        store = IndexStore(storage_dir / f"{project_id}.json")
        store.load()
        return cls(store, patterns, **kwargs)

    @staticmethod
    def relative_path(file_path: str | Path, project_root: str | Path) -> str:
        """Project-relative, forward-slash form of ``file_path``."""
        path = Path(file_path)
        if not path.is_absolute():
            path = Path(project_root) / path
        return normalize_path(os.path.relpath(path, project_root))

    def should_index(self, file_path: str | Path, project_root: str | Path) -> bool:
        """Whether a file passes the binary, pattern and size checks."""
        path = Path(project_root) / file_path if not Path(file_path).is_absolute() else Path(file_path)
        return should_index(
            path,
            self.relative_path(path, project_root),
            self.patterns,
            self.max_file_size,
        )

    def _apply(self, relative: str, content: FileContent) -> IndexResult:
        """Compare against the stored hash and upsert if it differs."""
        fingerprint = self.fingerprinter.fingerprint(content.text)

        existing = self.store.get(relative)
        if existing is not None and existing.hash == fingerprint.hash:
            return IndexResult(status=IndexStatus.UNCHANGED, path=relative)

        self.store.upsert(
            FileRecord(
                path=relative,
                content=content.text,
                hash=fingerprint.hash,
                size=content.size,
                line_count=len(content.text.split("\n")),
                extension=get_extension(relative),
                keywords=fingerprint.keywords,
                modified_at=utc_timestamp(content.mtime),
                indexed_at=utc_timestamp(),
            )
        )
        return IndexResult(status=IndexStatus.INDEXED, path=relative, size=content.size)

    async def index_file(
        self,
        file_path: str | Path,
        project_root: str | Path,
        persist: bool = True,
    ) -> IndexResult:
        """Index one file if its content changed.

        Args:
            file_path: Absolute or project-relative path.
            project_root: Project root directory.
            persist: Save the store after a write.

        Returns:
            IndexResult; read failures are reported as ERROR and leave the
            store untouched.
        """
        relative = self.relative_path(file_path, project_root)
        absolute = Path(project_root) / relative

        try:
            content = await read_text(absolute)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Failed to read file", path=relative, error=str(e))
            return IndexResult(status=IndexStatus.ERROR, path=relative, error=ReadError(relative, e))

        result = self._apply(relative, content)
        if result.status == IndexStatus.INDEXED and persist:
            try:
                self.store.save()
            except PersistenceError as e:
                logger.error("Failed to persist index", path=relative, error=str(e.cause))
                return IndexResult(status=IndexStatus.ERROR, path=relative, error=e)
        return result

    def remove_file(self, file_path: str | Path, project_root: str | Path) -> bool:
        """Delete the record of a file.

        The store is saved only when a record existed.

        Returns:
            True if the file was indexed.

        Raises:
            PersistenceError: If the deletion could not be saved.
        """
        relative = self.relative_path(file_path, project_root)
        existed = self.store.delete(relative)
        if existed:
            self.store.save()
        return existed

    def remove_tree(self, dir_path: str | Path, project_root: str | Path) -> list[str]:
        """Delete the records of every file below a directory.

        Used when a whole directory disappears and only the directory itself
        is reported. The store is saved once, and only if something was removed.

        Returns:
            Relative paths of the removed records.

        Raises:
            PersistenceError: If the deletion could not be saved.
        """
        prefix = self.relative_path(dir_path, project_root).rstrip("/") + "/"
        if prefix in ("./", "/"):
            return []
        removed = [path for path in self.store.paths if path.startswith(prefix)]
        for path in removed:
            self.store.delete(path)
        if removed:
            self.store.save()
        return removed

    def clear(self) -> None:
        """Reset the store to empty and persist it."""
        self.store.clear()
        self.store.save()
        logger.info("Index cleared", path=str(self.store.store_path))

    def discover(self, project_root: Path) -> tuple[list[Path], int]:
        """Walk a project and filter candidates.

        Returns:
            Candidate files and the number of files seen by the walk.
        """
        skip = (self.store.store_path.parent,)
        total = 0
        candidates: list[Path] = []
        for path in walk_project(project_root, skip_paths=skip):
            total += 1
            if should_index(path, self.relative_path(path, project_root), self.patterns, self.max_file_size):
                candidates.append(path)
        return candidates, total

    async def scan(self, project_root: str | Path) -> ScanSummary:
        """Index every candidate file of a project.

        Reads run concurrently in batches; store writes happen one at a time
        on the calling task. The store is saved after every batch that wrote
        something and the scan never aborts on a per-file failure.

        Args:
            project_root: Project root directory.

        Returns:
            ScanSummary with aggregated counters.
        """
        start = time.perf_counter()
        root = Path(project_root)
        summary = ScanSummary()

        candidates, summary.total_files = await asyncio.to_thread(self.discover, root)
        summary.candidates = len(candidates)
        logger.info(
            "Scan started",
            root=str(root),
            total_files=summary.total_files,
            candidates=summary.candidates,
        )

        for i in range(0, len(candidates), self.batch_size):
            batch = candidates[i : i + self.batch_size]
            contents = await read_files_parallel(batch, max_concurrent=self.max_concurrent)

            wrote = False
            for path in batch:
                relative = self.relative_path(path, root)
                content = contents[path]
                if isinstance(content, Exception):
                    result = IndexResult(
                        status=IndexStatus.ERROR,
                        path=relative,
                        error=ReadError(relative, content),
                    )
                else:
                    result = self._apply(relative, content)
                    wrote = wrote or result.status == IndexStatus.INDEXED
                summary.record(result)

            if wrote:
                self._flush_counted(summary)

        self._flush_counted(summary)
        summary.duration_seconds = time.perf_counter() - start
        logger.info(
            "Scan finished",
            root=str(root),
            indexed=summary.indexed,
            unchanged=summary.unchanged,
            errors=summary.errors,
            duration_seconds=round(summary.duration_seconds, 3),
        )
        return summary

    def _flush_counted(self, summary: ScanSummary) -> None:
        try:
            self.flush()
        except PersistenceError as e:
            logger.error("Failed to persist index", error=str(e.cause))
            summary.errors += 1

    def flush(self) -> bool:
        """Save the store if it has unsaved changes.

        Returns:
            True if a save happened.

        Raises:
            PersistenceError: If the save failed.
        """
        if not self.store.is_dirty:
            return False
        self.store.save()
        return True

    def close(self) -> None:
        """Flush pending changes."""
        self.flush()

    async def __aenter__(self) -> "IndexingPipeline":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
