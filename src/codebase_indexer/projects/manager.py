"""High-level operations over all registered projects.

Ties the registry, the configuration documents and the per-project indexing
pipelines and watchers together. While a watcher runs for a project, every
other operation on that project goes through the watcher's pipeline so the
project's store keeps a single writer.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

from codebase_indexer.config import ConfigManager, ProjectConfig, Settings, get_settings
from codebase_indexer.core.exceptions import CodebaseIndexerError, InvalidPathError, ProjectNotFoundError
from codebase_indexer.indexing.fingerprint import ContentFingerprinter
from codebase_indexer.indexing.pipeline import IndexingPipeline, ScanSummary
from codebase_indexer.indexing.store import IndexStats, IndexStore
from codebase_indexer.indexing.watcher import ChangeWatcher
from codebase_indexer.projects.registry import (
    Project,
    ProjectRegistry,
    generate_project_id,
    normalize_project_path,
)
from codebase_indexer.search.query import QueryEngine, QueryResult
from codebase_indexer.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


@dataclass
class IndexReport:
    """Outcome of indexing one project."""

    project: Project
    summary: ScanSummary
    stats: IndexStats

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "project": self.project.to_dict(),
            "summary": self.summary.to_dict(),
            "stats": self.stats.to_dict(),
        }


@dataclass
class ProjectSearchResult:
    """Search results of one project."""

    project: Project
    results: list[QueryResult]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "project": self.project.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }


class ProjectManager:
    """Manages multiple indexed projects.

    Example:
        manager = ProjectManager()
        project = await manager.add_project("~/code/my-app")
        await manager.index_project(project.id)
        hits = manager.search("login handler", project=project.id)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: ProjectRegistry | None = None,
        config_manager: ConfigManager | None = None,
    ) -> None:
        """Initialize manager.

        Args:
            settings: Application settings, cached settings by default.
            registry: Project registry, read from the storage root by default.
            config_manager: Configuration documents, from the storage root by default.
        """
        self.settings = settings or get_settings()
        storage = self.settings.storage
        storage.ensure_dirs()
        self.indexes_dir = storage.indexes_dir
        self.registry = registry or ProjectRegistry(storage.registry_path)
        self.config_manager = config_manager or ConfigManager(storage)
        self._watchers: dict[str, ChangeWatcher] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def find_project(self, id_or_path: str) -> Project | None:
        """Look up a project by id, exact root, or containing path."""
        project = self.registry.get_by_id(id_or_path)
        if project is None and os.path.exists(os.path.expanduser(id_or_path)):
            project = self.registry.find_containing(id_or_path)
        return project

    def get_project(self, id_or_path: str) -> Project:
        """Like :meth:`find_project` but raises when nothing matches.

        Raises:
            ProjectNotFoundError: If no project matches.
        """
        project = self.find_project(id_or_path)
        if project is None:
            raise ProjectNotFoundError(id_or_path)
        return project

    def list_projects(self) -> list[Project]:
        """All registered projects."""
        return self.registry.all()

    async def add_project(
        self,
        path: str | Path,
        name: str | None = None,
        index: bool = False,
        watch: bool = False,
    ) -> Project:
        """Register a project directory.

        Args:
            path: Project root directory.
            name: Display name, directory name by default.
            index: Run a full scan after registering.
            watch: Start a watcher after registering.

        Raises:
            InvalidPathError: If the path is not a directory.
            ProjectExistsError: If the project is already registered.
        """
        normalized = normalize_project_path(path)
        if not Path(normalized).is_dir():
            raise InvalidPathError(str(path), "Project path must be an existing directory")

        project = self.registry.add(
            Project(
                id=generate_project_id(normalized),
                name=name or os.path.basename(normalized),
                path=normalized,
            )
        )

        if index:
            await self.index_project(project.id)
        if watch:
            await self.start_watcher(project.id)
        return self.registry.get_by_id(project.id) or project

    async def remove_project(self, id_or_path: str) -> Project:
        """Unregister a project and delete its index and configuration.

        Raises:
            ProjectNotFoundError: If no project matches.
        """
        project = self.get_project(id_or_path)
        await self.stop_watcher(project.id)

        self.registry.remove(project.id)
        self._index_path(project.id).unlink(missing_ok=True)
        self.config_manager.delete_project_config(project.id)
        self._locks.pop(project.id, None)

        logger.info("Project removed", project_id=project.id, name=project.name)
        return project

    def cleanup(self) -> list[Project]:
        """Unregister projects whose root directory no longer exists."""
        removed = self.registry.cleanup()
        for project in removed:
            self._index_path(project.id).unlink(missing_ok=True)
        return removed

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    def _index_path(self, project_id: str) -> Path:
        return self.indexes_dir / f"{project_id}.json"

    def _lock(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    def _open_pipeline(self, project: Project, config: ProjectConfig) -> IndexingPipeline:
        indexing = self.settings.indexing
        return IndexingPipeline.open(
            project.id,
            self.indexes_dir,
            config.pattern_set(),
            max_file_size=config.max_file_size,
            fingerprinter=ContentFingerprinter(indexing.hash_algorithm),
            batch_size=indexing.batch_size,
            max_concurrent=indexing.max_concurrent,
        )

    @asynccontextmanager
    async def _writer_for(self, project: Project) -> AsyncIterator[IndexingPipeline]:
        """Yield the pipeline allowed to write a project's store.

        A running watcher owns the store, so its pipeline is used with
        dispatching paused for the duration of the block.
        """
        watcher = self._watchers.get(project.id)
        if watcher is None:
            yield self._open_pipeline(project, self.config_manager.get_project_config(project.id))
            return
        async with watcher.paused():
            yield watcher.pipeline

    async def index_project(self, id_or_path: str, full: bool = False) -> IndexReport:
        """Bring a project's index up to date with its files.

        Args:
            id_or_path: Project id or path.
            full: Clear the index first and rebuild it from scratch.

        Raises:
            ProjectNotFoundError: If no project matches.
            ConfigurationError: If the project configuration is malformed.
        """
        project = self.get_project(id_or_path)

        async with self._lock(project.id):
            with LogContext(project_id=project.id):
                async with self._writer_for(project) as pipeline:
                    if full:
                        pipeline.clear()
                    summary = await pipeline.scan(project.path)
                    stats = pipeline.store.stats()

        project = self.registry.update_stats(project.id, stats)
        logger.info(
            "Project indexed",
            project_id=project.id,
            full=full,
            indexed=summary.indexed,
            unchanged=summary.unchanged,
            errors=summary.errors,
        )
        return IndexReport(project=project, summary=summary, stats=stats)

    async def reindex_project(self, id_or_path: str) -> IndexReport:
        """Clear a project's index and rebuild it."""
        return await self.index_project(id_or_path, full=True)

    # -------------------------------------------------------------------------
    # Watching
    # -------------------------------------------------------------------------

    async def start_watcher(self, id_or_path: str) -> ChangeWatcher:
        """Start watching a project; returns the running watcher if any.

        Raises:
            ProjectNotFoundError: If no project matches.
        """
        project = self.get_project(id_or_path)
        existing = self._watchers.get(project.id)
        if existing is not None:
            logger.info("Watcher already running", project_id=project.id)
            return existing

        config = self.config_manager.get_project_config(project.id)
        watcher = ChangeWatcher(
            Path(project.path),
            self._open_pipeline(project, config),
            stability_window=config.debounce_ms / 1000,
            storage_dir=self.indexes_dir,
        )
        with LogContext(project_id=project.id):
            await watcher.start()
        self._watchers[project.id] = watcher
        self.registry.set_watching(project.id, True)
        return watcher

    async def stop_watcher(self, id_or_path: str) -> bool:
        """Stop a project's watcher.

        Returns:
            True if a watcher was running.

        Raises:
            ProjectNotFoundError: If no project matches.
        """
        project = self.get_project(id_or_path)
        watcher = self._watchers.pop(project.id, None)
        if watcher is None:
            return False

        await watcher.stop()
        self.registry.set_watching(project.id, False)
        return True

    async def resume_watchers(self) -> list[str]:
        """Restart watchers of projects registered as watching.

        Projects whose watcher cannot be started are marked as not watching.

        Returns:
            Ids of the projects now being watched.
        """
        resumed = []
        for project in self.registry.by_status("watching"):
            try:
                await self.start_watcher(project.id)
            except CodebaseIndexerError as e:
                logger.warning("Could not resume watcher", project_id=project.id, error=e.message)
                self.registry.set_watching(project.id, False)
            else:
                resumed.append(project.id)
        return resumed

    async def stop_all_watchers(self) -> None:
        """Stop every running watcher."""
        logger.info("Stopping watchers", count=len(self._watchers))
        for project_id in list(self._watchers):
            watcher = self._watchers.pop(project_id)
            try:
                await watcher.stop()
                self.registry.set_watching(project_id, False)
            except Exception as e:
                logger.error("Failed to stop watcher", project_id=project_id, error=str(e))

    def watcher_status(self) -> list[dict[str, Any]]:
        """State and counters of every running watcher."""
        status = []
        for project_id, watcher in self._watchers.items():
            status.append(
                {
                    "project_id": project_id,
                    "path": str(watcher.project_root),
                    "state": watcher.state.value,
                    "pending": watcher.pending_count,
                    "stats": watcher.stats.to_dict(),
                }
            )
        return status

    # -------------------------------------------------------------------------
    # Search & stats
    # -------------------------------------------------------------------------

    def _store_for(self, project: Project) -> IndexStore:
        watcher = self._watchers.get(project.id)
        if watcher is not None:
            return watcher.pipeline.store
        store = IndexStore(self._index_path(project.id))
        store.load()
        return store

    def search(
        self,
        query: str,
        project: str | None = None,
        all_projects: bool = False,
        max_results: int | None = None,
        min_score: float | None = None,
        context_lines: int | None = None,
        extension: str | None = None,
        cwd: str | Path | None = None,
    ) -> list[ProjectSearchResult]:
        """Search one project or every indexed project.

        Without ``project`` and ``all_projects`` the project containing
        ``cwd`` (the working directory by default) is searched. Unset limits
        come from the global search configuration.

        Raises:
            ProjectNotFoundError: If no project could be determined.
            SearchQueryError: If the query is empty.
        """
        defaults = self.config_manager.get_search_config()
        options = {
            "max_results": max_results if max_results is not None else defaults.max_results,
            "min_score": min_score if min_score is not None else defaults.min_score,
            "context_lines": context_lines if context_lines is not None else defaults.context_lines,
            "extension": extension,
        }

        if all_projects:
            results = []
            for target in self.registry.by_status("indexed"):
                engine = QueryEngine(self._store_for(target))
                results.append(ProjectSearchResult(target, engine.search(query, **options)))
            return results

        if project is not None:
            target = self.get_project(project)
        else:
            location = str(cwd) if cwd is not None else os.getcwd()
            found = self.registry.find_containing(location)
            if found is None:
                raise ProjectNotFoundError(location)
            target = found

        engine = QueryEngine(self._store_for(target))
        return [ProjectSearchResult(target, engine.search(query, **options))]

    def project_stats(self, id_or_path: str) -> dict[str, Any]:
        """Registry entry and store statistics of a project.

        Raises:
            ProjectNotFoundError: If no project matches.
        """
        project = self.get_project(id_or_path)
        result: dict[str, Any] = {"project": project.to_dict(), "indexed": project.indexed}
        if project.indexed:
            result["stats"] = self._store_for(project).stats().to_dict()
        watcher = self._watchers.get(project.id)
        if watcher is not None:
            result["watcher"] = watcher.stats.to_dict()
        return result

    def global_stats(self) -> dict[str, int]:
        """Aggregate figures over all projects."""
        return {**self.registry.summary(), "active_watchers": len(self._watchers)}

    async def close(self) -> None:
        """Stop all watchers."""
        await self.stop_all_watchers()
