"""Registry of indexed projects.

The registry is a JSON document ``{"version": ..., "projects": [...]}`` in
the storage root. It is re-read on every call so several processes can share
it; writes replace the whole document.
"""

import hashlib
import json
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from codebase_indexer.core.exceptions import ProjectExistsError, ProjectNotFoundError
from codebase_indexer.indexing.store import IndexStats, utc_timestamp
from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)

REGISTRY_VERSION = "1.0.0"

_SLUG_UNSAFE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def normalize_project_path(path: str | Path) -> str:
    """Absolute, normalized, forward-slash form of a project path."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(path)))).replace("\\", "/")


def generate_project_id(path: str | Path) -> str:
    """Stable identifier for a project directory.

    Built from the directory name and a short hash of the full path, e.g.
    ``my-app-1a2b3c4d``.
    """
    normalized = os.path.normpath(str(path)).lower()
    digest = hashlib.md5(normalized.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]
    basename = _SLUG_UNSAFE.sub("-", os.path.basename(normalized))
    return f"{basename}-{digest}"


def is_within(child: str, parent: str) -> bool:
    """Whether ``child`` lies strictly below ``parent``."""
    relative = os.path.relpath(child, parent)
    return relative != "." and not relative.startswith("..") and not os.path.isabs(relative)


@dataclass
class Project:
    """A registered project.

    Attributes:
        id: Project identifier, also names its index document.
        name: Display name.
        path: Normalized absolute root directory.
        indexed: Whether a scan has completed.
        watching: Whether a watcher is running.
        file_count: Files in the index after the last scan.
        total_size: Indexed bytes after the last scan.
        added_at: Registration time (ISO-8601).
        updated_at: Last registry update (ISO-8601).
        last_indexed: Completion time of the last scan (ISO-8601).
    """

    id: str
    name: str
    path: str
    indexed: bool = False
    watching: bool = False
    file_count: int = 0
    total_size: int = 0
    added_at: str = ""
    updated_at: str | None = None
    last_indexed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class ProjectRegistry:
    """Reads and writes the project registry document."""

    def __init__(self, registry_path: Path) -> None:
        self.registry_path = registry_path
        if not self.registry_path.exists():
            self._save([])

    def _load(self) -> list[Project]:
        try:
            with open(self.registry_path, encoding="utf-8") as f:
                data = json.load(f)
            return [Project.from_dict(p) for p in data.get("projects", [])]
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error("Failed to load registry", path=str(self.registry_path), error=str(e))
            return []

    def _save(self, projects: list[Project]) -> None:
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "version": REGISTRY_VERSION,
            "projects": [p.to_dict() for p in projects],
        }
        tmp = self.registry_path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp, self.registry_path)

    def all(self) -> list[Project]:
        """All registered projects, in registration order."""
        return self._load()

    def get_by_id(self, project_id: str) -> Project | None:
        """Get a project by identifier."""
        return next((p for p in self._load() if p.id == project_id), None)

    def get_by_path(self, path: str | Path) -> Project | None:
        """Get the project rooted exactly at ``path``."""
        normalized = normalize_project_path(path)
        return next((p for p in self._load() if p.path == normalized), None)

    def find_containing(self, path: str | Path) -> Project | None:
        """Find the project rooted at or containing ``path``.

        When projects are nested the most specific (deepest) root wins.
        """
        target = normalize_project_path(path)
        projects = self._load()

        exact = next((p for p in projects if p.path == target), None)
        if exact is not None:
            return exact

        containing = [p for p in projects if is_within(target, p.path)]
        if not containing:
            return None
        return max(containing, key=lambda p: len(p.path))

    def add(self, project: Project) -> Project:
        """Register a project.

        Raises:
            ProjectExistsError: If the id or the path is already registered.
        """
        projects = self._load()
        for existing in projects:
            if existing.id == project.id or existing.path == project.path:
                raise ProjectExistsError(existing.id, existing.path)

        if not project.added_at:
            project.added_at = utc_timestamp()
        projects.append(project)
        self._save(projects)
        logger.info("Project registered", project_id=project.id, path=project.path)
        return project

    def update(self, project_id: str, **updates: Any) -> Project:
        """Update fields of a project.

        Raises:
            ProjectNotFoundError: If the project is not registered.
        """
        projects = self._load()
        for i, project in enumerate(projects):
            if project.id == project_id:
                data = {**project.to_dict(), **updates, "updated_at": utc_timestamp()}
                projects[i] = Project.from_dict(data)
                self._save(projects)
                return projects[i]
        raise ProjectNotFoundError(project_id)

    def remove(self, project_id: str) -> bool:
        """Unregister a project.

        Returns:
            True if the project was registered.
        """
        projects = self._load()
        remaining = [p for p in projects if p.id != project_id]
        if len(remaining) == len(projects):
            return False
        self._save(remaining)
        logger.info("Project unregistered", project_id=project_id)
        return True

    def update_stats(self, project_id: str, stats: IndexStats) -> Project:
        """Record the outcome of a completed scan."""
        return self.update(
            project_id,
            file_count=stats.file_count,
            total_size=stats.total_size,
            last_indexed=utc_timestamp(),
            indexed=True,
        )

    def mark_not_indexed(self, project_id: str) -> Project:
        """Reset a project's index figures."""
        return self.update(project_id, indexed=False, file_count=0, total_size=0)

    def set_watching(self, project_id: str, watching: bool) -> Project:
        """Record whether a watcher runs for a project."""
        return self.update(project_id, watching=watching)

    def by_status(self, status: str) -> list[Project]:
        """Filter projects by ``indexed``, ``not-indexed``, ``watching`` or ``not-watching``."""
        projects = self._load()
        filters = {
            "indexed": lambda p: p.indexed,
            "not-indexed": lambda p: not p.indexed,
            "watching": lambda p: p.watching,
            "not-watching": lambda p: not p.watching,
        }
        predicate = filters.get(status)
        return [p for p in projects if predicate(p)] if predicate else projects

    def summary(self) -> dict[str, int]:
        """Aggregate counts over all projects."""
        projects = self._load()
        return {
            "total": len(projects),
            "indexed": sum(1 for p in projects if p.indexed),
            "not_indexed": sum(1 for p in projects if not p.indexed),
            "watching": sum(1 for p in projects if p.watching),
            "total_files": sum(p.file_count for p in projects),
            "total_size": sum(p.total_size for p in projects),
        }

    def cleanup(self) -> list[Project]:
        """Unregister projects whose root directory no longer exists.

        Returns:
            The removed projects.
        """
        projects = self._load()
        kept = [p for p in projects if Path(p.path).is_dir()]
        removed = [p for p in projects if not Path(p.path).is_dir()]
        if removed:
            self._save(kept)
            logger.info("Removed orphaned projects", count=len(removed))
        return removed

    def __len__(self) -> int:
        return len(self._load())

    def __contains__(self, project_id: object) -> bool:
        return any(p.id == project_id for p in self._load())
