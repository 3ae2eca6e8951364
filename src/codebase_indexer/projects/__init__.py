"""Project registry and multi-project management."""

from codebase_indexer.projects.manager import (
    IndexReport,
    ProjectManager,
    ProjectSearchResult,
)
from codebase_indexer.projects.registry import (
    Project,
    ProjectRegistry,
    generate_project_id,
)

__all__ = [
    # Registry
    "Project",
    "ProjectRegistry",
    "generate_project_id",
    # Manager
    "IndexReport",
    "ProjectManager",
    "ProjectSearchResult",
]
