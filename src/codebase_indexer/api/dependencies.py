"""Shared dependencies of the API endpoints."""

from fastapi import HTTPException, status

from codebase_indexer.projects.manager import ProjectManager

# Set by the application lifespan
_manager: ProjectManager | None = None


def get_manager() -> ProjectManager:
    """Get project manager instance."""
    if _manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Project manager not initialized",
        )
    return _manager


def set_manager(manager: ProjectManager | None) -> None:
    """Set project manager instance."""
    global _manager
    _manager = manager
