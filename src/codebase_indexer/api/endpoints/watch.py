"""Watcher API endpoints.

Provides endpoints for starting and stopping live file watching.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from codebase_indexer.api.dependencies import get_manager
from codebase_indexer.projects.manager import ProjectManager

router = APIRouter(tags=["Watch"])


class WatchResponse(BaseModel):
    """Watcher state of a project."""

    project_id: str
    watching: bool
    stats: dict[str, int]


@router.post("/projects/{project_id}/watch", response_model=WatchResponse)
async def start_watch(
    project_id: str,
    manager: ProjectManager = Depends(get_manager),
) -> WatchResponse:
    """Start watching a project. Starting twice is a no-op."""
    project = manager.get_project(project_id)
    watcher = await manager.start_watcher(project.id)
    return WatchResponse(
        project_id=project.id,
        watching=watcher.is_watching,
        stats=watcher.stats.to_dict(),
    )


@router.delete("/projects/{project_id}/watch", response_model=dict[str, Any])
async def stop_watch(
    project_id: str,
    manager: ProjectManager = Depends(get_manager),
) -> dict[str, Any]:
    """Stop watching a project."""
    project = manager.get_project(project_id)
    stopped = await manager.stop_watcher(project.id)
    return {"project_id": project.id, "stopped": stopped}


@router.get("/watchers", response_model=list[dict[str, Any]])
async def list_watchers(manager: ProjectManager = Depends(get_manager)) -> list[dict[str, Any]]:
    """List running watchers with their counters."""
    return manager.watcher_status()
