"""Project API endpoints.

Provides endpoints for registering, indexing and inspecting projects.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from codebase_indexer.api.dependencies import get_manager
from codebase_indexer.projects.manager import ProjectManager
from codebase_indexer.projects.registry import Project

router = APIRouter(prefix="/projects", tags=["Projects"])


# Request/Response models
class AddProjectRequest(BaseModel):
    """Add project request model."""

    path: str = Field(..., min_length=1, description="Project root directory")
    name: str | None = Field(default=None, description="Display name")
    index: bool = Field(default=False, description="Index the project right away")
    watch: bool = Field(default=False, description="Start watching the project")

    model_config = {
        "json_schema_extra": {
            "example": {
                "path": "/home/me/code/my-app",
                "index": True,
            }
        }
    }


class ProjectResponse(BaseModel):
    """Registered project."""

    id: str
    name: str
    path: str
    indexed: bool
    watching: bool
    file_count: int
    total_size: int
    added_at: str
    updated_at: str | None = None
    last_indexed: str | None = None

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(**project.to_dict())


class ProjectListResponse(BaseModel):
    """All registered projects."""

    total: int
    projects: list[ProjectResponse]


class IndexResponse(BaseModel):
    """Outcome of an indexing run."""

    project: ProjectResponse
    summary: dict[str, Any]
    stats: dict[str, Any]


# Endpoints
@router.get("", response_model=ProjectListResponse)
async def list_projects(manager: ProjectManager = Depends(get_manager)) -> ProjectListResponse:
    """List all registered projects."""
    projects = [ProjectResponse.from_project(p) for p in manager.list_projects()]
    return ProjectListResponse(total=len(projects), projects=projects)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def add_project(
    request: AddProjectRequest,
    manager: ProjectManager = Depends(get_manager),
) -> ProjectResponse:
    """Register a project directory.

    Optionally indexes it and starts a watcher in the same call.
    """
    project = await manager.add_project(
        request.path,
        name=request.name,
        index=request.index,
        watch=request.watch,
    )
    return ProjectResponse.from_project(project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    manager: ProjectManager = Depends(get_manager),
) -> ProjectResponse:
    """Get a registered project."""
    return ProjectResponse.from_project(manager.get_project(project_id))


@router.delete("/{project_id}", response_model=ProjectResponse)
async def remove_project(
    project_id: str,
    manager: ProjectManager = Depends(get_manager),
) -> ProjectResponse:
    """Unregister a project and delete its index."""
    return ProjectResponse.from_project(await manager.remove_project(project_id))


@router.post("/{project_id}/index", response_model=IndexResponse)
async def index_project(
    project_id: str,
    full: bool = Query(default=False, description="Clear the index and rebuild it"),
    manager: ProjectManager = Depends(get_manager),
) -> IndexResponse:
    """Bring a project's index up to date.

    Only files whose content changed since the last run are re-indexed
    unless ``full`` is set.
    """
    report = await manager.index_project(project_id, full=full)
    return IndexResponse(
        project=ProjectResponse.from_project(report.project),
        summary=report.summary.to_dict(),
        stats=report.stats.to_dict(),
    )


@router.get("/{project_id}/stats", response_model=dict[str, Any])
async def project_stats(
    project_id: str,
    manager: ProjectManager = Depends(get_manager),
) -> dict[str, Any]:
    """Get index statistics of a project."""
    return manager.project_stats(project_id)
