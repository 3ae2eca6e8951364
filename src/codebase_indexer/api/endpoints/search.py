"""Search API endpoints.

Provides endpoints for code search operations.
"""

import time

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from codebase_indexer.api.dependencies import get_manager
from codebase_indexer.projects.manager import ProjectManager

router = APIRouter(prefix="/search", tags=["Search"])


# Request/Response models
class SearchRequest(BaseModel):
    """Search request model."""

    query: str = Field(..., min_length=1, max_length=1000, description="Search query")
    project_id: str | None = Field(default=None, description="Project id or path")
    all_projects: bool = Field(default=False, description="Search every indexed project")
    max_results: int | None = Field(default=None, ge=1, le=1000, description="Maximum results per project")
    min_score: float | None = Field(default=None, ge=0.0, description="Minimum raw score")
    context_lines: int | None = Field(default=None, ge=0, le=50, description="Snippet context lines")
    extension: str | None = Field(default=None, description="Filter by file extension")

    model_config = {"json_schema_extra": {"example": {"query": "login handler", "project_id": "my-app-1a2b3c4d"}}}


class SearchHitResponse(BaseModel):
    """Search hit response."""

    path: str
    score: float
    snippet: str
    line_number: int
    match_kind: str


class ProjectHitsResponse(BaseModel):
    """Hits of one project."""

    project_id: str
    project_name: str
    hits: list[SearchHitResponse]


class SearchResponse(BaseModel):
    """Search response model."""

    query: str
    total_hits: int
    projects: list[ProjectHitsResponse]
    processing_time_ms: float


@router.post("", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    manager: ProjectManager = Depends(get_manager),
) -> SearchResponse:
    """Search one project, or all indexed projects.

    Without ``project_id`` and ``all_projects`` the project containing the
    server's working directory is searched.
    """
    start = time.perf_counter()
    results = manager.search(
        request.query,
        project=request.project_id,
        all_projects=request.all_projects,
        max_results=request.max_results,
        min_score=request.min_score,
        context_lines=request.context_lines,
        extension=request.extension,
    )

    projects = [
        ProjectHitsResponse(
            project_id=r.project.id,
            project_name=r.project.name,
            hits=[SearchHitResponse(**hit.to_dict()) for hit in r.results],
        )
        for r in results
    ]
    return SearchResponse(
        query=request.query,
        total_hits=sum(len(p.hits) for p in projects),
        projects=projects,
        processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
    )
