"""Health check endpoints for the Codebase Indexer API.

``/health`` reports project and watcher counts, ``/health/ready`` checks that
the storage directory is usable and that no watcher is accumulating errors.
"""

import os
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from codebase_indexer import __version__
from codebase_indexer.api.dependencies import get_manager
from codebase_indexer.config import get_settings
from codebase_indexer.projects.manager import ProjectManager

router = APIRouter(prefix="/health", tags=["Health"])


class HealthStatus(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    projects: int
    active_watchers: int


class ReadinessStatus(BaseModel):
    """Readiness check with per-component status."""

    status: str
    timestamp: str
    components: dict[str, dict[str, Any]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("", response_model=HealthStatus, summary="Basic health check")
async def health_check(manager: ProjectManager = Depends(get_manager)) -> HealthStatus:
    """Report version, environment and project counts."""
    summary = manager.global_stats()
    return HealthStatus(
        status="healthy",
        version=__version__,
        environment=get_settings().app.env,
        timestamp=_now(),
        projects=summary["total"],
        active_watchers=summary["active_watchers"],
    )


@router.get("/ready", response_model=ReadinessStatus, summary="Readiness check")
async def readiness_check(manager: ProjectManager = Depends(get_manager)) -> ReadinessStatus:
    """Check the storage directory and the running watchers.

    The overall status is ``degraded`` when the index directory is not
    writable or a watcher has recorded errors.
    """
    indexes_dir = manager.indexes_dir
    writable = indexes_dir.is_dir() and os.access(indexes_dir, os.W_OK)
    storage = {
        "status": "healthy" if writable else "unhealthy",
        "path": indexes_dir.as_posix(),
    }

    watchers = manager.watcher_status()
    failing = [w["project_id"] for w in watchers if w["stats"]["errors"]]
    watching = {
        "status": "degraded" if failing else "healthy",
        "running": len(watchers),
        "with_errors": failing,
    }

    components = {"storage": storage, "watchers": watching}
    overall = "healthy" if all(c["status"] == "healthy" for c in components.values()) else "degraded"
    return ReadinessStatus(status=overall, timestamp=_now(), components=components)


@router.get("/live", status_code=status.HTTP_200_OK, summary="Liveness check")
async def liveness_check() -> dict[str, str]:
    """Check if the application process is alive."""
    return {"status": "alive"}
