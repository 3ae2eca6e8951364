"""FastAPI application entry point for the Codebase Indexer.

This module creates and configures the FastAPI application with all
necessary middleware, routers, and lifecycle hooks.
"""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from codebase_indexer import __version__
from codebase_indexer.api.dependencies import set_manager
from codebase_indexer.api.router import api_router
from codebase_indexer.config import get_settings
from codebase_indexer.core.exceptions import (
    CodebaseIndexerError,
    ConfigurationError,
    InvalidPathError,
    PersistenceError,
    ProjectExistsError,
    ProjectNotFoundError,
    SearchQueryError,
)
from codebase_indexer.projects.manager import ProjectManager
from codebase_indexer.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

# Requests slower than this are logged as warnings (seconds)
_SLOW_REQUEST_THRESHOLD = 1.0


class PerformanceLoggingMiddleware(BaseHTTPMiddleware):
    """Logs the duration of every request and flags slow ones."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "duration_ms": round(duration * 1000, 2),
            "status_code": response.status_code,
        }
        if duration > _SLOW_REQUEST_THRESHOLD:
            logger.warning("Slow request detected", **log_data)
        else:
            logger.debug("Request completed", **log_data)

        response.headers["X-Response-Time"] = f"{duration * 1000:.2f}ms"
        return response


def create_app(manager: ProjectManager | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        manager: Project manager to serve, created on startup if omitted.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging()
        logger.info(
            "Starting Codebase Indexer",
            version=__version__,
            environment=settings.app.env,
            storage=str(settings.storage.root),
        )

        active = manager or ProjectManager(settings)
        set_manager(active)
        resumed = await active.resume_watchers()
        if resumed:
            logger.info("Watchers resumed", projects=resumed)

        yield

        logger.info("Shutting down Codebase Indexer")
        await active.close()
        set_manager(None)

    app = FastAPI(
        title="Codebase Indexer API",
        description="Incremental lexical index and search over local source trees",
        version=__version__,
        docs_url="/docs" if settings.app.debug else None,
        redoc_url="/redoc" if settings.app.debug else None,
        openapi_url="/openapi.json" if settings.app.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app.env == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(PerformanceLoggingMiddleware)
    app.add_exception_handler(CodebaseIndexerError, codebase_indexer_exception_handler)
    app.include_router(api_router)

    return app


async def codebase_indexer_exception_handler(
    request: Request,
    exc: CodebaseIndexerError,
) -> JSONResponse:
    """Convert CodebaseIndexerError instances to consistent JSON responses.

    Args:
        request: The incoming request.
        exc: The raised exception.

    Returns:
        JSONResponse: Formatted error response.
    """
    status_code = _get_status_code(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request failed",
        error=exc.__class__.__name__,
        message=exc.message,
        details=exc.details,
        path=request.url.path,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _get_status_code(exc: CodebaseIndexerError) -> int:
    """Map exception types to HTTP status codes."""
    status_map: dict[type, int] = {
        ProjectNotFoundError: status.HTTP_404_NOT_FOUND,
        ProjectExistsError: status.HTTP_409_CONFLICT,
        InvalidPathError: status.HTTP_400_BAD_REQUEST,
        SearchQueryError: status.HTTP_400_BAD_REQUEST,
        ConfigurationError: status.HTTP_400_BAD_REQUEST,
        PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    for exc_type, status_code in status_map.items():
        if isinstance(exc, exc_type):
            return status_code

    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Create the application instance
app = create_app()


def main() -> None:
    """Run the application using uvicorn.

    This is the entry point for the CLI command.
    """
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "codebase_indexer.main:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=settings.api.reload,
        workers=settings.api.workers if not settings.api.reload else 1,
        log_level=settings.app.log_level.lower(),
    )


if __name__ == "__main__":
    main()
