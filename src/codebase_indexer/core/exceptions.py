"""Custom exceptions for the Codebase Indexer.

This module defines a hierarchy of exceptions used throughout the application
for consistent error handling and reporting.
"""

from typing import Any


class CodebaseIndexerError(Exception):
    """Base exception for all Codebase Indexer errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CodebaseIndexerError):
    """Error in application or project configuration."""

    pass


class InvalidPatternError(ConfigurationError):
    """A glob pattern in a match pattern set cannot be used."""

    def __init__(self, pattern: Any, reason: str) -> None:
        super().__init__(
            message=f"Invalid glob pattern {pattern!r}: {reason}",
            details={"pattern": repr(pattern), "reason": reason},
        )


# =============================================================================
# Indexing Errors
# =============================================================================


class IndexingError(CodebaseIndexerError):
    """Base class for indexing-related errors."""

    pass


class ReadError(IndexingError):
    """File could not be read, or vanished between enumeration and read."""

    def __init__(self, file_path: str, cause: Exception | None = None) -> None:
        reason = str(cause) if cause else "unreadable"
        super().__init__(
            message=f"Failed to read {file_path}: {reason}",
            details={"file_path": file_path},
            cause=cause,
        )


class PersistenceError(IndexingError):
    """Index store could not be durably written."""

    def __init__(self, store_path: str, cause: Exception | None = None) -> None:
        super().__init__(
            message=f"Failed to persist index store to {store_path}",
            details={"store_path": store_path},
            cause=cause,
        )


class WatchSubscriptionError(IndexingError):
    """OS-level filesystem watch failed."""

    def __init__(self, path: str, cause: Exception | None = None) -> None:
        super().__init__(
            message=f"Filesystem watch failed for {path}",
            details={"path": path},
            cause=cause,
        )


class InvalidPathError(IndexingError):
    """Invalid path provided."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid path: {path}. {reason}",
            details={"path": path, "reason": reason},
        )


# =============================================================================
# Project Errors
# =============================================================================


class ProjectError(CodebaseIndexerError):
    """Base class for project registry errors."""

    pass


class ProjectNotFoundError(ProjectError):
    """No registered project matches the given id or path."""

    def __init__(self, project: str) -> None:
        super().__init__(
            message=f"Project not found: {project}",
            details={"project": project},
        )


class ProjectExistsError(ProjectError):
    """A project with the same id or path is already registered."""

    def __init__(self, project_id: str, path: str) -> None:
        super().__init__(
            message=f"Project already exists: {project_id} ({path})",
            details={"project_id": project_id, "path": path},
        )


# =============================================================================
# Search Errors
# =============================================================================


class SearchError(CodebaseIndexerError):
    """Base class for search-related errors."""

    pass


class SearchQueryError(SearchError):
    """Search query cannot be executed."""

    def __init__(self, query: str, reason: str = "invalid query") -> None:
        super().__init__(
            message=f"Search query rejected: {reason}",
            details={"query": query},
        )
