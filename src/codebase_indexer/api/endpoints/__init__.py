"""API endpoints module.

Contains all REST API endpoint routers.
"""

from codebase_indexer.api.endpoints import health, projects, search, watch

__all__ = [
    "health",
    "projects",
    "search",
    "watch",
]
